import re
import time

_WS = re.compile(r'\s+')


def normalize_tribe_key(name):
    """Trimmed, lower-cased, whitespace-collapsed tribe identity."""
    return _WS.sub(' ', (name or '').strip()).lower()


def normalize_server_type(value, server_types):
    """Map a server key or display name onto its display name.

    Returns None for an empty value and raises KeyError for an unknown one.
    """
    k = (value or '').strip().lower()
    if not k:
        return None
    for key, display in (server_types or {}).items():
        if k == key.lower() or k == display.lower():
            return display
    raise KeyError(value)


class SystemClock:
    """Wall clock in epoch milliseconds."""

    def now(self) -> int:
        return int(time.time() * 1000)

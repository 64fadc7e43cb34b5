import threading
from typing import Callable, Dict, Optional, Tuple

from flask import has_app_context

from whiteflag import socketio

EXPIRY = 'expiry'
WARNING = 'warning'
TIMER_KINDS = (EXPIRY, WARNING)

# Longest single sleep of a background worker; a cancelled worker exits at its next wake-up
WAKE_INTERVAL_SEC = 60

TimerKey = Tuple[str, str]


class _Timer:
    __slots__ = ('due_at', 'callback')

    def __init__(self, due_at: int, callback: Callable[[], None]):
        self.due_at = due_at
        self.callback = callback


class TimerScheduler:
    """In-process delayed actions keyed by ``(record_id, kind)``.

    - At most one timer per key; arming replaces (cancel-then-set)
    - Delay is ``max(0, due_at - now)``; due timers still run through the
      spawn backend, never inline
    - A fired worker only runs if its timer is still the armed one
    - Callbacks run inside an app context; their errors are logged, not raised

    ``spawn(fn, delay_ms, cancelled)`` starts ``fn`` after ``delay_ms``;
    ``cancelled()`` turns true once the timer is superseded or cancelled. The
    default backend uses Socket.IO background tasks.
    """

    def __init__(self, app=None, clock=None, spawn: Optional[Callable] = None, logger=None):
        self.app = app
        self.clock = clock
        self.logger = logger or (app.logger if app is not None else None)
        self._spawn = spawn or self._spawn_background
        self._timers: Dict[TimerKey, _Timer] = {}
        self._lock = threading.RLock()

    def _log(self, msg, level='info'):
        if self.logger:
            getattr(self.logger, level)(msg)

    def _heartbeat_sec(self) -> int:
        try:
            return int(self.app.config.get('TIMER_HEARTBEAT_SEC', 0)) if self.app is not None else 0
        except Exception:
            return 0

    def _spawn_background(self, fn: Callable[[], None], delay_ms: int,
                          cancelled: Optional[Callable[[], bool]] = None) -> None:
        def _worker(delay_sec: float):
            hb = self._heartbeat_sec()
            slept = 0.0
            while slept < delay_sec:
                if cancelled is not None and cancelled():
                    return
                step = min(WAKE_INTERVAL_SEC, delay_sec - slept)
                if hb > 0:
                    step = min(step, hb)
                socketio.sleep(step)
                slept += step
                if hb > 0:
                    self._log(f"[timer-heartbeat] remaining={max(0.0, delay_sec - slept):.0f}s")
            fn()

        socketio.start_background_task(_worker, delay_ms / 1000.0)

    def arm(self, record_id: str, kind: str, due_at: int, callback: Callable[[], None]) -> int:
        """Arm ``callback`` for ``due_at`` (epoch ms), replacing any timer on the key."""
        if kind not in TIMER_KINDS:
            raise ValueError(f'unknown timer kind {kind}')
        key = (record_id, kind)
        timer = _Timer(due_at, callback)
        with self._lock:
            self.cancel(record_id, kind, quiet=True)
            self._timers[key] = timer
        delay = max(0, due_at - self.clock.now())
        self._log(f"[timer-set] record={record_id} kind={kind} due_at={due_at} delay={delay}ms")
        self._spawn(lambda: self._fire(key, timer), delay, lambda: self._timers.get(key) is not timer)
        return delay

    def cancel(self, record_id: str, kind: str, quiet: bool = False) -> bool:
        with self._lock:
            timer = self._timers.pop((record_id, kind), None)
        if timer is not None and not quiet:
            self._log(f"[timer-cancel] record={record_id} kind={kind}")
        return timer is not None

    def cancel_record(self, record_id: str) -> None:
        for kind in TIMER_KINDS:
            self.cancel(record_id, kind)

    def is_armed(self, record_id: str, kind: str) -> bool:
        return (record_id, kind) in self._timers

    def due_at(self, record_id: str, kind: str) -> Optional[int]:
        timer = self._timers.get((record_id, kind))
        return timer.due_at if timer else None

    def armed(self) -> Dict[TimerKey, int]:
        with self._lock:
            return {key: t.due_at for key, t in self._timers.items()}

    def clear(self) -> None:
        with self._lock:
            self._timers.clear()

    def _fire(self, key: TimerKey, timer: _Timer) -> None:
        with self._lock:
            current = self._timers.pop(key, None)
            if current is not timer:
                if current is not None:
                    self._timers[key] = current
                self._log(f"[timer-abort] record={key[0]} kind={key[1]} superseded or cancelled")
                return
        self._log(f"[timer-fire] record={key[0]} kind={key[1]} due_at={timer.due_at}")
        try:
            if self.app is not None and not has_app_context():
                with self.app.app_context():
                    timer.callback()
            else:
                timer.callback()
        except Exception as exc:
            # A missed transition is picked up by the next reconciliation
            self._log(f"[timer-error] record={key[0]} kind={key[1]} error={exc!r}", 'error')

"""White Flag lifecycle services: state machine, timers and reconciliation.

This package holds the domain logic imported by HTTP routes and socket
handlers, keeping transport concerns separate from the protection and bounty
lifecycle.
"""
import threading

from flask import current_app

from .engine import ProtectionEngine
from .errors import (
    ProtectionError, NotFound, ValidationError, Conflict, AlreadyInState, Unavailable,
)
from .keys import SystemClock
from .notifications import NotificationDispatcher
from .store import RecordStore
from .timers import TimerScheduler

EXTENSION_KEY = 'whiteflag_engine'


def init_engine(app, clock=None, spawn=None, notifier=None, store=None):
    """Build the process-wide engine and attach it to ``app.extensions``."""
    clock = clock or SystemClock()
    engine = ProtectionEngine(
        store=store or RecordStore(logger=app.logger),
        scheduler=TimerScheduler(app=app, clock=clock, spawn=spawn, logger=app.logger),
        notifier=notifier or NotificationDispatcher(logger=app.logger),
        clock=clock,
        config=app.config,
        logger=app.logger,
    )
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_engine(app=None) -> ProtectionEngine:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]


_reconcile_lock = threading.Lock()


def ensure_reconciled(app=None) -> bool:
    """Run the start-up sweep once for the app's engine; True if it ran now.

    Every serving path calls this. Concurrent callers wait on the same lock
    and later callers find ``engine.ready`` set and return.
    """
    engine = get_engine(app)
    if engine.ready:
        return False
    with _reconcile_lock:
        if engine.ready:
            return False
        engine.reconcile()
        return True

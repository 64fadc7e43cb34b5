import heapq
import itertools
import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `whiteflag` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from whiteflag import create_app, db, socketio
from whiteflag.services.protection import init_engine

DAY_MS = 24 * 3600 * 1000
WEEK_MS = 7 * DAY_MS


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ['http://localhost:5173']
    PROTECTION_DURATION_SEC = 7 * 24 * 3600
    BOUNTY_DURATION_SEC = 7 * 24 * 3600
    WARNING_LEAD_SEC = 24 * 3600
    SERVER_TYPES = {'100x': 'PVP Chaos 100x', '25x': 'PVP 25X'}
    RULES_TEXT = 'No raiding while flagged.'
    TIMER_HEARTBEAT_SEC = 0
    RECONCILE_ON_REQUEST = False


class FakeClock:
    def __init__(self, t=0):
        self.t = t

    def now(self):
        return self.t

    def set(self, t):
        self.t = t


class ManualTimers:
    """Spawn backend that queues work until the test advances the clock."""

    def __init__(self, clock):
        self.clock = clock
        self._queue = []
        self._seq = itertools.count()

    def spawn(self, fn, delay_ms, cancelled=None):
        heapq.heappush(self._queue, (self.clock.now() + delay_ms, next(self._seq), fn))

    def queued(self):
        return len(self._queue)

    def run_due(self):
        """Run everything due at the current time, including work it schedules."""
        ran = 0
        while self._queue and self._queue[0][0] <= self.clock.now():
            _, _, fn = heapq.heappop(self._queue)
            fn()
            ran += 1
        return ran

    def advance_to(self, t):
        """Move the clock forward, stopping at each due time to run its work."""
        while self._queue and self._queue[0][0] <= t:
            due, _, fn = heapq.heappop(self._queue)
            if due > self.clock.now():
                self.clock.set(due)
            fn()
        self.clock.set(max(self.clock.now(), t))


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def _record(self, name, *args):
        self.events.append((name,) + args)

    def names(self):
        return [e[0] for e in self.events]

    def on_submitted(self, record):
        self._record('on_submitted', record.id)

    def on_approved(self, record):
        self._record('on_approved', record.id)

    def on_denied(self, record):
        self._record('on_denied', record.id)

    def on_expired(self, record):
        self._record('on_expired', record.id)

    def on_ended_early(self, record):
        self._record('on_ended_early', record.id)

    def on_warning(self, record, kind):
        self._record('on_warning', record.id, kind)

    def on_bounty_issued(self, record):
        self._record('on_bounty_issued', record.id)
        return f'ref:{record.id}'

    def on_bounty_closed(self, record, reason):
        self._record('on_bounty_closed', record.id, reason)

    def on_claim_submitted(self, claim):
        self._record('on_claim_submitted', claim.id)

    def on_claim_adjudicated(self, claim):
        self._record('on_claim_adjudicated', claim.id, claim.status)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # Test-client requests reuse the app context held below, so drop the
    # cached user and let each request load its own from the session cookie
    @application.before_request
    def _forget_cached_user():
        g.pop('_login_user', None)

    with application.app_context():
        import whiteflag.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def clock():
    return FakeClock(0)


@pytest.fixture()
def timers(clock):
    return ManualTimers(clock)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def engine(flask_app, clock, timers, notifier):
    eng = init_engine(flask_app, clock=clock, spawn=timers.spawn, notifier=notifier)
    eng.reconcile()
    return eng


@pytest.fixture()
def restart(flask_app):
    """Simulate a process restart: a fresh engine with no live timers."""
    def _restart(at, notifier=None):
        new_clock = FakeClock(at)
        new_timers = ManualTimers(new_clock)
        eng = init_engine(flask_app, clock=new_clock, spawn=new_timers.spawn,
                          notifier=notifier or RecordingNotifier())
        return eng, new_timers
    return _restart


@pytest.fixture()
def client(flask_app, engine):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    from whiteflag.models import User

    def _make(username, password='password', admin=False):
        user = User(username=username, is_admin=admin)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def login(flask_app, make_user):
    """Return a logged-in test client for a fresh user."""
    def _login(username, admin=False):
        make_user(username, admin=admin)
        c = flask_app.test_client()
        res = c.post('/login', json={'username': username, 'password': 'password'})
        assert res.status_code == 200
        return c
    return _login


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass

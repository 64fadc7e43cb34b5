"""SQLAlchemy-backed record store for requests and claims.

Reads always refresh from the database (``populate_existing``) so callers
never act on an identity-map snapshot taken before another writer committed.
Writes commit before returning; any SQLAlchemy failure is rolled back and
surfaced as ``Unavailable``.
"""
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from whiteflag import db
from whiteflag.models import ProtectionRequest, Claim, STATUS_PENDING
from .errors import NotFound, ProtectionError, Unavailable


class RecordStore:

    def __init__(self, logger=None):
        self.logger = logger
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _log(self, msg, level='info'):
        if self.logger:
            getattr(self.logger, level)(msg)

    # ---- writer locks ----

    def _lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.RLock())

    @contextmanager
    def tribe_lock(self, tribe_key: str):
        """Serialize writers of every record that belongs to one tribe."""
        lock = self._lock_for(f"tribe:{tribe_key}")
        with lock:
            yield

    # ---- transactions ----

    @contextmanager
    def transaction(self):
        """Commit on success; roll back on any error.

        Engine errors propagate unchanged, database errors become
        ``Unavailable``.
        """
        try:
            yield db.session
            db.session.commit()
        except ProtectionError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            self._log(f"[store-error] {exc}", 'error')
            raise Unavailable('record store unavailable') from exc

    def _read(self, fn):
        try:
            return fn()
        except SQLAlchemyError as exc:
            db.session.rollback()
            self._log(f"[store-error] {exc}", 'error')
            raise Unavailable('record store unavailable') from exc

    # ---- requests ----

    def get_request(self, record_id) -> Optional[ProtectionRequest]:
        if not record_id:
            return None
        return self._read(lambda: db.session.get(ProtectionRequest, record_id, populate_existing=True))

    def require_request(self, record_id) -> ProtectionRequest:
        record = self.get_request(record_id)
        if record is None:
            raise NotFound(f'no record with id {record_id}')
        return record

    def all_requests(self) -> List[ProtectionRequest]:
        return self._read(lambda: ProtectionRequest.query.populate_existing().all())

    def requests_for_tribe(self, tribe_key) -> List[ProtectionRequest]:
        return self._read(
            lambda: ProtectionRequest.query.filter_by(tribe_key=tribe_key).populate_existing().all()
        )

    def pending_for_requester(self, requester) -> List[ProtectionRequest]:
        return self._read(
            lambda: ProtectionRequest.query.filter_by(requested_by=requester, status=STATUS_PENDING)
            .populate_existing().all()
        )

    def put_request(self, record: ProtectionRequest) -> ProtectionRequest:
        with self.transaction() as session:
            session.add(record)
        return record

    def update_request(self, record_id, guard: Callable, mutate: Callable, extra=()) -> ProtectionRequest:
        """Load the latest record, validate ``guard``, apply ``mutate``, persist.

        ``guard(record)`` raises a ``ProtectionError`` when the transition is
        not allowed; nothing is written in that case. Objects in ``extra``
        (e.g. a claim changing alongside its bounty) commit in the same
        transaction.
        """
        with self.transaction() as session:
            record = self.require_request(record_id)
            guard(record)
            mutate(record)
            session.add(record)
            for obj in extra:
                session.add(obj)
        return record

    # ---- claims ----

    def get_claim(self, claim_id) -> Optional[Claim]:
        if not claim_id:
            return None
        return self._read(lambda: db.session.get(Claim, claim_id, populate_existing=True))

    def require_claim(self, claim_id) -> Claim:
        claim = self.get_claim(claim_id)
        if claim is None:
            raise NotFound(f'no claim with id {claim_id}')
        return claim

    def all_claims(self) -> List[Claim]:
        return self._read(lambda: Claim.query.populate_existing().all())

    def claims_for(self, record_id) -> List[Claim]:
        return self._read(
            lambda: Claim.query.filter_by(bounty_record_id=record_id)
            .order_by(Claim.submitted_at).populate_existing().all()
        )

    def put_claim(self, claim: Claim) -> Claim:
        with self.transaction() as session:
            session.add(claim)
        return claim

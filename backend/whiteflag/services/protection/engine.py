"""Lifecycle state machine for White Flag protection, bounties and claims.

Every mutating operation follows the same discipline:

1. take the tribe's writer lock
2. re-read the latest record from the store
3. validate the guard (raise ``Conflict`` / ``AlreadyInState`` otherwise)
4. mutate and persist in one commit
5. arm or cancel the record's timers, then notify

Timers and the reconciliation sweep only ever re-enter through the terminal
transitions below (``expire_request``, ``expire_bounty``, ``warn_request``,
``warn_bounty``), which re-validate the record they are handed.
"""
from datetime import datetime, timezone
from typing import List, Optional

from whiteflag.models import (
    ProtectionRequest, Claim,
    STATUS_PENDING, STATUS_APPROVED, STATUS_DENIED, STATUS_EXPIRED,
    STATUS_ENDED_EARLY, STATUS_BOUNTY_ONLY,
    CLAIM_PENDING, CLAIM_APPROVED, CLAIM_DENIED,
)
from .errors import AlreadyInState, Conflict, NotFound, ValidationError
from .keys import normalize_server_type, normalize_tribe_key
from .timers import EXPIRY, WARNING

# Bounty closure reasons passed to the notifier
CLOSED_EXPIRED = 'expired'
CLOSED_REMOVED = 'removed'
CLOSED_CLAIMED = 'claimed'


def fmt_ms(ms) -> str:
    if ms is None:
        return 'never'
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).strftime('%Y-%m-%d %H:%M UTC')


def _required(value, field):
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise ValidationError(f'{field} is required')
    return value


class ProtectionEngine:

    def __init__(self, store, scheduler, notifier, clock, config=None, logger=None):
        config = config or {}
        self.store = store
        self.scheduler = scheduler
        self.notifier = notifier
        self.clock = clock
        self.logger = logger
        self.protection_ms = int(config.get('PROTECTION_DURATION_SEC', 7 * 24 * 3600)) * 1000
        self.bounty_ms = int(config.get('BOUNTY_DURATION_SEC', 7 * 24 * 3600)) * 1000
        self.warning_lead_ms = int(config.get('WARNING_LEAD_SEC', 24 * 3600)) * 1000
        self.server_types = config.get('SERVER_TYPES') or {}
        # Set by the reconciliation sweep; commands are refused until then
        self.ready = False

    # =========================================================================
    # helpers
    # =========================================================================

    def _log(self, msg, level='info'):
        if self.logger:
            getattr(self.logger, level)(msg)

    def _now(self) -> int:
        return self.clock.now()

    def _notify(self, event, *args):
        handler = getattr(self.notifier, event, None)
        if handler is None:
            return None
        try:
            return handler(*args)
        except Exception as exc:
            self._log(f"[notify-fail] event={event} error={exc!r}", 'warning')
            return None

    def _server_type(self, value):
        try:
            return normalize_server_type(value, self.server_types)
        except KeyError:
            expected = ', '.join(sorted(self.server_types)) or 'none'
            raise ValidationError(f'unknown server type {value!r} (expected one of: {expected})')

    def _active_protection(self, tribe_key, now, exclude_id=None) -> Optional[ProtectionRequest]:
        for r in self.store.requests_for_tribe(tribe_key):
            if r.id != exclude_id and r.is_protected(now, self.protection_ms):
                return r
        return None

    def _live_bounties(self, tribe_key, now) -> List[ProtectionRequest]:
        """Live bounties of a tribe, authoritative (most recently started) first."""
        live = [r for r in self.store.requests_for_tribe(tribe_key) if r.bounty_is_live(now)]
        live.sort(key=lambda r: (r.bounty_started_at or 0, r.id), reverse=True)
        return live

    def _resolve(self, tribe_or_id):
        """Resolve a record id or tribe name into (tribe_key, tribe_name, record-or-None)."""
        target = _required(tribe_or_id, 'tribe or record id')
        record = self.store.get_request(target)
        if record is not None:
            return record.tribe_key, record.tribe_name, record
        return normalize_tribe_key(target), target, None

    def _arm_request_timers(self, record):
        ends_at = record.approved_at + self.protection_ms
        rid = record.id
        self.scheduler.arm(rid, EXPIRY, ends_at, lambda: self.expire_request(rid))
        if record.warned_at is None:
            self.scheduler.arm(rid, WARNING, ends_at - self.warning_lead_ms, lambda: self.warn_request(rid))
        else:
            self.scheduler.cancel(rid, WARNING, quiet=True)

    def _arm_bounty_timers(self, record):
        rid = record.id
        self.scheduler.arm(rid, EXPIRY, record.bounty_ends_at, lambda: self.expire_bounty(rid))
        if record.bounty_warned_at is None:
            self.scheduler.arm(rid, WARNING, record.bounty_ends_at - self.warning_lead_ms,
                               lambda: self.warn_bounty(rid))
        else:
            self.scheduler.cancel(rid, WARNING, quiet=True)

    def arm_timers(self, record, now=None) -> int:
        """Arm whatever timers the record's current state calls for; returns how many."""
        now = self._now() if now is None else now
        if record.is_protected(now, self.protection_ms):
            self._arm_request_timers(record)
            return 1 if record.warned_at is not None else 2
        if record.bounty_is_live(now):
            self._arm_bounty_timers(record)
            return 1 if record.bounty_warned_at is not None else 2
        return 0

    def _start_bounty(self, record, actor, reason, now):
        record.bounty_active = True
        record.bounty_started_at = now
        record.bounty_ends_at = now + self.bounty_ms
        record.bounty_started_by = actor
        record.bounty_reason = reason or None
        record.bounty_locked = False
        record.bounty_locked_by_claim_id = None

    def _refresh_bounty(self, record_id, actor, reason, now):
        def guard(r):
            if not r.bounty_is_live(now):
                raise Conflict(f'bounty on record {r.id} is no longer active')

        def mutate(r):
            r.bounty_ends_at = now + self.bounty_ms
            if reason:
                r.bounty_reason = reason

        record = self.store.update_request(record_id, guard, mutate)
        self._arm_bounty_timers(record)
        self._log(f"[bounty-refresh] record={record.id} tribe={record.tribe_key} by={actor} "
                  f"ends_at={record.bounty_ends_at}")
        return record

    def _announce_bounty(self, record):
        ref = self._notify('on_bounty_issued', record)
        if ref and ref != record.bounty_announce_ref:
            def mutate(r):
                r.bounty_announce_ref = ref
            record = self.store.update_request(record.id, lambda r: None, mutate)
        return record

    # =========================================================================
    # queries
    # =========================================================================

    def get_request(self, record_id) -> ProtectionRequest:
        return self.store.require_request(record_id)

    def get_claim(self, claim_id) -> Claim:
        return self.store.require_claim(claim_id)

    def claims_for(self, record_id) -> List[Claim]:
        return self.store.claims_for(record_id)

    def find_live_bounty(self, tribe_key) -> Optional[ProtectionRequest]:
        live = self._live_bounties(tribe_key, self._now())
        return live[0] if live else None

    def list_active_protections(self) -> List[ProtectionRequest]:
        now = self._now()
        active = [r for r in self.store.all_requests() if r.is_protected(now, self.protection_ms)]
        return sorted(active, key=lambda r: r.approved_at)

    def list_active_bounties(self) -> List[ProtectionRequest]:
        now = self._now()
        live = [r for r in self.store.all_requests() if r.bounty_is_live(now)]
        return sorted(live, key=lambda r: r.bounty_ends_at)

    # =========================================================================
    # protection requests
    # =========================================================================

    def submit_request(self, tribe_name, requester, ign=None, server_type=None, map=None, notes=None):
        tribe_name = _required(tribe_name, 'tribe name')
        requester = _required(requester, 'requester')
        ign = _required(ign, 'ign')
        server = self._server_type(server_type)
        tribe_key = normalize_tribe_key(tribe_name)

        with self.store.tribe_lock(tribe_key):
            now = self._now()
            mine = self.store.pending_for_requester(requester)
            if mine:
                raise Conflict(f'{requester} already has a pending request ({mine[0].id})')
            for r in self.store.requests_for_tribe(tribe_key):
                if r.status == STATUS_PENDING:
                    raise Conflict(f'tribe {r.tribe_name} already has a pending request ({r.id})')
                if r.is_protected(now, self.protection_ms):
                    raise Conflict(
                        f'tribe {r.tribe_name} already has an active protection ending at '
                        f'{fmt_ms(r.protection_ends_at(self.protection_ms))}'
                    )
            record = ProtectionRequest(
                status=STATUS_PENDING,
                tribe_key=tribe_key,
                tribe_name=tribe_name,
                ign=ign,
                server_type=server,
                map=(map or '').strip() or None,
                notes=(notes or '').strip() or None,
                requested_by=requester,
                requested_at=now,
            )
            self.store.put_request(record)

        self._log(f"[wf-submit] record={record.id} tribe={tribe_key} by={requester}")
        self._notify('on_submitted', record)
        return record

    def approve_request(self, record_id, actor):
        actor = _required(actor, 'actor')
        record = self.store.require_request(record_id)
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()

            def guard(r):
                if r.status == STATUS_APPROVED:
                    raise AlreadyInState(f'request {r.id} is already approved')
                if r.status != STATUS_PENDING:
                    raise Conflict(f'request {r.id} is {r.status}, expected pending')
                # Re-checked here: another request may have been approved since submission
                other = self._active_protection(r.tribe_key, now, exclude_id=r.id)
                if other is not None:
                    raise Conflict(
                        f'tribe {other.tribe_name} already has an active protection ending at '
                        f'{fmt_ms(other.protection_ends_at(self.protection_ms))}'
                    )

            def mutate(r):
                r.status = STATUS_APPROVED
                r.approved_by = actor
                r.approved_at = now

            record = self.store.update_request(record_id, guard, mutate)
            self._arm_request_timers(record)

        self._log(f"[wf-approve] record={record.id} tribe={record.tribe_key} by={actor} "
                  f"ends_at={record.protection_ends_at(self.protection_ms)}")
        self._notify('on_approved', record)
        return record

    def deny_request(self, record_id, actor):
        actor = _required(actor, 'actor')
        record = self.store.require_request(record_id)
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()

            def guard(r):
                if r.status == STATUS_DENIED:
                    raise AlreadyInState(f'request {r.id} is already denied')
                if r.status != STATUS_PENDING:
                    raise Conflict(f'request {r.id} is {r.status}, expected pending')

            def mutate(r):
                r.status = STATUS_DENIED
                r.denied_by = actor
                r.denied_at = now

            record = self.store.update_request(record_id, guard, mutate)

        self._log(f"[wf-deny] record={record.id} tribe={record.tribe_key} by={actor}")
        self._notify('on_denied', record)
        return record

    def end_request_early(self, record_id, actor, reason=None):
        """Lift a White Flag early: open season plus a one week bounty."""
        actor = _required(actor, 'actor')
        record = self.store.require_request(record_id)
        refreshed = None
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            others = [r for r in self._live_bounties(record.tribe_key, now) if r.id != record.id]

            def guard(r):
                if r.status == STATUS_ENDED_EARLY:
                    raise AlreadyInState(f'request {r.id} was already ended early')
                if r.status != STATUS_APPROVED:
                    raise Conflict(f'request {r.id} is {r.status}, expected approved')
                if not r.is_protected(now, self.protection_ms):
                    raise Conflict(f'protection {r.id} already ran out at '
                                   f'{fmt_ms(r.protection_ends_at(self.protection_ms))}')

            def mutate(r):
                r.status = STATUS_ENDED_EARLY
                r.ended_early_by = actor
                r.ended_early_at = now
                r.end_reason = reason or None
                if not others:
                    self._start_bounty(r, actor, reason, now)

            record = self.store.update_request(record_id, guard, mutate)
            self.scheduler.cancel_record(record.id)
            if others:
                # The tribe already has a live bounty elsewhere; extend that one
                refreshed = self._refresh_bounty(others[0].id, actor, reason, now)
                refreshed = self._announce_bounty(refreshed)
            else:
                self._arm_bounty_timers(record)
                record = self._announce_bounty(record)

        self._log(f"[wf-end-early] record={record.id} tribe={record.tribe_key} by={actor} "
                  f"bounty={(refreshed or record).id}")
        self._notify('on_ended_early', record)
        return record

    # =========================================================================
    # bounties
    # =========================================================================

    def add_or_refresh_bounty(self, tribe_or_id, actor, reason=None, ign=None, server_type=None):
        actor = _required(actor, 'actor')
        tribe_key, tribe_name, _ = self._resolve(tribe_or_id)
        server = self._server_type(server_type)
        with self.store.tribe_lock(tribe_key):
            now = self._now()
            live = self._live_bounties(tribe_key, now)
            if live:
                record = self._refresh_bounty(live[0].id, actor, reason, now)
            else:
                record = ProtectionRequest(
                    status=STATUS_BOUNTY_ONLY,
                    tribe_key=tribe_key,
                    tribe_name=tribe_name,
                    ign=(ign or '').strip() or None,
                    server_type=server,
                    requested_by=actor,
                    requested_at=now,
                )
                self._start_bounty(record, actor, reason, now)
                self.store.put_request(record)
                self._arm_bounty_timers(record)
                self._log(f"[bounty-issue] record={record.id} tribe={tribe_key} by={actor} "
                          f"ends_at={record.bounty_ends_at}")
            record = self._announce_bounty(record)
        return record

    def remove_bounty(self, tribe_or_id, actor):
        actor = _required(actor, 'actor')
        tribe_key, tribe_name, by_id = self._resolve(tribe_or_id)
        with self.store.tribe_lock(tribe_key):
            now = self._now()
            if by_id is not None and by_id.has_bounty:
                target = by_id
            else:
                live = self._live_bounties(tribe_key, now)
                if not live:
                    raise Conflict(f'no active bounty for {tribe_name}')
                target = live[0]

            def guard(r):
                if r.bounty_removed_at is not None:
                    raise AlreadyInState(f'bounty on record {r.id} was already removed')
                if not r.bounty_is_live(now):
                    raise Conflict(f'bounty on record {r.id} is not active')

            def mutate(r):
                r.bounty_active = False
                r.bounty_removed_at = now
                r.bounty_removed_by = actor
                r.bounty_locked = False
                r.bounty_locked_by_claim_id = None

            record = self.store.update_request(target.id, guard, mutate)
            self.scheduler.cancel_record(record.id)

        self._log(f"[bounty-remove] record={record.id} tribe={record.tribe_key} by={actor}")
        self._notify('on_bounty_closed', record, CLOSED_REMOVED)
        return record

    # =========================================================================
    # claims
    # =========================================================================

    def submit_claim(self, bounty_ref, claimant, claimant_tag=None, target_tag=None, proof=None, notes=None):
        claimant = _required(claimant, 'claimant')
        claimant_tag = _required(claimant_tag, 'claimant tag')
        target_tag = _required(target_tag, 'target tag')
        proof = _required(proof, 'proof')
        tribe_key, tribe_name, by_id = self._resolve(bounty_ref)
        with self.store.tribe_lock(tribe_key):
            now = self._now()
            if by_id is not None and by_id.has_bounty:
                record_id = by_id.id
            else:
                live = self._live_bounties(tribe_key, now)
                if not live:
                    raise NotFound(f'no active bounty for {tribe_name}')
                record_id = live[0].id

            claim = Claim(
                bounty_record_id=record_id,
                tribe_key=tribe_key,
                submitted_by=claimant,
                submitted_at=now,
                claimant_tag=claimant_tag,
                target_tag=target_tag,
                proof=proof,
                notes=(notes or '').strip() or None,
                status=CLAIM_PENDING,
            )

            def guard(r):
                if not r.bounty_is_live(now):
                    raise Conflict(f'bounty for {r.tribe_name} is not active')
                if r.bounty_locked:
                    raise Conflict(f'bounty for {r.tribe_name} is locked by pending claim '
                                   f'{r.bounty_locked_by_claim_id}')

            def mutate(r):
                r.bounty_locked = True
                r.bounty_locked_by_claim_id = claim.id

            self.store.update_request(record_id, guard, mutate, extra=(claim,))

        self._log(f"[claim-submit] claim={claim.id} record={record_id} by={claimant}")
        self._notify('on_claim_submitted', claim)
        return claim

    def approve_claim(self, claim_id, actor):
        actor = _required(actor, 'actor')
        claim = self.store.require_claim(claim_id)
        record = self.store.require_request(claim.bounty_record_id)
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            claim = self.store.require_claim(claim_id)
            if claim.status == CLAIM_APPROVED:
                raise AlreadyInState(f'claim {claim.id} is already approved')
            if claim.status != CLAIM_PENDING:
                raise Conflict(f'claim {claim.id} is {claim.status}, expected pending')

            def guard(r):
                if not r.bounty_is_live(now):
                    raise Conflict(f'bounty for {r.tribe_name} is no longer active; claim {claim.id} is moot')
                if r.bounty_locked_by_claim_id != claim.id:
                    raise Conflict(f'bounty for {r.tribe_name} is not locked by claim {claim.id}')

            def mutate(r):
                claim.status = CLAIM_APPROVED
                claim.approved_by = actor
                claim.approved_at = now
                # Closed for good: stays locked so it cannot be claimed again
                r.bounty_active = False
                r.bounty_claimed_at = now
                r.bounty_claimed_by = claim.submitted_by

            record = self.store.update_request(record.id, guard, mutate, extra=(claim,))
            self.scheduler.cancel_record(record.id)

        self._log(f"[claim-approve] claim={claim.id} record={record.id} by={actor}")
        self._notify('on_claim_adjudicated', claim)
        self._notify('on_bounty_closed', record, CLOSED_CLAIMED)
        return claim

    def deny_claim(self, claim_id, actor):
        actor = _required(actor, 'actor')
        claim = self.store.require_claim(claim_id)
        record = self.store.require_request(claim.bounty_record_id)
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            claim = self.store.require_claim(claim_id)
            if claim.status == CLAIM_DENIED:
                raise AlreadyInState(f'claim {claim.id} is already denied')
            if claim.status != CLAIM_PENDING:
                raise Conflict(f'claim {claim.id} is {claim.status}, expected pending')

            def mutate(r):
                claim.status = CLAIM_DENIED
                claim.denied_by = actor
                claim.denied_at = now
                if r.bounty_locked_by_claim_id == claim.id and r.bounty_claimed_at is None:
                    r.bounty_locked = False
                    r.bounty_locked_by_claim_id = None

            self.store.update_request(record.id, lambda r: None, mutate, extra=(claim,))

        self._log(f"[claim-deny] claim={claim.id} record={record.id} by={actor}")
        self._notify('on_claim_adjudicated', claim)
        return claim

    # =========================================================================
    # terminal transitions (timers and reconciliation)
    # =========================================================================

    def expire_request(self, record_id):
        """Expire an approved request whose window has ended; no-op otherwise."""
        record = self.store.get_request(record_id)
        if record is None:
            return None
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            record = self.store.get_request(record_id)
            if record is None or record.status != STATUS_APPROVED:
                self._log(f"[timer-abort] record={record_id} expiry: not approved")
                return None
            if record.is_protected(now, self.protection_ms):
                self._arm_request_timers(record)
                return None

            def guard(r):
                if r.status != STATUS_APPROVED:
                    raise Conflict(f'request {r.id} is {r.status}, expected approved')

            def mutate(r):
                r.status = STATUS_EXPIRED
                r.expired_at = now

            record = self.store.update_request(record_id, guard, mutate)
            self.scheduler.cancel_record(record.id)

        self._log(f"[wf-expire] record={record.id} tribe={record.tribe_key} at={now}")
        self._notify('on_expired', record)
        return record

    def expire_bounty(self, record_id):
        """Close an active bounty whose window has ended; no-op otherwise."""
        record = self.store.get_request(record_id)
        if record is None:
            return None
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            record = self.store.get_request(record_id)
            if record is None or not record.bounty_active:
                self._log(f"[timer-abort] record={record_id} bounty expiry: not active")
                return None
            if record.bounty_is_live(now):
                self._arm_bounty_timers(record)
                return None

            def guard(r):
                if not r.bounty_active:
                    raise Conflict(f'bounty on record {r.id} is not active')

            def mutate(r):
                # A pending claim holding the lock is left orphaned
                r.bounty_active = False
                r.bounty_expired_at = now

            record = self.store.update_request(record_id, guard, mutate)
            self.scheduler.cancel_record(record.id)

        self._log(f"[bounty-expire] record={record.id} tribe={record.tribe_key} at={now}")
        self._notify('on_bounty_closed', record, CLOSED_EXPIRED)
        return record

    def warn_request(self, record_id):
        record = self.store.get_request(record_id)
        if record is None:
            return None
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            record = self.store.get_request(record_id)
            if record is None or record.warned_at is not None:
                return None
            if not record.is_protected(now, self.protection_ms):
                return None
            due = record.approved_at + self.protection_ms - self.warning_lead_ms
            if now < due:
                self.scheduler.arm(record.id, WARNING, due, lambda: self.warn_request(record_id))
                return None

            def mutate(r):
                r.warned_at = now

            record = self.store.update_request(record_id, lambda r: None, mutate)

        self._log(f"[wf-warn] record={record.id} tribe={record.tribe_key}")
        self._notify('on_warning', record, 'protection')
        return record

    def warn_bounty(self, record_id):
        record = self.store.get_request(record_id)
        if record is None:
            return None
        with self.store.tribe_lock(record.tribe_key):
            now = self._now()
            record = self.store.get_request(record_id)
            if record is None or record.bounty_warned_at is not None:
                return None
            if not record.bounty_is_live(now):
                return None
            due = record.bounty_ends_at - self.warning_lead_ms
            if now < due:
                self.scheduler.arm(record.id, WARNING, due, lambda: self.warn_bounty(record_id))
                return None

            def mutate(r):
                r.bounty_warned_at = now

            record = self.store.update_request(record_id, lambda r: None, mutate)

        self._log(f"[bounty-warn] record={record.id} tribe={record.tribe_key}")
        self._notify('on_warning', record, 'bounty')
        return record

    def reconcile(self):
        from .reconcile import reconcile
        return reconcile(self)

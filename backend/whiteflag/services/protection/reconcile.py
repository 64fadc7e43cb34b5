"""Start-up reconciliation.

Timers live only in process memory, so after a restart persisted state and
armed timers disagree. This sweep runs once, before any command is accepted:

1. load every request
2. approved requests whose window has ended -> ``expired``
3. active bounties whose window has ended -> closed (``expired``)
4. everything still live gets its expiry timer, and its warning timer unless
   it was already warned; a warning whose time has passed is armed due-now so
   it still fires once
"""
from whiteflag.models import STATUS_APPROVED
from .errors import AlreadyInState


def reconcile(engine):
    if engine.ready:
        raise AlreadyInState('reconciliation already ran for this engine')

    log = engine.logger
    now = engine.clock.now()
    expired, closed, armed = [], [], 0

    records = engine.store.all_requests()
    if log:
        log.info(f"[reconcile] start records={len(records)} now={now}")

    for record in records:
        if record.status == STATUS_APPROVED and not record.is_protected(now, engine.protection_ms):
            if engine.expire_request(record.id) is not None:
                expired.append(record.id)
        if record.bounty_active and not record.bounty_is_live(now):
            if engine.expire_bounty(record.id) is not None:
                closed.append(record.id)

    for record in engine.store.all_requests():
        armed += engine.arm_timers(record, now)

    engine.ready = True
    summary = {'expired_requests': expired, 'closed_bounties': closed, 'armed_timers': armed}
    if log:
        log.info(f"[reconcile] done expired={len(expired)} closed={len(closed)} armed={armed}")
    return summary

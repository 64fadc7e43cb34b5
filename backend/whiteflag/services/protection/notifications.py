from whiteflag import socketio

NAMESPACE = '/ws'
ANNOUNCE_ROOM = 'announcements'
ADMIN_ROOM = 'admins'


class NotificationDispatcher:
    """Pushes lifecycle events to Socket.IO rooms.

    Fire-and-forget: an emit failure is logged and never reaches the engine.
    """

    def __init__(self, logger=None):
        self.logger = logger

    def _emit(self, event, payload, room):
        try:
            socketio.emit(event, payload, to=room, namespace=NAMESPACE)
        except Exception as exc:
            if self.logger:
                self.logger.warning(f"[notify-fail] event={event} room={room} error={exc!r}")

    def on_submitted(self, record):
        self._emit('protection_submitted', record.to_dict(), ADMIN_ROOM)

    def on_approved(self, record):
        self._emit('protection_approved', record.to_dict(), ANNOUNCE_ROOM)

    def on_denied(self, record):
        self._emit('protection_denied', record.to_dict(), ADMIN_ROOM)

    def on_expired(self, record):
        self._emit('protection_expired', record.to_dict(), ANNOUNCE_ROOM)

    def on_ended_early(self, record):
        # Open season
        self._emit('protection_ended_early', record.to_dict(), ANNOUNCE_ROOM)

    def on_warning(self, record, kind):
        payload = record.to_dict()
        payload['warning_for'] = kind
        self._emit('warning', payload, ANNOUNCE_ROOM)

    def on_bounty_issued(self, record):
        """Announce a new or refreshed bounty; returns the announcement ref."""
        ref = f"{ANNOUNCE_ROOM}:bounty:{record.id}"
        payload = record.bounty_to_dict()
        payload['announce_ref'] = ref
        self._emit('bounty_issued', payload, ANNOUNCE_ROOM)
        return ref

    def on_bounty_closed(self, record, reason):
        payload = record.bounty_to_dict()
        payload['closed_reason'] = reason
        self._emit('bounty_closed', payload, ANNOUNCE_ROOM)

    def on_claim_submitted(self, claim):
        self._emit('claim_submitted', claim.to_dict(), ADMIN_ROOM)

    def on_claim_adjudicated(self, claim):
        self._emit('claim_adjudicated', claim.to_dict(), ADMIN_ROOM)

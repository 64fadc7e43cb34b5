from whiteflag import db, bcrypt
from flask_login import UserMixin
import string
import random

# Request statuses
STATUS_PENDING = 'pending'
STATUS_APPROVED = 'approved'
STATUS_DENIED = 'denied'
STATUS_EXPIRED = 'expired'
STATUS_ENDED_EARLY = 'ended_early'
STATUS_BOUNTY_ONLY = 'bounty_only'

REQUEST_STATUSES = {
    STATUS_PENDING, STATUS_APPROVED, STATUS_DENIED,
    STATUS_EXPIRED, STATUS_ENDED_EARLY, STATUS_BOUNTY_ONLY,
}

# Claim statuses
CLAIM_PENDING = 'pending'
CLAIM_APPROVED = 'approved'
CLAIM_DENIED = 'denied'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'is_admin': bool(self.is_admin),
        }


def generate_record_id(model, length=8):
    """Generate a unique, short record id for the given model."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if db.session.get(model, code) is None:
            return code


class ProtectionRequest(db.Model):
    """A White Flag application or a manually issued bounty.

    The bounty sub-record lives on the same row (``bounty_*`` columns); it
    exists once ``bounty_started_at`` is set.
    """
    __tablename__ = 'protection_request'
    id = db.Column(db.String(16), primary_key=True)
    status = db.Column(db.String(32), nullable=False, default=STATUS_PENDING, index=True)
    tribe_key = db.Column(db.String(128), nullable=False, index=True)
    tribe_name = db.Column(db.String(128), nullable=False)
    ign = db.Column(db.String(128), nullable=True)
    server_type = db.Column(db.String(64), nullable=True)
    map = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.String(64), nullable=False, index=True)
    requested_at = db.Column(db.BigInteger, nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.BigInteger, nullable=True)
    denied_by = db.Column(db.String(64), nullable=True)
    denied_at = db.Column(db.BigInteger, nullable=True)
    expired_at = db.Column(db.BigInteger, nullable=True)
    ended_early_by = db.Column(db.String(64), nullable=True)
    ended_early_at = db.Column(db.BigInteger, nullable=True)
    end_reason = db.Column(db.Text, nullable=True)
    warned_at = db.Column(db.BigInteger, nullable=True)

    # Bounty sub-record
    bounty_active = db.Column(db.Boolean, default=False, nullable=False)
    bounty_started_at = db.Column(db.BigInteger, nullable=True)
    bounty_ends_at = db.Column(db.BigInteger, nullable=True)
    bounty_started_by = db.Column(db.String(64), nullable=True)
    bounty_reason = db.Column(db.Text, nullable=True)
    bounty_locked = db.Column(db.Boolean, default=False, nullable=False)
    bounty_locked_by_claim_id = db.Column(db.String(16), nullable=True)
    bounty_claimed_at = db.Column(db.BigInteger, nullable=True)
    bounty_claimed_by = db.Column(db.String(64), nullable=True)
    bounty_removed_at = db.Column(db.BigInteger, nullable=True)
    bounty_removed_by = db.Column(db.String(64), nullable=True)
    bounty_expired_at = db.Column(db.BigInteger, nullable=True)
    bounty_warned_at = db.Column(db.BigInteger, nullable=True)
    bounty_announce_ref = db.Column(db.String(128), nullable=True)

    claims = db.relationship('Claim', back_populates='bounty_record', lazy='dynamic')

    def __init__(self, **kwargs):
        super(ProtectionRequest, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_record_id(ProtectionRequest)

    @property
    def has_bounty(self):
        return self.bounty_started_at is not None

    def protection_ends_at(self, duration_ms):
        if self.approved_at is None:
            return None
        return self.approved_at + duration_ms

    def is_protected(self, now, duration_ms):
        """Approved and still inside its protection window."""
        return self.status == STATUS_APPROVED and self.approved_at + duration_ms > now

    def bounty_is_live(self, now):
        """Active bounty whose window has not ended."""
        return bool(self.bounty_active) and self.bounty_ends_at is not None and self.bounty_ends_at > now

    def bounty_to_dict(self):
        if not self.has_bounty:
            return None
        return {
            'record_id': self.id,
            'tribe_name': self.tribe_name,
            'tribe_key': self.tribe_key,
            'active': bool(self.bounty_active),
            'started_at': self.bounty_started_at,
            'ends_at': self.bounty_ends_at,
            'started_by': self.bounty_started_by,
            'reason': self.bounty_reason,
            'locked': bool(self.bounty_locked),
            'locked_by_claim_id': self.bounty_locked_by_claim_id,
            'claimed_at': self.bounty_claimed_at,
            'claimed_by': self.bounty_claimed_by,
            'removed_at': self.bounty_removed_at,
            'removed_by': self.bounty_removed_by,
            'expired_at': self.bounty_expired_at,
            'warned_at': self.bounty_warned_at,
            'announce_ref': self.bounty_announce_ref,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'tribe_key': self.tribe_key,
            'tribe_name': self.tribe_name,
            'ign': self.ign,
            'server_type': self.server_type,
            'map': self.map,
            'notes': self.notes,
            'requested_by': self.requested_by,
            'requested_at': self.requested_at,
            'approved_by': self.approved_by,
            'approved_at': self.approved_at,
            'denied_by': self.denied_by,
            'denied_at': self.denied_at,
            'expired_at': self.expired_at,
            'ended_early_by': self.ended_early_by,
            'ended_early_at': self.ended_early_at,
            'end_reason': self.end_reason,
            'warned_at': self.warned_at,
            'bounty': self.bounty_to_dict(),
        }


class Claim(db.Model):
    __tablename__ = 'claim'
    id = db.Column(db.String(16), primary_key=True)
    bounty_record_id = db.Column(db.String(16), db.ForeignKey('protection_request.id'), nullable=False, index=True)
    tribe_key = db.Column(db.String(128), nullable=False)
    submitted_by = db.Column(db.String(64), nullable=False)
    submitted_at = db.Column(db.BigInteger, nullable=False)
    claimant_tag = db.Column(db.String(128), nullable=False)
    target_tag = db.Column(db.String(128), nullable=False)
    proof = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(32), nullable=False, default=CLAIM_PENDING, index=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.BigInteger, nullable=True)
    denied_by = db.Column(db.String(64), nullable=True)
    denied_at = db.Column(db.BigInteger, nullable=True)

    bounty_record = db.relationship('ProtectionRequest', back_populates='claims')

    def __init__(self, **kwargs):
        super(Claim, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_record_id(Claim)

    def to_dict(self):
        return {
            'id': self.id,
            'bounty_record_id': self.bounty_record_id,
            'tribe_key': self.tribe_key,
            'submitted_by': self.submitted_by,
            'submitted_at': self.submitted_at,
            'claimant_tag': self.claimant_tag,
            'target_tag': self.target_tag,
            'proof': self.proof,
            'notes': self.notes,
            'status': self.status,
            'approved_by': self.approved_by,
            'approved_at': self.approved_at,
            'denied_by': self.denied_by,
            'denied_at': self.denied_at,
        }

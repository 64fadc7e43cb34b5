"""Typed commands accepted by the protection engine.

Each command kind is a dataclass carrying exactly the fields its operation
needs. ``parse_command`` builds one from a JSON payload; ``dispatch`` runs it
through the single handler table.
"""
from dataclasses import MISSING, dataclass, fields
from typing import Any, ClassVar, Dict, Optional

from .errors import Unavailable, ValidationError


@dataclass
class SubmitRequest:
    kind: ClassVar[str] = 'submit_request'
    admin_only: ClassVar[bool] = False
    tribe_name: str
    requester: str
    ign: str
    server_type: Optional[str] = None
    map: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ApproveRequest:
    kind: ClassVar[str] = 'approve_request'
    admin_only: ClassVar[bool] = True
    request_id: str
    actor: str


@dataclass
class DenyRequest:
    kind: ClassVar[str] = 'deny_request'
    admin_only: ClassVar[bool] = True
    request_id: str
    actor: str


@dataclass
class EndRequestEarly:
    kind: ClassVar[str] = 'end_request_early'
    admin_only: ClassVar[bool] = True
    request_id: str
    actor: str
    reason: Optional[str] = None


@dataclass
class AddOrRefreshBounty:
    kind: ClassVar[str] = 'add_or_refresh_bounty'
    admin_only: ClassVar[bool] = True
    target: str
    actor: str
    reason: Optional[str] = None
    ign: Optional[str] = None
    server_type: Optional[str] = None


@dataclass
class RemoveBounty:
    kind: ClassVar[str] = 'remove_bounty'
    admin_only: ClassVar[bool] = True
    target: str
    actor: str


@dataclass
class SubmitClaim:
    kind: ClassVar[str] = 'submit_claim'
    admin_only: ClassVar[bool] = False
    target: str
    claimant: str
    claimant_tag: str
    target_tag: str
    proof: str
    notes: Optional[str] = None


@dataclass
class ApproveClaim:
    kind: ClassVar[str] = 'approve_claim'
    admin_only: ClassVar[bool] = True
    claim_id: str
    actor: str


@dataclass
class DenyClaim:
    kind: ClassVar[str] = 'deny_claim'
    admin_only: ClassVar[bool] = True
    claim_id: str
    actor: str


HANDLERS = {
    SubmitRequest: lambda e, c: e.submit_request(
        c.tribe_name, c.requester, ign=c.ign, server_type=c.server_type, map=c.map, notes=c.notes),
    ApproveRequest: lambda e, c: e.approve_request(c.request_id, c.actor),
    DenyRequest: lambda e, c: e.deny_request(c.request_id, c.actor),
    EndRequestEarly: lambda e, c: e.end_request_early(c.request_id, c.actor, c.reason),
    AddOrRefreshBounty: lambda e, c: e.add_or_refresh_bounty(
        c.target, c.actor, reason=c.reason, ign=c.ign, server_type=c.server_type),
    RemoveBounty: lambda e, c: e.remove_bounty(c.target, c.actor),
    SubmitClaim: lambda e, c: e.submit_claim(
        c.target, c.claimant, claimant_tag=c.claimant_tag, target_tag=c.target_tag,
        proof=c.proof, notes=c.notes),
    ApproveClaim: lambda e, c: e.approve_claim(c.claim_id, c.actor),
    DenyClaim: lambda e, c: e.deny_claim(c.claim_id, c.actor),
}

COMMANDS = {cls.kind: cls for cls in HANDLERS}


def parse_command(kind: str, payload: Dict[str, Any]):
    """Build the command for ``kind`` from ``payload``; unknown keys are ignored."""
    cls = COMMANDS.get(kind)
    if cls is None:
        raise ValidationError(f'unknown command {kind!r}')
    payload = payload or {}
    values = {}
    missing = []
    for f in fields(cls):
        value = payload.get(f.name)
        if isinstance(value, str):
            value = value.strip()
        required = f.default is MISSING
        if required and not value:
            missing.append(f.name)
            continue
        if value is not None and not isinstance(value, str):
            raise ValidationError(f'{f.name} must be a string')
        values[f.name] = value if required else (value or None)
    if missing:
        raise ValidationError(f"{kind} is missing: {', '.join(missing)}")
    return cls(**values)


def dispatch(engine, command):
    if not engine.ready:
        raise Unavailable('engine is reconciling; try again shortly')
    return HANDLERS[type(command)](engine, command)

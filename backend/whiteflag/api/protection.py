from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from whiteflag.models import ProtectionRequest, Claim
from whiteflag.services.protection import get_engine, ProtectionError
from whiteflag.services.protection.commands import COMMANDS, parse_command, dispatch


protection = Blueprint('protection', __name__)

# Filled from the logged-in user, never from the request body
_ACTOR_FIELDS = ('actor', 'requester', 'claimant')


@protection.errorhandler(ProtectionError)
def handle_protection_error(exc):
    try:
        current_app.logger.info(f"[api-reject] code={exc.code} error={exc.message}")
    except Exception:
        pass
    return jsonify(exc.to_dict()), exc.status_code


def _serialize(result):
    if isinstance(result, (ProtectionRequest, Claim)):
        return result.to_dict()
    return result


@protection.route('/commands/<string:kind>', methods=['POST'])
@login_required
def run_command(kind):
    cls = COMMANDS.get(kind)
    if cls is None:
        return jsonify({'error': f'unknown command {kind!r}', 'code': 'validation'}), 404
    if cls.admin_only and not current_user.is_admin:
        return jsonify({'error': f'{kind} requires admin rights', 'code': 'forbidden'}), 403

    data = dict(request.get_json(silent=True) or {})
    for name in _ACTOR_FIELDS:
        data[name] = current_user.username
    command = parse_command(kind, data)
    result = dispatch(get_engine(), command)
    status = 201 if kind in ('submit_request', 'submit_claim') else 200
    return jsonify(_serialize(result)), status


@protection.route('/requests/active', methods=['GET'])
def active_protections():
    engine = get_engine()
    items = []
    for r in engine.list_active_protections():
        payload = r.to_dict()
        payload['ends_at'] = r.protection_ends_at(engine.protection_ms)
        items.append(payload)
    return jsonify(items)


@protection.route('/bounties/active', methods=['GET'])
def active_bounties():
    return jsonify([r.bounty_to_dict() for r in get_engine().list_active_bounties()])


@protection.route('/requests/<string:record_id>', methods=['GET'])
def get_request(record_id):
    engine = get_engine()
    record = engine.get_request(record_id)
    payload = record.to_dict()
    payload['claims'] = [c.to_dict() for c in engine.claims_for(record.id)]
    return jsonify(payload)


@protection.route('/claims/<string:claim_id>', methods=['GET'])
@login_required
def get_claim(claim_id):
    return jsonify(get_engine().get_claim(claim_id).to_dict())


@protection.route('/rules', methods=['GET'])
def rules():
    cfg = current_app.config
    return jsonify({
        'rules': cfg.get('RULES_TEXT', ''),
        'protection_days': int(cfg.get('PROTECTION_DURATION_SEC', 0)) // 86400,
        'bounty_days': int(cfg.get('BOUNTY_DURATION_SEC', 0)) // 86400,
        'server_types': cfg.get('SERVER_TYPES', {}),
    })

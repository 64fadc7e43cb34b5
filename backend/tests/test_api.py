def test_index(client):
    res = client.get('/')
    assert res.status_code == 200


def test_commands_require_login(client):
    res = client.post('/api/protection/commands/submit_request', json={'tribe_name': 'Alpha', 'ign': 'Rex'})
    assert res.status_code == 401


def test_register_login_and_me(client):
    res = client.post('/users/add', json={'username': 'alice', 'password': 'pw'})
    assert res.status_code == 201
    assert res.get_json()['user']['is_admin'] is False
    assert client.post('/users/add', json={'username': 'alice', 'password': 'pw'}).status_code == 400
    assert client.post('/login', json={'username': 'alice', 'password': 'nope'}).status_code == 401
    assert client.post('/login', json={'username': 'alice', 'password': 'pw'}).status_code == 200
    assert client.get('/me').get_json()['username'] == 'alice'


def test_protection_flow_over_http(engine, login):
    player = login('alice')
    admin = login('mod', admin=True)

    res = player.post('/api/protection/commands/submit_request', json={
        'tribe_name': 'Alpha', 'ign': 'Rex', 'server_type': '100x', 'map': 'Island 50,50',
        'requester': 'someone-else',
    })
    assert res.status_code == 201
    record = res.get_json()
    assert record['status'] == 'pending'
    assert record['requested_by'] == 'alice'

    # Players cannot approve
    res = player.post('/api/protection/commands/approve_request', json={'request_id': record['id']})
    assert res.status_code == 403

    res = admin.post('/api/protection/commands/approve_request', json={'request_id': record['id']})
    assert res.status_code == 200
    assert res.get_json()['approved_by'] == 'mod'

    active = player.get('/api/protection/requests/active').get_json()
    assert [r['id'] for r in active] == [record['id']]
    assert active[0]['ends_at'] == 7 * 24 * 3600 * 1000

    res = admin.post('/api/protection/commands/approve_request', json={'request_id': record['id']})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'already_in_state'

    res = admin.post('/api/protection/commands/end_request_early',
                     json={'request_id': record['id'], 'reason': 'raided while flagged'})
    assert res.status_code == 200
    ended = res.get_json()
    assert ended['status'] == 'ended_early'
    assert ended['bounty']['active'] is True

    bounties = player.get('/api/protection/bounties/active').get_json()
    assert [b['record_id'] for b in bounties] == [record['id']]


def test_claim_flow_over_http(engine, clock, login):
    hunter = login('hunter')
    rival = login('rival')
    admin = login('mod', admin=True)

    bounty = admin.post('/api/protection/commands/add_or_refresh_bounty',
                        json={'target': 'Bravo', 'reason': 'griefing'}).get_json()
    claim_body = {'target': 'Bravo', 'claimant_tag': 'Hunter', 'target_tag': 'Zed', 'proof': 'http://clip'}
    res = hunter.post('/api/protection/commands/submit_claim', json=claim_body)
    assert res.status_code == 201
    claim = res.get_json()
    assert claim['submitted_by'] == 'hunter'

    res = rival.post('/api/protection/commands/submit_claim', json=claim_body)
    assert res.status_code == 409
    assert 'locked' in res.get_json()['error']

    res = admin.post('/api/protection/commands/deny_claim', json={'claim_id': claim['id']})
    clock.set(1000)
    assert res.get_json()['status'] == 'denied'
    res = rival.post('/api/protection/commands/submit_claim', json=claim_body)
    assert res.status_code == 201
    second = res.get_json()

    res = admin.post('/api/protection/commands/approve_claim', json={'claim_id': second['id']})
    assert res.status_code == 200

    detail = hunter.get(f"/api/protection/requests/{bounty['id']}").get_json()
    assert detail['bounty']['active'] is False
    assert detail['bounty']['claimed_by'] == 'rival'
    assert [c['status'] for c in detail['claims']] == ['denied', 'approved']
    assert hunter.get(f"/api/protection/claims/{second['id']}").get_json()['status'] == 'approved'


def test_errors_map_to_status_codes(engine, login):
    player = login('alice')
    admin = login('mod', admin=True)
    res = player.post('/api/protection/commands/submit_request', json={'tribe_name': 'Alpha'})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'validation'
    res = admin.post('/api/protection/commands/approve_request', json={'request_id': 'MISSING1'})
    assert res.status_code == 404
    res = player.post('/api/protection/commands/launch_rockets', json={})
    assert res.status_code == 404
    assert player.get('/api/protection/requests/MISSING1').status_code == 404


def test_commands_unavailable_before_reconcile(flask_app, login):
    # The app's own engine has not reconciled yet
    player = login('alice')
    res = player.post('/api/protection/commands/submit_request', json={'tribe_name': 'Alpha', 'ign': 'Rex'})
    assert res.status_code == 503
    assert res.get_json()['code'] == 'unavailable'


def test_rules(client):
    data = client.get('/api/protection/rules').get_json()
    assert data['protection_days'] == 7
    assert data['bounty_days'] == 7
    assert '100x' in data['server_types']


def test_each_client_acts_as_its_own_user(engine, login):
    player = login('alice')
    admin = login('mod', admin=True)
    assert player.get('/me').get_json()['username'] == 'alice'
    assert admin.get('/me').get_json()['username'] == 'mod'
    res = player.post('/api/protection/commands/add_or_refresh_bounty', json={'target': 'Bravo'})
    assert res.status_code == 403
    assert res.get_json()['code'] == 'forbidden'


def test_first_request_runs_reconciliation(flask_app, clock, timers, notifier, login):
    from whiteflag.services.protection import init_engine
    eng = init_engine(flask_app, clock=clock, spawn=timers.spawn, notifier=notifier)
    flask_app.config['RECONCILE_ON_REQUEST'] = True
    player = login('alice')
    assert eng.ready is True
    res = player.post('/api/protection/commands/submit_request', json={'tribe_name': 'Alpha', 'ign': 'Rex'})
    assert res.status_code == 201

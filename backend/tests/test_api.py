def _post(client, code, **body):
    return client.post(f'/api/session/{code}', json=body)


def _create(client, code='ABC123', user=None):
    user = user or {'id': 'alice', 'name': 'Alice'}
    return _post(client, code, action='create', user=user)


def _check_anchor_invariant(session):
    assert (session['votingStartTime'] is not None) == (session['gameState'] == 'VOTING')


def test_create_session(client):
    res = _create(client)
    assert res.status_code == 201
    data = res.get_json()
    assert data['id'] == 'ABC123'
    assert data['hostId'] == 'alice'
    assert data['participants'] == [{'id': 'alice', 'name': 'Alice'}]
    assert data['gameState'] == 'IDLE'
    assert data['votes'] == {}
    assert data['votingStartTime'] is None
    assert data['voteDuration'] == 10


def test_code_is_case_insensitive(client):
    _create(client, code='abc123')
    res = client.get('/api/session/Abc123')
    assert res.status_code == 200
    assert res.get_json()['id'] == 'ABC123'


def test_get_missing_session_is_404(client):
    res = client.get('/api/session/NOPE42')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Session not found'}


def test_create_requires_user(client):
    res = _post(client, 'ABC123', action='create', user={'id': 'alice'})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Invalid user data'
    assert client.get('/api/session/ABC123').status_code == 404


def test_invalid_json_body(client):
    res = client.post('/api/session/ABC123', data='{not json', content_type='application/json')
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Invalid JSON in request body'


def test_unknown_action(client):
    _create(client)
    res = _post(client, 'ABC123', action='explode')
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Unknown action'


def test_unsupported_method_is_405(client):
    res = client.put('/api/session/ABC123', json={})
    assert res.status_code == 405
    assert 'error' in res.get_json()


def test_options_preflight(client):
    res = client.options('/api/session/ABC123')
    assert res.status_code == 200


def test_join_missing_session_is_404(client):
    res = _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    assert res.status_code == 404


def test_join_is_idempotent_and_renames(client):
    _create(client)
    bob = {'id': 'bob', 'name': 'Bob'}
    first = _post(client, 'ABC123', action='join', user=bob).get_json()
    second = _post(client, 'ABC123', action='join', user=bob).get_json()
    assert first == second
    assert [p['id'] for p in second['participants']] == ['alice', 'bob']

    renamed = _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Robert'}).get_json()
    assert renamed['participants'][1] == {'id': 'bob', 'name': 'Robert'}
    assert len(renamed['participants']) == 2


def test_start_voting_only_from_idle(client):
    _create(client)
    started = _post(client, 'ABC123', action='startVoting')
    assert started.status_code == 200
    data = started.get_json()
    assert data['gameState'] == 'VOTING'
    _check_anchor_invariant(data)

    again = _post(client, 'ABC123', action='startVoting')
    assert again.status_code == 400
    assert 'VOTING' in again.get_json()['error']

    _post(client, 'ABC123', action='finishVoting')
    from_finished = _post(client, 'ABC123', action='startVoting')
    assert from_finished.status_code == 400
    assert 'FINISHED' in from_finished.get_json()['error']


def test_vote_requires_voting_state(client):
    _create(client)
    res = _post(client, 'ABC123', action='vote', userId='alice', size='M')
    assert res.status_code == 400
    assert 'IDLE' in res.get_json()['error']


def test_vote_rejects_bad_size(client):
    _create(client)
    _post(client, 'ABC123', action='startVoting')
    res = _post(client, 'ABC123', action='vote', userId='alice', size='XXL')
    assert res.status_code == 400
    body = res.get_json()
    assert body['error'] == 'Invalid vote size'
    assert 'XXL' in body['details']


def test_last_vote_wins(client):
    _create(client)
    _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    _post(client, 'ABC123', action='startVoting')
    _post(client, 'ABC123', action='vote', userId='alice', size='S')
    data = _post(client, 'ABC123', action='vote', userId='alice', size='XL').get_json()
    assert data['votes'] == {'alice': 'XL'}
    assert data['gameState'] == 'VOTING'


def test_leave_last_participant_deletes_room(client):
    _create(client)
    res = _post(client, 'ABC123', action='leave', userId='alice')
    assert res.status_code == 200
    assert res.get_json() == {'deleted': True}
    assert client.get('/api/session/ABC123').status_code == 404


def test_leave_unknown_user_is_noop(client):
    before = _create(client).get_json()
    res = _post(client, 'ABC123', action='leave', userId='ghost')
    assert res.status_code == 200
    assert res.get_json() == before


def test_host_leaving_hands_off_and_resets(client):
    _create(client)
    _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    _post(client, 'ABC123', action='join', user={'id': 'cara', 'name': 'Cara'})
    _post(client, 'ABC123', action='startVoting')
    _post(client, 'ABC123', action='vote', userId='bob', size='L')

    data = _post(client, 'ABC123', action='leave', userId='alice').get_json()
    assert data['hostId'] == 'bob'
    assert data['gameState'] == 'IDLE'
    assert data['votes'] == {}
    assert data['votingStartTime'] is None
    assert [p['id'] for p in data['participants']] == ['bob', 'cara']


def test_non_host_leaving_completes_quorum(client):
    _create(client)
    _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    _post(client, 'ABC123', action='join', user={'id': 'cara', 'name': 'Cara'})
    _post(client, 'ABC123', action='startVoting')
    _post(client, 'ABC123', action='vote', userId='alice', size='M')
    _post(client, 'ABC123', action='vote', userId='bob', size='L')

    data = _post(client, 'ABC123', action='leave', userId='cara').get_json()
    assert data['gameState'] == 'FINISHED'
    assert data['votes'] == {'alice': 'M', 'bob': 'L'}
    _check_anchor_invariant(data)


def test_end_to_end_round(client):
    assert _create(client, 'abc123').status_code == 201
    _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    _check_anchor_invariant(_post(client, 'ABC123', action='startVoting').get_json())
    _post(client, 'ABC123', action='vote', userId='alice', size='M')
    _post(client, 'ABC123', action='vote', userId='bob', size='L')
    finished = _post(client, 'ABC123', action='finishVoting').get_json()
    assert finished['gameState'] == 'FINISHED'
    assert finished['votes'] == {'alice': 'M', 'bob': 'L'}
    _check_anchor_invariant(finished)

    reset = _post(client, 'ABC123', action='resetVoting').get_json()
    assert reset['gameState'] == 'IDLE'
    assert reset['votes'] == {}
    _check_anchor_invariant(reset)


def test_stale_finish_anchor_is_ignored(client):
    _create(client)
    anchor = _post(client, 'ABC123', action='startVoting').get_json()['votingStartTime']
    data = _post(client, 'ABC123', action='finishVoting', votingStartTime=anchor - 1).get_json()
    assert data['gameState'] == 'VOTING'
    data = _post(client, 'ABC123', action='finishVoting', votingStartTime=anchor).get_json()
    assert data['gameState'] == 'FINISHED'


def test_store_failure_is_500(flask_app, client, monkeypatch):
    from poker.services.sessions.protocol import StoreFailure

    def _boom(code):
        raise StoreFailure('Failed to retrieve session', details='backend offline')

    monkeypatch.setattr(flask_app.extensions['session_store'], 'get', _boom)
    res = client.get('/api/session/ABC123')
    assert res.status_code == 500
    assert res.get_json() == {'error': 'Failed to retrieve session', 'details': 'backend offline'}


def test_unexpected_error_is_generic_500(flask_app, client, monkeypatch):
    def _boom(code):
        raise RuntimeError('kaput')

    monkeypatch.setattr(flask_app.extensions['session_store'], 'get', _boom)
    res = client.get('/api/session/ABC123')
    assert res.status_code == 500
    assert res.get_json() == {'error': 'Internal server error'}


def test_sql_store_backend_round(sql_app):
    client = sql_app.test_client()
    assert _create(client).status_code == 201
    _post(client, 'ABC123', action='join', user={'id': 'bob', 'name': 'Bob'})
    _post(client, 'ABC123', action='startVoting')
    data = _post(client, 'ABC123', action='vote', userId='bob', size='S').get_json()
    assert data['votes'] == {'bob': 'S'}
    assert client.get('/api/session/ABC123').get_json() == data
    _post(client, 'ABC123', action='leave', userId='alice')
    _post(client, 'ABC123', action='leave', userId='bob')
    assert client.get('/api/session/ABC123').status_code == 404

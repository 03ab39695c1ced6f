from tests.test_utils_seed import ensure_user


def _login(client, username, password):
    return client.post('/users/login', json={'username': username, 'password': password})


def test_login_and_me(client, app_instance):
    with app_instance.app_context():
        ensure_user('tariq', role='Manager', shops=['Downtown', 'Mall'], password='pw-123456')

    resp = _login(client, 'tariq', 'pw-123456')
    assert resp.status_code == 200, resp.get_json()
    token = resp.get_json()['access_token']

    me = client.get('/users/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    body = me.get_json()
    assert body['username'] == 'tariq'
    assert body['role'] == 'Manager'
    assert body['shops'] == ['Downtown', 'Mall']
    assert body['orders'] == []


def test_login_failures(client, app_instance):
    with app_instance.app_context():
        ensure_user('tariq', password='pw-123456')
    assert _login(client, 'tariq', 'wrong-pass').status_code == 401
    assert _login(client, 'nobody', 'pw-123456').status_code == 404
    missing = client.post('/users/login', json={'username': 'tariq'})
    assert missing.status_code == 400


def test_token_for_deleted_user_is_rejected_on_me(client, app_instance):
    with app_instance.app_context():
        from tailorshop import get_db
        from tailorshop.models.user import User
        from tests.test_utils_seed import auth_headers
        u = ensure_user('temp')
        headers = auth_headers(u)
        session = get_db()
        session.delete(session.get(User, u.id)); session.commit()
    resp = client.get('/users/me', headers=headers)
    assert resp.status_code == 401

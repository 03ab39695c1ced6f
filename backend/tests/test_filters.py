from tests.test_utils_seed import auth_headers, order_payload, seed_staff


def _headers(app_instance):
    with app_instance.app_context():
        staff = seed_staff()
        return {k: auth_headers(u) for k, u in staff.items()}, staff


def test_order_filters(client, app_instance):
    headers, staff = _headers(app_instance)
    client.post('/orders', json=order_payload('F-1', phone='555-1001'), headers=headers['alice'])
    second = client.post('/orders', json=order_payload('F-2', phone='555-1002'), headers=headers['bob']).get_json()
    client.put(f"/orders/{second['id']}/status", json={'status': 'Trial', 'date': '2024-05-10'}, headers=headers['bob'])
    # Uptown order stays invisible to the Downtown manager
    client.post('/orders', json=order_payload('F-3', shop='Uptown', phone='555-1003'), headers=headers['uma'])

    by_status = client.get('/orders?status=Trial', headers=headers['manager']).get_json()
    assert by_status['pagination']['returned'] == 1
    assert by_status['data'][0]['order_number'] == 'F-2'

    by_creator = client.get(f"/orders?creator_id={staff['alice'].id}", headers=headers['manager']).get_json()
    assert [o['order_number'] for o in by_creator['data']] == ['F-1']

    # Blank parameters are ignored rather than rejected
    blank = client.get('/orders?status=&creator_id=', headers=headers['manager']).get_json()
    assert blank['pagination']['total'] == 2

    bad = client.get('/orders?creator_id=abc', headers=headers['manager'])
    assert bad.status_code == 400
    assert 'creator_id' in bad.get_json()['error']['detail']

    bad_status = client.get('/orders?status=Shipped', headers=headers['manager'])
    assert bad_status.status_code == 400


def test_customer_filters(client, app_instance):
    headers, _ = _headers(app_instance)
    client.post('/orders', json=order_payload('C-1', phone='555-2001', customer_name='Nadia Karimi'), headers=headers['alice'])
    client.post('/orders', json=order_payload('C-2', phone='555-2002', customer_name='Omid Rahimi'), headers=headers['alice'])

    by_name = client.get('/customers?name=nadia', headers=headers['manager']).get_json()
    assert by_name['pagination']['returned'] == 1
    assert by_name['data'][0]['phone'] == '555-2001'

    by_phone = client.get('/customers?phone=555-2002', headers=headers['manager']).get_json()
    assert [c['name'] for c in by_phone['data']] == ['Omid Rahimi']

    # Uptown staff see neither customer
    hidden = client.get('/customers?name=nadia', headers=headers['uma']).get_json()
    assert hidden['pagination']['returned'] == 0

import pytest

from tailorshop.errors import ValidationError
from tailorshop.utils.sorting import parse_sort
from tests.test_utils_seed import auth_headers, order_payload, seed_staff


def test_parse_sort_keeps_first_direction():
    allowed = {'shop': object(), 'order_date': object()}
    assert parse_sort('-order_date, shop,+order_date', allowed) == [('order_date', True), ('shop', False)]
    assert parse_sort(None, allowed) == []
    with pytest.raises(ValidationError):
        parse_sort('price', allowed)


def test_orders_multi_sort(client, app_instance):
    with app_instance.app_context():
        staff = seed_staff()
        headers = auth_headers(staff['admin'])
    for number, shop, phone in (('S-1', 'Downtown', '555-3001'), ('S-2', 'Uptown', '555-3002'), ('S-3', 'Downtown', '555-3003')):
        resp = client.post('/orders', json=order_payload(number, shop=shop, phone=phone), headers=headers)
        assert resp.status_code == 201, resp.get_json()

    resp = client.get('/orders?sort=-shop,-order_number', headers=headers)
    assert resp.status_code == 200
    assert [o['order_number'] for o in resp.get_json()['data']] == ['S-2', 'S-3', 'S-1']

    bad = client.get('/orders?sort=price', headers=headers)
    assert bad.status_code == 400

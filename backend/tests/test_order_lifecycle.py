"""Lifecycle engine tests calling the services directly."""
import pytest
from sqlalchemy import func, select, text

from tailorshop.errors import Conflict, NotFound, TransactionFailure, Unauthenticated, Unauthorized, ValidationError
from tailorshop.models.audit import AuditLog
from tailorshop.models.customer import Customer
from tailorshop.models.order import CustomerOrder, Order, UserOrder
from tailorshop.services import lifecycle, store
from tailorshop.services.identity import Identity
from tests.test_utils_seed import identity_for, order_payload, seed_staff


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _links(db):
    return (
        sorted(db.execute(select(CustomerOrder.customer_id, CustomerOrder.order_id)).all()),
        sorted(db.execute(select(UserOrder.user_id, UserOrder.order_id)).all()),
    )


@pytest.fixture()
def staff(db):
    users = seed_staff()
    return {k: identity_for(u) for k, u in users.items()}


def test_create_links_customer_and_creator(db, staff):
    body = lifecycle.create_order(db, staff['alice'], order_payload())
    assert body['status'] == 'Pending'
    assert body['customer']['phone'] == '555-0100'
    assert body['creator'] == {'id': staff['alice'].user_id, 'name': 'Alice'}
    assert body['dates']['order'] == '2024-05-01T10:00:00Z'
    assert body['products'] == [{'type': 'Shirt', 'quantity': 2}]
    customer_links, user_links = _links(db)
    assert customer_links == [(body['customer']['id'], body['id'])]
    assert user_links == [(staff['alice'].user_id, body['id'])]
    audit = db.execute(select(AuditLog).where(AuditLog.action=='ORDER.CREATE')).scalar_one()
    assert audit.entity_id == str(body['id'])


def test_customer_upserted_by_phone(db, staff):
    first = lifecycle.create_order(db, staff['alice'], order_payload('1'))
    second = lifecycle.create_order(db, staff['bob'], order_payload(
        '2', customer_name='Hamid Khan', measurements={'trouser': {'waist': 32}},
    ))
    assert first['customer']['id'] == second['customer']['id']
    assert _count(db, Customer) == 1
    customer = db.get(Customer, first['customer']['id'])
    assert customer.name == 'Hamid Khan'
    assert customer.measurements == {'trouser': {'waist': 32}}
    customer_links, _ = _links(db)
    assert [oid for _, oid in customer_links] == sorted([first['id'], second['id']])


def test_products_quantity_defaults_to_one(db, staff):
    body = lifecycle.create_order(db, staff['alice'], order_payload(products=[{'type': 'Kurta'}]))
    assert body['products'] == [{'type': 'Kurta', 'quantity': 1}]


@pytest.mark.parametrize('overrides', [
    {'order_number': ''},
    {'status': 'Shipped'},
    {'products': []},
    {'products': [{'type': 'Shirt', 'quantity': 0}]},
    {'customer': {'name': 'No Phone'}},
    {'dates': {'order': '2024-05-01', 'trial': 'tomorrow', 'delivery': '2024-05-15'}},
    {'dates': {'order': '2024-05-01', 'trial': '2024-05-08'}},
])
def test_create_validation(db, staff, overrides):
    with pytest.raises(ValidationError):
        lifecycle.create_order(db, staff['alice'], order_payload(**overrides))
    assert _count(db, Order) == 0


def test_create_outside_scope_unauthorized(db, staff):
    with pytest.raises(Unauthorized):
        lifecycle.create_order(db, staff['alice'], order_payload(shop='Uptown'))
    assert _count(db, Order) == 0


def test_duplicate_shop_order_number_conflicts(db, staff):
    lifecycle.create_order(db, staff['alice'], order_payload('77'))
    with pytest.raises(Conflict) as exc:
        lifecycle.create_order(db, staff['bob'], order_payload('77', phone='555-0199'))
    assert exc.value.conflicts == [{'shop': 'Downtown', 'order_number': '77'}]
    assert _count(db, Order) == 1
    assert _count(db, Customer) == 1
    # Same number in another shop is a different order
    lifecycle.create_order(db, staff['uma'], order_payload('77', shop='Uptown'))
    assert _count(db, Order) == 2


def test_unique_constraint_backstop(db, staff, monkeypatch):
    lifecycle.create_order(db, staff['alice'], order_payload('5'))
    monkeypatch.setattr(lifecycle, 'existing_pairs', lambda *a, **k: [])
    with pytest.raises(Conflict):
        lifecycle.create_order(db, staff['alice'], order_payload('5', phone='555-0142'))
    assert _count(db, Order) == 1
    assert _count(db, Customer) == 1
    assert len(_links(db)[0]) == 1


def test_failure_while_linking_rolls_back_everything(db, staff, monkeypatch):
    real_link = store.link

    def half_link(session, order_id, customer_id, creator_id):
        real_link(session, order_id, customer_id, creator_id)
        raise RuntimeError('store went away')

    monkeypatch.setattr(store, 'link', half_link)
    with pytest.raises(RuntimeError):
        lifecycle.create_order(db, staff['alice'], order_payload())
    assert _count(db, Order) == 0
    assert _count(db, Customer) == 0
    assert _links(db) == ([], [])
    assert _count(db, AuditLog) == 0


def test_creator_must_exist(db, staff):
    ghost = Identity(user_id=999, role='User', shops=frozenset({'Downtown'}))
    with pytest.raises(Unauthenticated):
        lifecycle.create_order(db, ghost, order_payload())
    assert _count(db, Order) == 0


def test_status_walk_sets_transition_dates(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    body = lifecycle.update_status(db, staff['alice'], oid, 'Trial', '2024-05-09T12:00:00Z')
    assert body['status'] == 'Trial'
    assert body['dates']['trial'] == '2024-05-09T12:00:00Z'
    body = lifecycle.update_status(db, staff['alice'], oid, 'Finished')
    assert body['status'] == 'Finished'
    body = lifecycle.update_status(db, staff['alice'], oid, 'Completed', '2024-05-20T09:30:00+04:00', bill='B-FINAL')
    assert body['status'] == 'Completed'
    assert body['dates']['completion'] == '2024-05-20T05:30:00Z'
    assert body['bill'] == 'B-FINAL'
    with pytest.raises(ValidationError):
        lifecycle.update_status(db, staff['alice'], oid, 'Cancelled', '2024-05-21')
    # Back-references never move on a status change
    assert len(_links(db)[0]) == 1 and len(_links(db)[1]) == 1


def test_status_transition_rules(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    with pytest.raises(ValidationError):
        lifecycle.update_status(db, staff['alice'], oid, 'Completed', '2024-05-20')
    with pytest.raises(ValidationError):
        lifecycle.update_status(db, staff['alice'], oid, 'Trial')
    with pytest.raises(ValidationError):
        lifecycle.update_status(db, staff['alice'], oid, 'Lost', '2024-05-20')
    body = lifecycle.update_status(db, staff['alice'], oid, 'Cancelled', '2024-05-02')
    assert body['dates']['cancelled'] == '2024-05-02T00:00:00Z'
    assert db.get(Order, oid).status == 'Cancelled'


def test_status_update_checks_existence_then_permission(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    with pytest.raises(NotFound):
        lifecycle.update_status(db, staff['uma'], oid + 100, 'Trial', '2024-05-09')
    with pytest.raises(Unauthorized):
        lifecycle.update_status(db, staff['bob'], oid, 'Trial', '2024-05-09')
    with pytest.raises(Unauthorized):
        lifecycle.update_status(db, staff['uma'], oid, 'Trial', '2024-05-09')
    body = lifecycle.update_status(db, staff['manager'], oid, 'Trial', '2024-05-09')
    assert body['status'] == 'Trial'


def test_concurrent_status_change_detected(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    db.get(Order, oid)  # cached as Pending
    db.execute(text("UPDATE orders SET status='Cancelled' WHERE id=:id"), {'id': oid})
    db.commit()
    with pytest.raises(Conflict):
        lifecycle.update_status(db, staff['alice'], oid, 'Trial', '2024-05-09')
    db.expire_all()
    assert db.get(Order, oid).status == 'Cancelled'


def test_update_fields_merges_dates_and_fields(db, staff):
    created = lifecycle.create_order(db, staff['alice'], order_payload())
    body = lifecycle.update_fields(db, staff['alice'], created['id'], {
        'dates': {'delivery': '2024-06-01T00:00:00Z'},
        'products': [{'type': 'Jacket', 'quantity': 1}],
        'bill': 'B-NEW',
    })
    assert body['dates']['delivery'] == '2024-06-01T00:00:00Z'
    assert body['dates']['trial'] == created['dates']['trial']
    assert body['products'] == [{'type': 'Jacket', 'quantity': 1}]
    assert body['bill'] == 'B-NEW'
    assert body['status'] == 'Pending'


@pytest.mark.parametrize('fields', [
    {},
    {'status': 'Trial'},
    {'customer_id': 5},
    {'creator_id': 5},
    {'colour': 'blue'},
    {'dates': {'order': None}},
    {'dates': {'completion': '2024-06-01'}},
    {'dates': {'cancelled': None}},
    {'products': [{'quantity': 1}]},
])
def test_update_fields_rejections(db, staff, fields):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    with pytest.raises(ValidationError):
        lifecycle.update_fields(db, staff['alice'], oid, fields)
    assert db.get(Order, oid).status == 'Pending'


def test_update_fields_shop_move_and_uniqueness(db, staff):
    a = lifecycle.create_order(db, staff['alice'], order_payload('1'))
    lifecycle.create_order(db, staff['alice'], order_payload('2'))
    with pytest.raises(Conflict):
        lifecycle.update_fields(db, staff['alice'], a['id'], {'order_number': '2'})
    with pytest.raises(Unauthorized):
        lifecycle.update_fields(db, staff['manager'], a['id'], {'shop': 'Uptown'})
    moved = lifecycle.update_fields(db, staff['admin'], a['id'], {'shop': 'Uptown'})
    assert moved['shop'] == 'Uptown'
    # No longer visible to the Downtown user
    with pytest.raises(Unauthorized):
        lifecycle.update_fields(db, staff['alice'], a['id'], {'bill': 'x'})


def test_user_cannot_touch_colleagues_orders(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    with pytest.raises(Unauthorized):
        lifecycle.update_fields(db, staff['bob'], oid, {'bill': 'mine now'})
    with pytest.raises(Unauthorized):
        lifecycle.delete_order(db, staff['bob'], oid)
    assert _count(db, Order) == 1


def test_delete_removes_exactly_one_link_each(db, staff):
    keep = lifecycle.create_order(db, staff['alice'], order_payload('1'))
    gone = lifecycle.create_order(db, staff['alice'], order_payload('2'))
    result = lifecycle.delete_order(db, staff['alice'], gone['id'])
    assert result == {'id': gone['id'], 'deleted': True}
    assert db.get(Order, gone['id']) is None
    customer_links, user_links = _links(db)
    assert customer_links == [(keep['customer']['id'], keep['id'])]
    assert user_links == [(staff['alice'].user_id, keep['id'])]
    # Customer survives the delete of one of its orders
    assert db.get(Customer, keep['customer']['id']) is not None
    with pytest.raises(NotFound):
        lifecycle.delete_order(db, staff['alice'], gone['id'])


def test_failed_delete_leaves_order_linked(db, staff, monkeypatch):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    real_unlink = store.unlink

    def half_unlink(session, order_id, customer_id, creator_id):
        real_unlink(session, order_id, customer_id, creator_id)
        raise RuntimeError('crash after unlink')

    monkeypatch.setattr(store, 'unlink', half_unlink)
    with pytest.raises(RuntimeError):
        lifecycle.delete_order(db, staff['alice'], oid)
    assert _count(db, Order) == 1
    customer_links, user_links = _links(db)
    assert [o for _, o in customer_links] == [oid]
    assert [o for _, o in user_links] == [oid]


def test_cancelled_date_survives_field_update(db, staff):
    oid = lifecycle.create_order(db, staff['alice'], order_payload())['id']
    lifecycle.update_status(db, staff['alice'], oid, 'Cancelled', '2024-05-20')
    with pytest.raises(ValidationError):
        lifecycle.update_fields(db, staff['alice'], oid, {'dates': {'cancelled': None}})
    assert db.get(Order, oid).cancelled_date is not None


@pytest.mark.parametrize('phone', [{'a': 1}, True, None, ['555'], 5.5, '  '])
def test_malformed_phone_rejected(db, staff, phone):
    payload = order_payload()
    payload['customer'] = {'name': 'Hamid', 'phone': phone}
    with pytest.raises(ValidationError):
        lifecycle.create_order(db, staff['alice'], payload)
    assert _count(db, Customer) == 0


def test_numeric_phone_accepted(db, staff):
    payload = order_payload()
    payload['customer'] = {'name': 'Hamid', 'phone': 5550100}
    body = lifecycle.create_order(db, staff['alice'], payload)
    assert body['customer']['phone'] == '5550100'


def test_phone_registered_concurrently_reuses_customer(db, staff, monkeypatch):
    # Another request registered the phone after this one looked it up
    db.add(Customer(name='Earlier Name', phone='555-7777', measurements=None))
    db.commit()
    existing_id = db.execute(select(Customer.id).where(Customer.phone=='555-7777')).scalar_one()

    real_find = lifecycle._find_customer
    calls = []

    def stale_find(session, phone):
        calls.append(phone)
        return None if len(calls) == 1 else real_find(session, phone)

    monkeypatch.setattr(lifecycle, '_find_customer', stale_find)
    monkeypatch.setattr(store.time, 'sleep', lambda _s: None)

    with pytest.raises(TransactionFailure):
        lifecycle.create_order(db, staff['alice'], order_payload('R-1', phone='555-7777'))
    assert _count(db, Order) == 0

    calls.clear()
    body = store.run_with_retry(
        lambda: lifecycle.create_order(db, staff['alice'], order_payload('R-2', phone='555-7777', customer_name='Later Name'))
    )
    assert len(calls) == 2
    assert body['customer']['id'] == existing_id
    assert body['customer']['name'] == 'Later Name'
    assert _count(db, Customer) == 1
    assert _links(db)[0] == [(existing_id, body['id'])]

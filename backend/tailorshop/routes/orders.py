from __future__ import annotations
from flask import Blueprint, g, request
from tailorshop import get_db
from tailorshop.decorators.auth import require_identity
from tailorshop.services import lifecycle, queries
from tailorshop.services.store import run_with_retry
from tailorshop.utils.listing import paginated

orders_bp = Blueprint('orders', __name__)


@orders_bp.get('')
@require_identity
def list_orders():
    q = queries.list_orders(get_db(), g.identity, request.args)
    return paginated(q, queries.order_row_json)


@orders_bp.get('/my')
@require_identity
def my_orders():
    q = queries.list_my_orders(get_db(), g.identity, request.args.get('sort'))
    return paginated(q, queries.order_row_json)


@orders_bp.get('/shop/<shop>')
@require_identity
def shop_orders(shop: str):
    params = request.args.to_dict()
    params['shop'] = shop
    q = queries.list_orders(get_db(), g.identity, params)
    return paginated(q, queries.order_row_json)


@orders_bp.get('/date-range')
@require_identity
def orders_in_range():
    q = queries.list_orders_in_range(
        get_db(), g.identity,
        request.args.get('start_date'),
        request.args.get('end_date'),
        request.args.get('sort'),
    )
    return paginated(q, queries.order_row_json)


@orders_bp.get('/trials/<day>')
@require_identity
def trials_on(day: str):
    q = queries.orders_due(get_db(), g.identity, 'trial', day)
    return paginated(q, queries.order_row_json)


@orders_bp.get('/deliveries/<day>')
@require_identity
def deliveries_on(day: str):
    q = queries.orders_due(get_db(), g.identity, 'delivery', day)
    return paginated(q, queries.order_row_json)


@orders_bp.get('/search/<term>')
@require_identity
def search_orders(term: str):
    q = queries.search_orders(get_db(), g.identity, term)
    return paginated(q, queries.order_row_json)


@orders_bp.get('/<int:order_id>')
@require_identity
def get_order(order_id: int):
    return queries.get_order(get_db(), g.identity, order_id)


@orders_bp.post('')
@require_identity
def create_order():
    session = get_db()
    data = request.get_json(silent=True)
    return run_with_retry(lambda: lifecycle.create_order(session, g.identity, data)), 201


@orders_bp.post('/bulk')
@require_identity
def bulk_create():
    session = get_db()
    data = request.get_json(silent=True)
    # Accept either a bare list or {"orders": [...]}
    items = data.get('orders') if isinstance(data, dict) else data
    created = run_with_retry(lambda: lifecycle.bulk_create_orders(session, g.identity, items))
    return {'data': created, 'count': len(created)}, 201


@orders_bp.put('/<int:order_id>')
@require_identity
def update_order(order_id: int):
    session = get_db()
    data = request.get_json(silent=True)
    return run_with_retry(lambda: lifecycle.update_fields(session, g.identity, order_id, data))


@orders_bp.put('/<int:order_id>/status')
@require_identity
def update_status(order_id: int):
    session = get_db()
    data = request.get_json(silent=True) or {}
    return run_with_retry(lambda: lifecycle.update_status(
        session, g.identity, order_id, data.get('status'), data.get('date'), data.get('bill'),
    ))


@orders_bp.delete('/<int:order_id>')
@require_identity
def delete_order(order_id: int):
    session = get_db()
    return run_with_retry(lambda: lifecycle.delete_order(session, g.identity, order_id))

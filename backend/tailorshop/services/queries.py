"""Role scoped reads over orders, customers and users.

Every listing is the conjunction of the caller's scope (``policy.scope_for``) and the
caller-supplied filters. Joins to customer and creator are explicit so a serialized
order always carries ``customer`` and ``creator`` without lazy loading.
"""
from __future__ import annotations
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import or_, select

from tailorshop.errors import NotFound, Unauthorized, ValidationError
from tailorshop.models.customer import Customer
from tailorshop.models.order import CustomerOrder, Order, UserOrder
from tailorshop.models.user import User
from tailorshop.services import policy
from tailorshop.services.identity import Identity
from tailorshop.utils.filters import apply_filters
from tailorshop.utils.sorting import apply_multi_sort
from tailorshop.utils.validation import parse_date

ORDER_SORT_FIELDS = {
    'id': Order.id,
    'order_number': Order.order_number,
    'order_date': Order.order_date,
    'trial_date': Order.trial_date,
    'delivery_date': Order.delivery_date,
    'status': Order.status,
    'shop': Order.shop,
}

DUE_COLUMNS = {
    'trial': Order.trial_date,
    'delivery': Order.delivery_date,
}


# ---------- Serialization ---------- #

def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + 'Z'


def order_json(o: Order, customer: Optional[Customer] = None, creator: Optional[User] = None):
    body: Dict[str, Any] = {
        'id': o.id,
        'order_number': o.order_number,
        'shop': o.shop,
        'status': o.status,
        'dates': {
            'order': iso(o.order_date),
            'trial': iso(o.trial_date),
            'delivery': iso(o.delivery_date),
            'completion': iso(o.completion_date),
            'cancelled': iso(o.cancelled_date),
        },
        'customer_id': o.customer_id,
        'creator_id': o.creator_id,
        'products': list(o.products or []),
        'bill': o.bill,
        'measurements': o.measurements,
    }
    if customer is not None:
        body['customer'] = {'id': customer.id, 'name': customer.name, 'phone': customer.phone}
    if creator is not None:
        body['creator'] = {'id': creator.id, 'name': creator.name}
    return body


def order_row_json(row):
    o, customer, creator = row
    return order_json(o, customer, creator)


def customer_json(c: Customer, orders: Optional[Iterable[Order]] = None):
    body: Dict[str, Any] = {
        'id': c.id,
        'name': c.name,
        'phone': c.phone,
        'measurements': c.measurements,
    }
    if orders is not None:
        body['orders'] = [
            {
                'id': o.id,
                'order_number': o.order_number,
                'order_date': iso(o.order_date),
                'status': o.status,
                'products': list(o.products or []),
                'shop': o.shop,
            } for o in orders
        ]
    return body


def user_json(u: User, order_ids: Optional[List[int]] = None):
    body: Dict[str, Any] = {
        'id': u.id,
        'name': u.name,
        'username': u.username,
        'email': u.email,
        'role': u.role,
        'shops': sorted(u.shops or []),
    }
    if order_ids is not None:
        body['orders'] = order_ids
    return body


# ---------- Orders ---------- #

def order_rows(session):
    """Orders joined with their customer and creator: rows of (Order, Customer, User)."""
    return (
        session.query(Order, Customer, User)
        .join(Customer, Order.customer_id==Customer.id)
        .join(User, Order.creator_id==User.id)
    )


def load_order_row(session, order_id: int):
    row = order_rows(session).filter(Order.id==order_id).one_or_none()
    if row is None:
        raise NotFound('Order not found with the specified ID')
    return row


def get_order(session, identity: Identity, order_id: int):
    row = load_order_row(session, order_id)
    policy.enforce(identity, policy.ORDER_READ, row[0])
    return order_row_json(row)


def _like(term: str) -> str:
    escaped = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'%{escaped}%'


def _require_term(term: Optional[str]) -> str:
    term = (term or '').strip()
    if not term:
        raise ValidationError('Search term parameter is required')
    return term


def list_orders(session, identity: Identity, params: Optional[Mapping[str, Any]] = None):
    """Scoped order query; ``params`` may hold shop, status, creator_id, customer_id,
    start_date, end_date and sort."""
    params = params or {}
    scope = policy.enforce(identity, policy.ORDER_READ)
    shop = params.get('shop')
    if isinstance(shop, str):
        shop = shop.strip() or None
    if shop is not None and not scope.allows_shop(shop):
        raise Unauthorized("Unauthorized: You can not view this shop's orders.")
    q = scope.apply(order_rows(session), Order.shop)
    filter_specs = {
        'shop': {'op': lambda qu, v: qu.filter(Order.shop==v)},
        'status': {'op': lambda qu, v: qu.filter(Order.status==v), 'validate': lambda v: v in Order.ALL_STATUSES},
        'creator_id': {'coerce': int, 'op': lambda qu, v: qu.filter(Order.creator_id==v)},
        'customer_id': {'coerce': int, 'op': lambda qu, v: qu.filter(Order.customer_id==v)},
        'start_date': {'coerce': lambda v: parse_date(v, 'start_date'), 'op': lambda qu, v: qu.filter(Order.order_date>=v)},
        'end_date': {'coerce': lambda v: parse_date(v, 'end_date'), 'op': lambda qu, v: qu.filter(Order.order_date<=v)},
    }
    q = apply_filters(q, filter_specs, params)
    return apply_multi_sort(q, params.get('sort'), ORDER_SORT_FIELDS, Order.id)


def list_orders_in_range(session, identity: Identity, start_date, end_date=None, sort: Optional[str] = None):
    if not start_date:
        raise ValidationError('Missing starting date!')
    if not end_date:
        end_date = datetime.now(timezone.utc).replace(tzinfo=None)
    start = parse_date(start_date, 'start_date')
    end = parse_date(end_date, 'end_date')
    if end < start:
        raise ValidationError('end_date must not precede start_date')
    return list_orders(session, identity, {'start_date': start, 'end_date': end, 'sort': sort})


def list_my_orders(session, identity: Identity, sort: Optional[str] = None):
    return list_orders(session, identity, {'creator_id': identity.user_id, 'sort': sort})


def orders_due(session, identity: Identity, kind: str, day):
    """Open orders whose trial or delivery falls on ``day``."""
    column = DUE_COLUMNS.get(kind)
    if column is None:
        raise ValidationError(f'Unknown due date kind {kind}')
    start = datetime.combine(parse_date(day, 'date').date(), time.min)
    scope = policy.enforce(identity, policy.ORDER_READ)
    q = scope.apply(order_rows(session), Order.shop)
    q = q.filter(column>=start, column<start + timedelta(days=1), Order.status.notin_(Order.TERMINAL_STATUSES))
    return q.order_by(column.asc(), Order.id.asc())


def search_orders(session, identity: Identity, term: Optional[str]):
    """Substring search over order number, bill, customer name and customer phone.

    Customers are resolved first; orders then match by customer id or by their own
    number/bill, intersected with the caller's scope.
    """
    term = _require_term(term)
    scope = policy.enforce(identity, policy.ORDER_READ)
    pattern = _like(term)
    candidate_ids = session.execute(
        select(Customer.id).where(or_(
            Customer.name.ilike(pattern, escape='\\'),
            Customer.phone.ilike(pattern, escape='\\'),
        ))
    ).scalars().all()
    matches = [
        Order.order_number.ilike(pattern, escape='\\'),
        Order.bill.ilike(pattern, escape='\\'),
    ]
    if candidate_ids:
        matches.append(Order.customer_id.in_(candidate_ids))
    q = scope.apply(order_rows(session).filter(or_(*matches)), Order.shop)
    return q.order_by(Order.id.asc())


# ---------- Customers ---------- #

def _visible_customers(q, scope: policy.Scope):
    if scope.unscoped:
        return q
    in_scope = select(Order.customer_id).where(Order.shop.in_(sorted(scope.shops)))
    return q.filter(Customer.id.in_(in_scope))


def list_customers(session, identity: Identity, params: Optional[Mapping[str, Any]] = None):
    params = params or {}
    scope = policy.enforce(identity, policy.CUSTOMER_READ)
    q = _visible_customers(session.query(Customer), scope)
    filter_specs = {
        'name': {'op': lambda qu, v: qu.filter(Customer.name.ilike(_like(v), escape='\\'))},
        'phone': {'op': lambda qu, v: qu.filter(Customer.phone==v)},
    }
    q = apply_filters(q, filter_specs, params)
    return q.order_by(Customer.id.asc())


def customer_orders(session, customer_id: int, scope: policy.Scope):
    q = (
        session.query(Order)
        .join(CustomerOrder, CustomerOrder.order_id==Order.id)
        .filter(CustomerOrder.customer_id==customer_id)
    )
    return scope.apply(q, Order.shop).order_by(Order.order_date.desc(), Order.id.desc()).all()


def get_customer(session, identity: Identity, customer_id: int):
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFound('Customer with the specified ID does not exist.')
    scope = policy.enforce(identity, policy.CUSTOMER_READ)
    if _visible_customers(session.query(Customer.id).filter(Customer.id==customer_id), scope).first() is None:
        raise Unauthorized("Unauthorized: You can't access this customer.")
    return customer_json(customer, customer_orders(session, customer.id, scope))


def search_customers(session, identity: Identity, term: Optional[str]):
    term = _require_term(term)
    scope = policy.enforce(identity, policy.CUSTOMER_READ)
    pattern = _like(term)
    q = session.query(Customer).filter(or_(
        Customer.name.ilike(pattern, escape='\\'),
        Customer.phone.ilike(pattern, escape='\\'),
    ))
    return _visible_customers(q, scope).order_by(Customer.id.asc())


# ---------- Users ---------- #

def user_order_ids(session, user_id: int) -> List[int]:
    return list(session.execute(
        select(UserOrder.order_id).where(UserOrder.user_id==user_id).order_by(UserOrder.id.asc())
    ).scalars())


def _readable_users(identity: Identity, users: Iterable[User]) -> List[User]:
    return [u for u in users if isinstance(policy.authorize(identity, policy.USER_READ, u), policy.Allow)]


def list_users(session, identity: Identity) -> List[User]:
    policy.enforce(identity, policy.USER_READ)
    users = session.execute(select(User).order_by(User.id.asc())).scalars().all()
    return _readable_users(identity, users)


def get_user(session, identity: Identity, user_id: int):
    user = session.get(User, user_id)
    if user is None:
        raise NotFound('No user found with the specified ID')
    if user.id != identity.user_id:
        policy.enforce(identity, policy.USER_READ, user)
    return user_json(user, user_order_ids(session, user.id))


def search_users(session, identity: Identity, name: Optional[str]) -> List[User]:
    name = _require_term(name)
    policy.enforce(identity, policy.USER_READ)
    users = session.execute(
        select(User).where(User.name.ilike(_like(name), escape='\\')).order_by(User.id.asc())
    ).scalars().all()
    return _readable_users(identity, users)


def list_shops(session, identity: Identity) -> List[str]:
    scope = policy.enforce(identity, policy.SHOP_LIST)
    if not scope.unscoped:
        return sorted(scope.shops)
    shops = set(session.execute(select(Order.shop).distinct()).scalars())
    for assigned in session.execute(select(User.shops)).scalars():
        shops.update(assigned or [])
    return sorted(shops)


__all__ = [
    'order_json', 'order_row_json', 'customer_json', 'user_json', 'order_rows', 'load_order_row',
    'get_order', 'list_orders', 'list_orders_in_range', 'list_my_orders', 'orders_due',
    'search_orders', 'list_customers', 'get_customer', 'search_customers', 'customer_orders',
    'list_users', 'get_user', 'search_users', 'list_shops', 'user_order_ids',
]

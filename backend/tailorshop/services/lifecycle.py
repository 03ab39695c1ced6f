"""Order lifecycle engine.

Every mutation keeps three things consistent inside one transaction: the order row,
its entry in the customer's order list and its entry in the creator's order list.
Mutations of an existing order check existence, then authorization, then the payload.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from tailorshop.errors import Conflict, NotFound, TransactionFailure, Unauthenticated, ValidationError
from tailorshop.models.customer import Customer
from tailorshop.models.order import Order
from tailorshop.models.user import User
from tailorshop.services import policy, store
from tailorshop.services.audit import add_audit
from tailorshop.services.identity import Identity
from tailorshop.services.queries import get_order, order_json
from tailorshop.utils.fsm import TransitionValidator
from tailorshop.utils.validation import (
    parse_date, require_fields, validate_object, validate_products, validate_status,
)

log = logging.getLogger(__name__)

ORDER_FSM = TransitionValidator({
    Order.STATUS_PENDING: {Order.STATUS_TRIAL, Order.STATUS_CANCELLED},
    Order.STATUS_TRIAL: {Order.STATUS_FINISHED, Order.STATUS_CANCELLED},
    Order.STATUS_FINISHED: {Order.STATUS_COMPLETED, Order.STATUS_CANCELLED},
    Order.STATUS_COMPLETED: set(),
    Order.STATUS_CANCELLED: set(),
})

# Target status -> date column it stamps
TRANSITION_DATE_FIELDS = {
    Order.STATUS_TRIAL: 'trial_date',
    Order.STATUS_COMPLETED: 'completion_date',
    Order.STATUS_CANCELLED: 'cancelled_date',
}

REQUIRED_FIELDS = (
    'order_number', 'shop', 'status',
    'dates.order', 'dates.trial', 'dates.delivery',
    'customer.name', 'customer.phone', 'products',
)

DATE_KEYS = {
    'order': 'order_date',
    'trial': 'trial_date',
    'delivery': 'delivery_date',
    'completion': 'completion_date',
    'cancelled': 'cancelled_date',
}
REQUIRED_DATE_KEYS = ('order', 'trial', 'delivery')

UPDATABLE_FIELDS = {'order_number', 'shop', 'dates', 'products', 'bill', 'measurements'}
IMMUTABLE_FIELDS = {'id', 'customer_id', 'creator_id', 'customer', 'creator', 'status'}
# Stamped only by status transitions
TRANSITION_DATE_KEYS = ('completion', 'cancelled')


@dataclass
class OrderDraft:
    """A validated create payload."""
    order_number: str
    shop: str
    status: str
    dates: Dict[str, Optional[datetime]]
    customer_name: str
    customer_phone: str
    customer_measurements: Optional[Dict[str, Any]]
    products: List[dict]
    bill: Optional[str] = None
    measurements: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.shop, self.order_number)


def _clean_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} must be a non-empty string')
    return value.strip()


def _clean_phone(value: Any) -> str:
    # bool is an int subclass
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    return _clean_str(value, 'customer.phone')


def _optional_str(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field_name} must be a string')
    return value


def _parse_dates(raw: Mapping[str, Any]) -> Dict[str, Optional[datetime]]:
    unknown = set(raw) - set(DATE_KEYS)
    if unknown:
        raise ValidationError(f"Unknown date fields: {', '.join(sorted(unknown))}")
    parsed = {}
    for key, value in raw.items():
        if value is None:
            if key in REQUIRED_DATE_KEYS:
                raise ValidationError(f'dates.{key} cannot be cleared')
            parsed[key] = None
        else:
            parsed[key] = parse_date(value, f'dates.{key}')
    return parsed


def validate_order_payload(data: Any) -> OrderDraft:
    if not isinstance(data, Mapping):
        raise ValidationError('Order payload must be an object')
    require_fields(data, REQUIRED_FIELDS)
    if not isinstance(data['dates'], Mapping):
        raise ValidationError('dates must be an object')
    customer = data['customer']
    if not isinstance(customer, Mapping):
        raise ValidationError('customer must be an object')
    status = validate_status(data['status'], Order.ALL_STATUSES)
    measurements = validate_object(data.get('measurements'), 'measurements')
    customer_measurements = validate_object(customer.get('measurements'), 'customer.measurements')
    return OrderDraft(
        order_number=_clean_str(data['order_number'], 'order_number'),
        shop=_clean_str(data['shop'], 'shop'),
        status=status,
        dates=_parse_dates(data['dates']),
        customer_name=_clean_str(customer['name'], 'customer.name'),
        customer_phone=_clean_phone(customer['phone']),
        # The latest order's measurements become the customer's current ones
        customer_measurements=customer_measurements if customer_measurements is not None else measurements,
        products=validate_products(data['products']),
        bill=_optional_str(data.get('bill'), 'bill'),
        measurements=measurements,
    )


def _require_creator(session, identity: Identity) -> User:
    creator = session.get(User, identity.user_id)
    if creator is None:
        raise Unauthenticated('Token subject no longer exists')
    return creator


def _load_order(session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFound('Order not found with the specified ID')
    return order


def existing_pairs(session, pairs: Sequence[Tuple[str, str]], exclude_id: Optional[int] = None) -> List[Tuple[str, str]]:
    """Return the (shop, order_number) pairs already taken, in one query."""
    if not pairs:
        return []
    conds = [and_(Order.shop==shop, Order.order_number==number) for shop, number in set(pairs)]
    stmt = select(Order.shop, Order.order_number).where(or_(*conds))
    if exclude_id is not None:
        stmt = stmt.where(Order.id!=exclude_id)
    return sorted({(r.shop, r.order_number) for r in session.execute(stmt)})


def _find_customer(session, phone: str) -> Optional[Customer]:
    return session.execute(select(Customer).where(Customer.phone==phone)).scalar_one_or_none()


def _upsert_customer(session, draft: OrderDraft) -> Customer:
    """Update the customer owning the phone, or register a new one.

    Losing the race to register a phone raises TransactionFailure; the retry then
    finds the other request's customer and updates it.
    """
    customer = _find_customer(session, draft.customer_phone)
    if customer is not None:
        customer.name = draft.customer_name
        if draft.customer_measurements is not None:
            customer.measurements = draft.customer_measurements
        session.flush()
        return customer
    customer = Customer(
        name=draft.customer_name,
        phone=draft.customer_phone,
        measurements=draft.customer_measurements,
    )
    session.add(customer)
    try:
        session.flush()
    except IntegrityError as e:
        log.info('Phone %s registered concurrently: %s', draft.customer_phone, e.orig)
        raise TransactionFailure('Customer was registered concurrently, retry the operation')
    return customer


def _insert_order(session, identity: Identity, draft: OrderDraft) -> Tuple[Order, Customer]:
    customer = _upsert_customer(session, draft)
    order = Order(
        order_number=draft.order_number,
        shop=draft.shop,
        status=draft.status,
        order_date=draft.dates['order'],
        trial_date=draft.dates['trial'],
        delivery_date=draft.dates['delivery'],
        completion_date=draft.dates.get('completion'),
        cancelled_date=draft.dates.get('cancelled'),
        customer_id=customer.id,
        creator_id=identity.user_id,
        products=draft.products,
        bill=draft.bill,
        measurements=draft.measurements,
    )
    session.add(order)
    session.flush()
    store.link(session, order.id, customer.id, identity.user_id)
    add_audit(session, identity, 'ORDER.CREATE', 'Order', order.id, {
        'shop': order.shop,
        'order_number': order.order_number,
        'customer_id': customer.id,
    })
    return order, customer


def create_order(session, identity: Identity, data: Any) -> Dict[str, Any]:
    draft = validate_order_payload(data)
    policy.enforce(identity, policy.ORDER_CREATE, policy.OrderTarget(draft.shop))
    with store.transaction(session):
        creator = _require_creator(session, identity)
        taken = existing_pairs(session, [draft.key])
        if taken:
            raise Conflict.for_pairs(taken)
        order, customer = _insert_order(session, identity, draft)
    log.info('Order %s created in shop %s by user %s', order.order_number, order.shop, identity.user_id)
    return order_json(order, customer, creator)


def bulk_create_orders(session, identity: Identity, items: Any) -> List[Dict[str, Any]]:
    """Create every order in ``items`` or none of them."""
    if not isinstance(items, list) or not items:
        raise ValidationError('orders must be a non-empty list')
    drafts = []
    for idx, item in enumerate(items):
        try:
            drafts.append(validate_order_payload(item))
        except ValidationError as e:
            raise ValidationError(f'orders[{idx}]: {e.description}')
    for draft in drafts:
        policy.enforce(identity, policy.ORDER_CREATE, policy.OrderTarget(draft.shop))

    keys = [d.key for d in drafts]
    repeated = {k for k in keys if keys.count(k) > 1}
    with store.transaction(session):
        creator = _require_creator(session, identity)
        collisions = sorted(set(existing_pairs(session, keys)) | repeated)
        if collisions:
            raise Conflict.for_pairs(collisions, 'Orders already exist')
        created = [_insert_order(session, identity, d) for d in drafts]
    log.info('Bulk created %d orders for user %s', len(created), identity.user_id)
    return [order_json(o, c, creator) for o, c in created]


def update_status(session, identity: Identity, order_id: int, status: Any, date: Any = None, bill: Any = None) -> Dict[str, Any]:
    order = _load_order(session, order_id)
    policy.enforce(identity, policy.ORDER_UPDATE, order)
    validate_status(status, Order.ALL_STATUSES)
    previous = order.status
    ORDER_FSM.assert_can_transition(previous, status)

    values: Dict[str, Any] = {'status': status}
    date_field = TRANSITION_DATE_FIELDS.get(status)
    if date_field:
        if date is None:
            raise ValidationError(f'date is required for transition to {status}')
        values[date_field] = parse_date(date, 'date')
    if bill is not None:
        values['bill'] = _optional_str(bill, 'bill')

    with store.transaction(session):
        # Compare-and-set on the status read above; a concurrent transition loses
        result = session.execute(
            update(Order).where(Order.id==order.id, Order.status==previous).values(**values)
        )
        if result.rowcount != 1:
            raise Conflict('Order status changed concurrently, reload and retry')
        add_audit(session, identity, 'ORDER.STATUS', 'Order', order.id, {
            'changes': {'status': {'before': previous, 'after': status}},
        })
    session.refresh(order)
    log.info('Order %s moved %s -> %s', order.id, previous, status)
    return get_order(session, identity, order.id)


def update_fields(session, identity: Identity, order_id: int, fields: Any) -> Dict[str, Any]:
    order = _load_order(session, order_id)
    policy.enforce(identity, policy.ORDER_UPDATE, order)
    if not isinstance(fields, Mapping) or not fields:
        raise ValidationError('No fields to update provided')
    immutable = set(fields) & IMMUTABLE_FIELDS
    if immutable:
        raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(immutable))}")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = {}
    if 'order_number' in fields:
        changes['order_number'] = _clean_str(fields['order_number'], 'order_number')
    if 'shop' in fields:
        new_shop = _clean_str(fields['shop'], 'shop')
        if new_shop != order.shop:
            policy.enforce(identity, policy.ORDER_UPDATE, policy.OrderTarget(new_shop, order.creator_id))
        changes['shop'] = new_shop
    if 'dates' in fields:
        if not isinstance(fields['dates'], Mapping):
            raise ValidationError('dates must be an object')
        stamped = sorted(set(fields['dates']) & set(TRANSITION_DATE_KEYS))
        if stamped:
            raise ValidationError(f"Set by status changes only: {', '.join(f'dates.{k}' for k in stamped)}")
        for key, value in _parse_dates(fields['dates']).items():
            changes[DATE_KEYS[key]] = value
    if 'products' in fields:
        changes['products'] = validate_products(fields['products'])
    if 'bill' in fields:
        changes['bill'] = _optional_str(fields['bill'], 'bill')
    if 'measurements' in fields:
        changes['measurements'] = validate_object(fields['measurements'], 'measurements')

    with store.transaction(session):
        key = (changes.get('shop', order.shop), changes.get('order_number', order.order_number))
        if key != (order.shop, order.order_number):
            taken = existing_pairs(session, [key], exclude_id=order.id)
            if taken:
                raise Conflict.for_pairs(taken)
        for attr, value in changes.items():
            setattr(order, attr, value)
        add_audit(session, identity, 'ORDER.UPDATE', 'Order', order.id, {'fields': sorted(changes)})
    return get_order(session, identity, order.id)


def delete_order(session, identity: Identity, order_id: int) -> Dict[str, Any]:
    order = _load_order(session, order_id)
    policy.enforce(identity, policy.ORDER_DELETE, order)
    with store.transaction(session):
        store.unlink(session, order.id, order.customer_id, order.creator_id)
        session.delete(order)
        session.flush()
        add_audit(session, identity, 'ORDER.DELETE', 'Order', order_id, {
            'shop': order.shop,
            'order_number': order.order_number,
        })
    log.info('Order %s deleted by user %s', order_id, identity.user_id)
    return {'id': order_id, 'deleted': True}


__all__ = [
    'ORDER_FSM', 'TRANSITION_DATE_FIELDS', 'OrderDraft', 'validate_order_payload', 'existing_pairs',
    'create_order', 'bulk_create_orders', 'update_status', 'update_fields', 'delete_order',
]

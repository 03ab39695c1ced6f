"""Staff accounts: login, creation and administration.

Managers administer non-Admin accounts that share one of their shops and can only hand
out shops they hold themselves. Admin accounts carry no shops.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select

from tailorshop.errors import Conflict, NotFound, Unauthenticated, Unauthorized, ValidationError
from tailorshop.models.order import Order, UserOrder
from tailorshop.models.user import User
from tailorshop.services import policy, store
from tailorshop.services.audit import add_audit
from tailorshop.services.identity import Identity, issue_token
from tailorshop.services.queries import user_json, user_order_ids

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _load_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound('No user found with the specified ID')
    return user


def _clean_shops(shops: Any) -> List[str]:
    if shops is None:
        return []
    if not isinstance(shops, list) or any(not isinstance(s, str) or not s.strip() for s in shops):
        raise ValidationError('shops must be a list of shop names')
    return sorted({s.strip() for s in shops})


def _check_password(raw: Any) -> str:
    if not isinstance(raw, str) or len(raw) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'password must be at least {MIN_PASSWORD_LENGTH} characters')
    return raw


def _email_taken(session, email: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(User.id).where(User.email==email)
    if exclude_id is not None:
        stmt = stmt.where(User.id!=exclude_id)
    return session.execute(stmt).first() is not None


def generate_username(session, name: str) -> str:
    """Lower-cased name without whitespace; numbered suffix until unused."""
    base = re.sub(r'\s+', '', name).lower()
    if not base:
        raise ValidationError('name must contain non-whitespace characters')
    taken = set(session.execute(
        select(User.username).where(User.username.like(f'{base}%'))
    ).scalars())
    candidate, n = base, 0
    while candidate in taken:
        n += 1
        candidate = f'{base}{n}'
    return candidate


def authenticate(session, username: Any, password: Any) -> Dict[str, str]:
    if not username or not password:
        raise ValidationError('username & password required')
    user = session.execute(select(User).where(User.username==username)).scalar_one_or_none()
    if user is None:
        raise NotFound('User not found')
    if not user.verify_password(password):
        log.info('Failed login for %s', username)
        raise Unauthenticated('Authentication failed')
    return {'access_token': issue_token(user)}


def current_user(session, identity: Identity) -> Dict[str, Any]:
    user = session.get(User, identity.user_id)
    if user is None:
        raise Unauthenticated('Token subject no longer exists')
    return user_json(user, user_order_ids(session, user.id))


def create_user(session, identity: Identity, data: Any) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError('User payload must be an object')
    missing = [k for k in ('name', 'email', 'password', 'role') if not data.get(k)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    role = data['role']
    if role not in User.ALL_ROLES:
        raise ValidationError('role invalid')
    shops = _clean_shops(data.get('shops'))
    if role == User.ROLE_ADMIN:
        shops = []
    elif not shops:
        raise ValidationError('shops required for Manager and User accounts')
    policy.enforce(identity, policy.USER_MANAGE, policy.UserTarget(role, frozenset(shops)))
    password = _check_password(data['password'])
    name = str(data['name']).strip()
    email = str(data['email']).strip().lower()

    with store.transaction(session):
        if _email_taken(session, email):
            raise Conflict('This email is already in use')
        user = User(name=name, username=generate_username(session, name), email=email, role=role, shops=shops)
        user.set_password(password)
        session.add(user)
        session.flush()
        add_audit(session, identity, 'USER.CREATE', 'User', user.id, {'role': role, 'shops': shops})
    log.info('User %s (%s) created by user %s', user.username, role, identity.user_id)
    return user_json(user, [])


def update_password(session, identity: Identity, user_id: int, password: Any) -> Dict[str, Any]:
    user = _load_user(session, user_id)
    if user.id != identity.user_id:
        policy.enforce(identity, policy.USER_MANAGE, user)
    password = _check_password(password)
    with store.transaction(session):
        user.set_password(password)
        add_audit(session, identity, 'USER.PASSWORD', 'User', user.id)
    return {'id': user.id, 'updated': True}


def update_details(session, identity: Identity, user_id: int, data: Any) -> Dict[str, Any]:
    user = _load_user(session, user_id)
    if user.id != identity.user_id:
        policy.enforce(identity, policy.USER_MANAGE, user)
    if not isinstance(data, Mapping) or not data:
        raise ValidationError('No fields to update provided')
    unknown = set(data) - {'name', 'email'}
    if unknown:
        raise ValidationError(f"Fields cannot be changed here: {', '.join(sorted(unknown))}")
    changes = {}
    for key in ('name', 'email'):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f'{key} must be a non-empty string')
            changes[key] = value.strip().lower() if key == 'email' else value.strip()
    with store.transaction(session):
        if 'email' in changes and _email_taken(session, changes['email'], exclude_id=user.id):
            raise Conflict('This email is already in use')
        for key, value in changes.items():
            setattr(user, key, value)
        add_audit(session, identity, 'USER.UPDATE', 'User', user.id, {'fields': sorted(changes)})
    return user_json(user)


def update_shops(session, identity: Identity, user_id: int, shops: Any) -> Dict[str, Any]:
    """Replace the shops of a Manager or User account."""
    user = _load_user(session, user_id)
    policy.enforce(identity, policy.USER_MANAGE, user)
    shops = _clean_shops(shops)
    if user.role == User.ROLE_ADMIN:
        raise ValidationError('Admin accounts are not assigned to shops')
    if not shops:
        raise ValidationError('shops must not be empty')
    policy.enforce(identity, policy.USER_MANAGE, policy.UserTarget(user.role, frozenset(shops)))
    with store.transaction(session):
        before = sorted(user.shops or [])
        user.shops = shops
        add_audit(session, identity, 'USER.SHOPS', 'User', user.id, {
            'changes': {'shops': {'before': before, 'after': shops}},
        })
    return user_json(user)


def delete_user(session, identity: Identity, user_id: int) -> Dict[str, Any]:
    user = _load_user(session, user_id)
    if user.id == identity.user_id:
        raise Unauthorized('Unauthorized: You cannot delete your own account')
    policy.enforce(identity, policy.USER_MANAGE, user)
    with store.transaction(session):
        has_orders = session.execute(
            select(UserOrder.id).where(UserOrder.user_id==user.id).limit(1)
        ).first() or session.execute(
            select(Order.id).where(Order.creator_id==user.id).limit(1)
        ).first()
        if has_orders:
            raise Conflict('User still has orders and cannot be deleted')
        session.delete(user)
        session.flush()
        add_audit(session, identity, 'USER.DELETE', 'User', user_id, {'username': user.username})
    log.info('User %s deleted by user %s', user_id, identity.user_id)
    return {'id': user_id, 'deleted': True}


__all__ = [
    'authenticate', 'current_user', 'create_user', 'update_password', 'update_details',
    'update_shops', 'delete_user', 'generate_username',
]

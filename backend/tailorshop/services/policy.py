"""Role scoped authorization.

``authorize`` is the only place role names are compared. It returns a tagged decision:
``Allow(scope)`` carrying the shop scope to apply to reads, or ``Deny(reason)``.
Callers that want an exception use ``enforce``.

Targets are plain objects exposing the attributes the rule needs: orders expose
``shop`` and ``creator_id``, users expose ``role`` and ``shops``. Creating a user is
checked against a ``UserTarget`` describing the requested account.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, Optional, Union

from tailorshop.errors import Unauthorized
from tailorshop.services.identity import Identity

ORDER_READ = 'order.read'
ORDER_CREATE = 'order.create'
ORDER_UPDATE = 'order.update'
ORDER_DELETE = 'order.delete'
CUSTOMER_READ = 'customer.read'
USER_READ = 'user.read'
USER_MANAGE = 'user.manage'
SHOP_LIST = 'shop.list'

ALL_ACTIONS = (
    ORDER_READ, ORDER_CREATE, ORDER_UPDATE, ORDER_DELETE,
    CUSTOMER_READ, USER_READ, USER_MANAGE, SHOP_LIST,
)

ROLE_ACTIONS = {
    'Admin': set(ALL_ACTIONS),
    'Manager': set(ALL_ACTIONS),
    'User': {ORDER_READ, ORDER_CREATE, ORDER_UPDATE, ORDER_DELETE, CUSTOMER_READ},
}

ORDER_MUTATIONS = (ORDER_UPDATE, ORDER_DELETE)
USER_ACTIONS = (USER_READ, USER_MANAGE)


@dataclass(frozen=True)
class Scope:
    """Shop restriction for reads; ``shops=None`` means every shop."""
    shops: Optional[FrozenSet[str]] = None

    @property
    def unscoped(self) -> bool:
        return self.shops is None

    def allows_shop(self, shop: Optional[str]) -> bool:
        return self.shops is None or shop in self.shops

    def shares_any(self, shops: Iterable[str]) -> bool:
        return self.shops is None or bool(self.shops.intersection(shops or []))

    def apply(self, query, shop_column):
        """Return query filtered to the scoped shops (no-op when unscoped)."""
        if self.shops is None:
            return query
        return query.filter(shop_column.in_(sorted(self.shops)))


@dataclass(frozen=True)
class Allow:
    scope: Scope


@dataclass(frozen=True)
class Deny:
    reason: str


Decision = Union[Allow, Deny]


@dataclass(frozen=True)
class OrderTarget:
    """An order that does not exist yet (create, or a move to another shop)."""
    shop: str
    creator_id: Optional[int] = None


@dataclass(frozen=True)
class UserTarget:
    """Requested state of an account being created or re-assigned."""
    role: str
    shops: FrozenSet[str] = frozenset()


def scope_for(identity: Identity) -> Scope:
    if identity.is_admin:
        return Scope()
    return Scope(frozenset(identity.shops))


def authorize(identity: Identity, action: str, target: Any = None) -> Decision:
    if action not in ROLE_ACTIONS.get(identity.role, set()):
        return Deny(f'{identity.role} may not perform {action}')
    scope = scope_for(identity)
    if scope.unscoped or target is None:
        return Allow(scope)

    if action in USER_ACTIONS:
        return _authorize_user_target(identity, scope, target)

    shop = getattr(target, 'shop', None)
    if not scope.allows_shop(shop):
        return Deny('Shop is not assigned to you')
    if identity.role == 'User' and action in ORDER_MUTATIONS:
        if getattr(target, 'creator_id', None) != identity.user_id:
            return Deny('You can only modify orders you created')
    return Allow(scope)


def _authorize_user_target(identity: Identity, scope: Scope, target: Any) -> Decision:
    if getattr(target, 'role', None) == 'Admin':
        return Deny('Managers cannot act on Admin accounts')
    target_shops = frozenset(getattr(target, 'shops', None) or [])
    if isinstance(target, UserTarget):
        # Requested assignment must stay inside the manager's own shops
        if not target_shops or not target_shops.issubset(scope.shops):
            return Deny('Shops must be a subset of your own shops')
        return Allow(scope)
    if not scope.shares_any(target_shops):
        return Deny('User does not share a shop with you')
    return Allow(scope)


def enforce(identity: Identity, action: str, target: Any = None) -> Scope:
    decision = authorize(identity, action, target)
    if isinstance(decision, Deny):
        raise Unauthorized(f'Unauthorized: {decision.reason}')
    return decision.scope


__all__ = [
    'Scope', 'Allow', 'Deny', 'OrderTarget', 'UserTarget', 'authorize', 'enforce', 'scope_for',
    'ORDER_READ', 'ORDER_CREATE', 'ORDER_UPDATE', 'ORDER_DELETE', 'CUSTOMER_READ',
    'USER_READ', 'USER_MANAGE', 'SHOP_LIST', 'ALL_ACTIONS',
]

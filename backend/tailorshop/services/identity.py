"""Identity context and credential helpers.

The bearer token is produced and verified by flask-jwt-extended; this module only turns
its decoded claims into an ``Identity`` the policy layer can reason about.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping
from flask_jwt_extended import create_access_token, decode_token, get_jwt, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError
from werkzeug.security import generate_password_hash, check_password_hash

from tailorshop.errors import Unauthenticated

ROLES = ('Admin', 'Manager', 'User')


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str
    shops: FrozenSet[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.role == 'Admin'


def identity_from_claims(claims: Mapping[str, Any]) -> Identity:
    """Build an Identity from decoded JWT claims; malformed claims are unauthenticated."""
    if not claims:
        raise Unauthenticated('Invalid token payload')
    try:
        user_id = int(claims.get('sub'))
    except (TypeError, ValueError):
        raise Unauthenticated('Invalid token subject')
    role = claims.get('role')
    if role not in ROLES:
        raise Unauthenticated('Invalid token role')
    shops = claims.get('shops') or []
    if not isinstance(shops, list) or any(not isinstance(s, str) for s in shops):
        raise Unauthenticated('Invalid token shops')
    return Identity(user_id=user_id, role=role, shops=frozenset(shops))


def decode_identity(token: str) -> Identity:
    """Decode a raw bearer token. Requires an application context."""
    if not token:
        raise Unauthenticated('Missing token')
    if token.startswith('Bearer '):
        token = token[len('Bearer '):]
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        raise Unauthenticated(f'Invalid token: {e}')
    return identity_from_claims(claims)


def current_identity() -> Identity:
    verify_jwt_in_request()
    return identity_from_claims(get_jwt())


def issue_token(user) -> str:
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    claims: Dict[str, Any] = {
        'role': user.role,
        'shops': sorted(user.shops or []),
    }
    return create_access_token(identity=str(user.id), additional_claims=claims)


def hash_password(raw: str) -> str:
    return generate_password_hash(raw)


def verify_password(raw: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, raw)


__all__ = [
    'Identity', 'ROLES', 'identity_from_claims', 'decode_identity', 'current_identity',
    'issue_token', 'hash_password', 'verify_password',
]

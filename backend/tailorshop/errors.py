"""Typed service errors.

Services raise these instead of calling ``flask.abort``. The app-level error handler in
``tailorshop.__init__`` maps each kind to an HTTP status.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = 'VALIDATION'
    NOT_FOUND = 'NOT_FOUND'
    UNAUTHORIZED = 'UNAUTHORIZED'
    UNAUTHENTICATED = 'UNAUTHENTICATED'
    CONFLICT = 'CONFLICT'
    TRANSACTION_FAILURE = 'TRANSACTION_FAILURE'


HTTP_STATUS = {
    ErrorKind.VALIDATION: (400, 'Bad Request'),
    ErrorKind.UNAUTHENTICATED: (401, 'Unauthorized'),
    ErrorKind.UNAUTHORIZED: (403, 'Forbidden'),
    ErrorKind.NOT_FOUND: (404, 'Not Found'),
    ErrorKind.CONFLICT: (409, 'Conflict'),
    ErrorKind.TRANSACTION_FAILURE: (503, 'Service Unavailable'),
}


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    default_description = 'Request failed'

    def __init__(self, description: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.description = description or self.default_description
        self.details = details or {}
        super().__init__(self.description)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind][0]

    def to_payload(self) -> Dict[str, Any]:
        status, title = HTTP_STATUS[self.kind]
        body: Dict[str, Any] = {
            'status': status,
            'title': title,
            'kind': self.kind.value,
            'detail': self.description,
        }
        body.update(self.details)
        return {'error': body}


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION
    default_description = 'Invalid request'


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND
    default_description = 'Not found'


class Unauthorized(ServiceError):
    kind = ErrorKind.UNAUTHORIZED
    default_description = 'Unauthorized'


class Unauthenticated(ServiceError):
    kind = ErrorKind.UNAUTHENTICATED
    default_description = 'Authentication required'


class Conflict(ServiceError):
    kind = ErrorKind.CONFLICT
    default_description = 'Conflict'

    @classmethod
    def for_pairs(cls, pairs: List[tuple], description: str = 'Order already exists'):
        """Conflict carrying the colliding (shop, order_number) pairs."""
        conflicts = [{'shop': shop, 'order_number': number} for shop, number in pairs]
        return cls(description, {'conflicts': conflicts})

    @property
    def conflicts(self) -> List[Dict[str, str]]:
        return self.details.get('conflicts', [])


class TransactionFailure(ServiceError):
    kind = ErrorKind.TRANSACTION_FAILURE
    default_description = 'Transaction aborted, retry the operation'


__all__ = [
    'ErrorKind', 'ServiceError', 'ValidationError', 'NotFound', 'Unauthorized',
    'Unauthenticated', 'Conflict', 'TransactionFailure', 'HTTP_STATUS',
]

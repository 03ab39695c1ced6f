"""Reusable validation helpers for request payloads.

All helpers raise ``ValidationError`` so callers get consistent 400 semantics whether
they run inside a request or not.
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Mapping

from tailorshop.errors import ValidationError


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or raises.
    """
    if new_status not in allowed:
        raise ValidationError(f"{field_name} invalid")
    return new_status


def missing_fields(data: Mapping[str, Any], paths: Iterable[str]) -> List[str]:
    """Return dotted paths whose value is absent or empty (``dates.order`` style)."""
    missing = []
    for path in paths:
        node: Any = data
        for key in path.split('.'):
            node = node.get(key) if isinstance(node, Mapping) else None
            if node is None:
                break
        if node is None or node == '' or node == [] or node == {}:
            missing.append(path)
    return missing


def require_fields(data: Mapping[str, Any], paths: Iterable[str]):
    missing = missing_fields(data, paths)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def parse_date(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 date/datetime into a naive UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO-8601 date")
    else:
        raise ValidationError(f"{field_name} must be an ISO-8601 date")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def validate_products(products: Any) -> List[dict]:
    if not isinstance(products, list) or not products:
        raise ValidationError('products must be a non-empty list')
    cleaned = []
    for idx, item in enumerate(products):
        if not isinstance(item, Mapping):
            raise ValidationError(f'products[{idx}] must be an object')
        ptype = item.get('type')
        if not isinstance(ptype, str) or not ptype.strip():
            raise ValidationError(f'products[{idx}].type required')
        quantity = item.get('quantity', 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f'products[{idx}].quantity must be a positive int')
        cleaned.append({'type': ptype.strip(), 'quantity': quantity})
    return cleaned


def validate_object(value: Any, field_name: str):
    if value is not None and not isinstance(value, Mapping):
        raise ValidationError(f'{field_name} must be an object')
    return dict(value) if value is not None else None

__all__ = ['validate_status', 'missing_fields', 'require_fields', 'parse_date', 'validate_products', 'validate_object']

from __future__ import annotations
from typing import Tuple
from flask import current_app, request
from sqlalchemy.orm import Query

from tailorshop.config.settings import normalize_pagination
from tailorshop.errors import ValidationError


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(
            request.args.get('limit'),
            request.args.get('offset'),
            current_app.config['PAGINATION_DEFAULT_LIMIT'],
            current_app.config['PAGINATION_MAX_LIMIT'],
        )
    except ValueError as e:
        raise ValidationError(str(e))
    total = q.order_by(None).count()
    return q.offset(offset).limit(limit), total, limit, offset


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def paginated(q: Query, serialize):
    """Paginate ``q`` from request args and serialize each row."""
    paged_q, total, limit, offset = apply_pagination(q)
    rows = [serialize(r) for r in paged_q.all()]
    return build_list_payload(rows, total, limit, offset)


def paginated_list(items: list, serialize):
    """Same as ``paginated`` for rows already filtered in Python."""
    try:
        limit, offset = normalize_pagination(
            request.args.get('limit'),
            request.args.get('offset'),
            current_app.config['PAGINATION_DEFAULT_LIMIT'],
            current_app.config['PAGINATION_MAX_LIMIT'],
        )
    except ValueError as e:
        raise ValidationError(str(e))
    rows = [serialize(r) for r in items[offset:offset + limit]]
    return build_list_payload(rows, len(items), limit, offset)

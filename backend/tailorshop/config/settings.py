"""Environment driven defaults for create_app(); callers may override any key."""
from __future__ import annotations
from datetime import timedelta
import os

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def load_settings():
    hours = os.getenv('JWT_ACCESS_TOKEN_EXPIRES_HOURS', '24')
    try:
        expires = timedelta(hours=int(hours))
    except ValueError:
        raise ValueError('JWT_ACCESS_TOKEN_EXPIRES_HOURS must be int')
    return {
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'JWT_ACCESS_TOKEN_EXPIRES': expires,
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO'),
        'PAGINATION_DEFAULT_LIMIT': DEFAULT_LIMIT,
        'PAGINATION_MAX_LIMIT': MAX_LIMIT,
    }


def normalize_pagination(limit_raw, offset_raw, default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT):
    try:
        limit = int(limit_raw) if limit_raw is not None else default_limit
        offset = int(offset_raw) if offset_raw is not None else 0
    except ValueError:
        raise ValueError('limit/offset must be int')
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset

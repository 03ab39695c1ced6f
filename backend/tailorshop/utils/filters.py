from __future__ import annotations
from typing import Any, Dict, Mapping

from tailorshop.errors import ValidationError

def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Mapping[str, Any]):
    """Apply each filter in ``specs`` whose parameter is present and not blank.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable, 'validate': callable } }
    Parameters without an entry (limit, offset, sort) are ignored.
    """
    for name, meta in specs.items():
        raw = params.get(name)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        value = raw.strip() if isinstance(raw, str) else raw
        coerce = meta.get('coerce')
        if coerce is not None:
            try:
                value = coerce(value)
            except (TypeError, ValueError):
                raise ValidationError(f'{name} invalid: {raw!r}')
        validate = meta.get('validate')
        if validate is not None and not validate(value):
            raise ValidationError(f'{name} invalid: {raw!r}')
        query = meta['op'](query, value)
    return query

"""Sort expressions for list endpoints, e.g. ``sort=-order_date,order_number``."""
from __future__ import annotations
from typing import Dict, List, Tuple

from tailorshop.errors import ValidationError


def parse_sort(sort_expr: str | None, allowed: Dict[str, object]) -> List[Tuple[str, bool]]:
    """Return ``[(key, descending), ...]``; a key named twice keeps its first direction."""
    keys: List[Tuple[str, bool]] = []
    seen = set()
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('+-')
        if key not in allowed:
            raise ValidationError(f"Invalid sort field {key}; expected one of {', '.join(sorted(allowed))}")
        if key in seen:
            continue
        seen.add(key)
        keys.append((key, desc))
    return keys


def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker):
    """Order ``query`` by the parsed expression, then by ``tie_breaker`` for stable pages."""
    clauses = [allowed[key].desc() if desc else allowed[key].asc() for key, desc in parse_sort(sort_expr, allowed)]
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)

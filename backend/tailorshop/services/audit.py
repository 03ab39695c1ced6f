from __future__ import annotations
from typing import Any, Dict, Optional
from tailorshop.models.audit import AuditLog


def add_audit(session, actor, action: str, entity: Optional[str] = None, entity_id: Optional[Any] = None, meta: Optional[Dict[str, Any]] = None):
    """Stage an audit log entry in ``session``.

    Parameters:
      actor: Identity performing the action (or None for system actions such as seeding)
      action: short action code e.g. ORDER.CREATE, ORDER.STATUS, USER.DELETE
      entity: optional entity name (Order, User, ...)
      entity_id: optional primary key (stored as string)
      meta: additional JSON-safe dictionary (will be shallow copied)
    """
    meta = dict(meta or {})
    if actor is not None:
        meta.setdefault('role', actor.role)
    log = AuditLog(
        actor_user_id=actor.user_id if actor is not None else 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=meta,
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log

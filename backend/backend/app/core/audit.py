from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog
from app.core.middleware import get_request_id


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
) -> None:
    """Add an append-only audit record to the caller's transaction.

    Keep payload JSON-serializable.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        json.dumps(safe_payload)
    except TypeError:
        safe_payload = json.loads(json.dumps(safe_payload, default=str))

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            request_id=get_request_id(),
            payload=safe_payload,
        )
    )

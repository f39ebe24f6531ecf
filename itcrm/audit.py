from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from itcrm.context import get_correlation_id

logger = logging.getLogger("itcrm.audit")

audit_entries: list[dict[str, Any]] = []


def record(
    actor_user_id: int,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    resolved_correlation_id = correlation_id or get_correlation_id()
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "correlation_id": resolved_correlation_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit",
        extra={
            "user_id": actor_user_id,
            "resource": entity_type,
            "entity_id": entity_id,
            "action": action,
        },
    )
    return entry


def discard(entry: dict[str, Any]) -> None:
    """Drop an entry whose transaction was rolled back."""

    if entry in audit_entries:
        audit_entries.remove(entry)
        logger.info(
            "audit.discarded",
            extra={"resource": entry["entity_type"], "entity_id": entry["entity_id"], "action": entry["action"]},
        )

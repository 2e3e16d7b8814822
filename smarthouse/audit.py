from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from smarthouse.rowstore import Workbook

logger = logging.getLogger("smarthouse.audit")

AUDIT_LOG_SHEET = "AuditLog"
AUDIT_LOG_HEADERS = [
    "id",
    "timestamp",
    "actorId",
    "actorName",
    "action",
    "entityType",
    "entityId",
    "success",
    "details",
]


def log_audit(
    book: Workbook,
    *,
    actor_id: str,
    action: str,
    success: bool = True,
    actor_name: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    record = {
        "id": f"audit-{uuid4().hex[:12]}",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "actorId": actor_id,
        "actorName": actor_name or "",
        "action": action,
        "entityType": entity_type or "",
        "entityId": entity_id or "",
        "success": success,
        "details": json.dumps(details or {}, ensure_ascii=False, default=str),
    }
    try:
        book.get_sheet(AUDIT_LOG_SHEET, AUDIT_LOG_HEADERS).add_row(record)
    except Exception:
        book.db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )

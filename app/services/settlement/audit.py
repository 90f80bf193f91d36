"""Audit trail for settlement runs, manual reports, adjustments and deletions."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.audit_log import AuditLogEntry

logger = get_logger(__name__)

ACTION_WEEKLY_RUN = "weekly_settlement_run"
ACTION_REPORT_CREATED = "settlement_created"
ACTION_REPORT_DELETED = "settlement_deleted"
ACTION_REPORT_PAID = "settlement_paid"
ACTION_ADJUSTMENT_RECORDED = "settlement_adjustment_recorded"


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    # Decimals, dates and UUIDs go to the JSON column as strings
    return json.loads(json.dumps(details, default=str))


def record_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    details: dict[str, Any],
) -> AuditLogEntry:
    """Add an audit entry to the current transaction (flushed, not committed)."""
    entry = AuditLogEntry(actor=actor, action=action, details=_jsonable(details))
    db.add(entry)
    db.flush()
    logger.info("Audit: actor=%s action=%s", actor, action)
    return entry

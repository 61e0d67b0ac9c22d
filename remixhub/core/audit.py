"""Audit trail for remix and payment state changes."""

from typing import Any

from remixhub.core.logging import get_logger
from remixhub.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    )
    await entry.insert()
    log.debug("audit_event", event_type=event_type, entity_type=entity_type, entity_id=entity_id)
    return entry

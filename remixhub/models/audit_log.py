from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import Field

AuditEntity = Literal["remix", "payment"]


class AuditLog(Document):
    """Append-only trail of remix and payment state changes."""
    user_id: str | None = None  # None for sweeper-driven events
    event_type: str  # remix_succeeded, remix_failed, payment_approved, payment_cancelled
    entity_type: AuditEntity
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_events"
        indexes = [
            [("entity_type", 1), ("entity_id", 1), ("created_at", 1)],
            [("event_type", 1), ("created_at", -1)],
        ]

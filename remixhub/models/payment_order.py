from datetime import datetime
from decimal import Decimal
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class PaymentOrder(Document):
    """PIX charge for a credit pack. Leaves ``pending`` exactly once."""
    user_id: PydanticObjectId
    amount_cents: int  # BRL centavos
    credits_purchased: int
    status: PaymentStatus = PaymentStatus.PENDING
    provider_payment_id: str
    provider_status: str | None = None
    qr_code: str = ""
    qr_code_base64: str = ""
    ticket_url: str = ""
    cancel_reason: str | None = None  # user, expired, provider
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime
    resolved_at: datetime | None = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_cents) / 100

    class Settings:
        name = "payments"
        indexes = [
            [("provider_payment_id", 1)],
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("expires_at", 1)],
        ]

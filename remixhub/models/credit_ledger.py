from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel

LedgerReason = Literal["purchase", "remix", "refund", "adjustment"]


class CreditLedgerEntry(Document):
    user_id: PydanticObjectId
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: LedgerReason
    reference_type: str | None = None  # remix, payment
    reference_id: str | None = None
    idempotency_key: str | None = None  # payment:{order_id}, remix:{remix_id}
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_ledger"
        # Unset fields are left out of the stored document, so entries without
        # an idempotency key stay out of the sparse unique index.
        keep_nulls = False
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            IndexModel([("idempotency_key", 1)], name="idempotency_key_unique", unique=True, sparse=True),
        ]

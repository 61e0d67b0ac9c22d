from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel


class CreditBalance(Document):
    """Current balance per user; only ever changed with a single atomic $inc."""
    user_id: PydanticObjectId
    balance: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_balances"
        indexes = [IndexModel([("user_id", 1)], unique=True)]

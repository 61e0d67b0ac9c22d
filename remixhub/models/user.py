from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    """Account record; populated by the external auth flow."""
    email: Indexed(str, unique=True)
    name: str = ""
    cpf: str | None = None  # payer tax id for PIX charges
    session_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

from datetime import datetime
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field


class RemixStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class RemixRequest(Document):
    """One remix submission. Terminal once status leaves ``processing``."""
    user_id: PydanticObjectId
    source_repo: str
    destination_repo: str
    status: RemixStatus = RemixStatus.PROCESSING
    files_copied: int = 0
    files_skipped: int = 0
    commit_sha: str | None = None
    branch: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    class Settings:
        name = "remixes"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
        ]

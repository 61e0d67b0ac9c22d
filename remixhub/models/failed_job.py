from datetime import datetime

from beanie import Document
from pydantic import Field


class FailedJob(Document):
    """A sweep run that raised; kept for inspection since crons are not retried."""
    job_name: str
    job_id: str
    job_try: int = 1
    error_type: str = ""
    reason: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("created_at", -1)]]

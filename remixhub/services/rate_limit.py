"""Remix rate limit: rolling one-hour window counted from stored remix requests."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId

from remixhub.core.config import get_settings
from remixhub.models.remix_request import RemixRequest

WINDOW = timedelta(hours=1)


def remix_hourly_limit() -> int:
    return get_settings().remix_rate_limit_per_hour


async def count_recent_remixes(user_id: PydanticObjectId, now: datetime | None = None) -> int:
    """Remix requests the user submitted within the trailing window."""
    since = (now or datetime.utcnow()) - WINDOW
    return await RemixRequest.find(
        RemixRequest.user_id == user_id,
        RemixRequest.created_at >= since,
    ).count()


async def remix_allowed(user_id: PydanticObjectId, now: datetime | None = None) -> bool:
    # Read-then-decide; concurrent submissions may slip one past the limit.
    return await count_recent_remixes(user_id, now) < remix_hourly_limit()

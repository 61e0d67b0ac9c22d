"""ARQ job definitions: periodic sweeps for payments and remixes."""

import uuid
from typing import Any, Awaitable, TypeVar
from urllib.parse import urlparse

from arq.connections import RedisSettings

from remixhub.core.config import get_settings
from remixhub.core.logging import get_logger
from remixhub.models.failed_job import FailedJob

log = get_logger(__name__)

T = TypeVar("T")


async def _run_with_dlq(job_name: str, ctx: dict[str, Any], coro: Awaitable[T]) -> T:
    """Await ``coro``; on exception persist a FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=job_id,
            job_try=ctx.get("job_try") or 1,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=job_id)
        raise


async def expire_pending_payments(ctx: dict[str, Any]) -> int:
    """Cron: close pending payment orders past their deadline."""
    from remixhub.services.payments import expire_stale_payments
    return await _run_with_dlq("expire_pending_payments", ctx, expire_stale_payments())


async def repair_payment_credits(ctx: dict[str, Any]) -> int:
    """Cron: grant credits for approved orders left without a ledger entry."""
    from remixhub.services.payments import repair_unsettled_approvals
    return await _run_with_dlq("repair_payment_credits", ctx, repair_unsettled_approvals())


async def fail_stale_remixes(ctx: dict[str, Any]) -> int:
    """Cron: remixes stuck in processing past the orchestration timeout become errors."""
    from remixhub.services.remixes import fail_stale_remixes as _fail_stale
    return await _run_with_dlq("fail_stale_remixes", ctx, _fail_stale())


async def startup(ctx: dict) -> None:
    from remixhub.core.logging import configure_logging
    from remixhub.db.init import init_db
    settings = get_settings()
    configure_logging(debug=settings.debug, level=settings.log_level)
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env)
    await init_db()
    log.info("worker_startup")


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    u = urlparse(get_settings().redis_url)
    db = u.path.lstrip("/")
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(db) if db else 0,
        ssl=u.scheme == "rediss",
    )

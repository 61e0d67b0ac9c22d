"""Remix use case: validate, check credits and rate limit, copy, then settle."""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse

from remixhub.core.audit import log_event
from remixhub.core.config import get_settings
from remixhub.core.exceptions import (
    AppError,
    InsufficientCreditsError,
    InvalidRepositoryURLError,
    MissingCredentialError,
    RateLimitExceededError,
    RemixTimeoutError,
    ValidationError,
)
from remixhub.core.logging import get_logger
from remixhub.models.remix_request import RemixRequest, RemixStatus
from remixhub.services import credits as credits_service
from remixhub.services import rate_limit
from remixhub.services.copier import CopyResult, RepoRef, RepositoryCopier
from remixhub.services.github import GitHubClient

log = get_logger(__name__)

GITHUB_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/"
    r"(?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)/"
    r"(?P<repo>[A-Za-z0-9._-]+?)(?:\.git)?/?(?:[/?#].*)?$",
    re.IGNORECASE,
)


def parse_github_url(url: str | None) -> RepoRef:
    """'https://github.com/acme/widgets(.git)' -> RepoRef('acme', 'widgets')."""
    match = GITHUB_URL_RE.match((url or "").strip())
    if not match or match.group("repo") in (".", ".."):
        raise InvalidRepositoryURLError(url or "")
    return RepoRef(owner=match.group("owner"), repo=match.group("repo"))


@dataclass
class RemixSubmission:
    source_repo: str
    dest_repo: str
    github_token: str
    same_account: bool = True
    dest_token: str | None = None


@dataclass(frozen=True)
class RemixPlan:
    source: RepoRef
    dest: RepoRef
    source_token: str
    dest_token: str


def plan_remix(submission: RemixSubmission) -> RemixPlan:
    """Pure input validation; raises before anything touches the network or the database."""
    source = parse_github_url(submission.source_repo)
    dest = parse_github_url(submission.dest_repo)
    if source.full_name.lower() == dest.full_name.lower():
        raise ValidationError("Source and destination repositories must differ")
    token = (submission.github_token or "").strip()
    if not token:
        raise MissingCredentialError()
    dest_token = token
    if not submission.same_account:
        dest_token = (submission.dest_token or "").strip() or token
    return RemixPlan(source=source, dest=dest, source_token=token, dest_token=dest_token)


async def _run_copy(plan: RemixPlan, client_factory: Callable[[str], GitHubClient]) -> CopyResult:
    source_client = client_factory(plan.source_token)
    dest_client = client_factory(plan.dest_token)
    try:
        return await RepositoryCopier(source_client, dest_client).copy(plan.source, plan.dest)
    finally:
        await source_client.aclose()
        await dest_client.aclose()


async def _finish(remix: RemixRequest, status: RemixStatus, **fields) -> RemixRequest | None:
    """processing -> terminal; None if the record was already terminal."""
    return await RemixRequest.find_one(
        RemixRequest.id == remix.id,
        RemixRequest.status == RemixStatus.PROCESSING.value,
    ).update(
        {"$set": {"status": status.value, "finished_at": datetime.utcnow(), **fields}},
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def _fail(remix: RemixRequest, error: Exception) -> None:
    message = error.message if isinstance(error, AppError) else str(error)
    finished = await _finish(remix, RemixStatus.ERROR, error_message=message[:2000])
    log.warning("remix_failed", remix_id=str(remix.id), error=message[:500])
    if finished is not None:
        await log_event(str(remix.user_id), "remix_failed", "remix", str(remix.id), {"error": message[:500]})


async def create_remix(
    user_id: PydanticObjectId,
    submission: RemixSubmission,
    client_factory: Callable[[str], GitHubClient] | None = None,
) -> RemixRequest:
    """
    Run one remix end to end. Only after the copy succeeds is the remix marked
    ``success`` and a credit debited; any failure marks it ``error`` and charges nothing.
    """
    settings = get_settings()
    plan = plan_remix(submission)
    balance = await credits_service.get_balance(user_id)
    if balance < settings.credits_per_remix:
        raise InsufficientCreditsError(details={"required": settings.credits_per_remix, "balance": balance})
    if not await rate_limit.remix_allowed(user_id):
        raise RateLimitExceededError(rate_limit.remix_hourly_limit(), int(rate_limit.WINDOW.total_seconds()))

    remix = RemixRequest(
        user_id=user_id,
        source_repo=submission.source_repo.strip(),
        destination_repo=submission.dest_repo.strip(),
    )
    await remix.insert()
    log.info("remix_started", remix_id=str(remix.id), source=plan.source.full_name, destination=plan.dest.full_name)

    try:
        result = await asyncio.wait_for(
            _run_copy(plan, client_factory or GitHubClient),
            timeout=settings.remix_timeout_seconds,
        )
    except asyncio.TimeoutError:
        error = RemixTimeoutError(settings.remix_timeout_seconds)
        await _fail(remix, error)
        raise error
    except Exception as e:
        await _fail(remix, e)
        raise

    finished = await _finish(
        remix,
        RemixStatus.SUCCESS,
        files_copied=result.files_copied,
        files_skipped=result.files_skipped,
        commit_sha=result.commit_sha,
        branch=result.branch,
    )
    if finished is None:
        # Swept to error while still running; the user is not charged.
        log.warning("remix_finished_after_sweep", remix_id=str(remix.id))
        return await RemixRequest.get(remix.id)

    try:
        await credits_service.debit(
            user_id,
            settings.credits_per_remix,
            reason="remix",
            reference_type="remix",
            reference_id=str(remix.id),
            idempotency_key=f"remix:{remix.id}",
        )
    except InsufficientCreditsError:
        log.error("remix_debit_shortfall", remix_id=str(remix.id), user_id=str(user_id))
    await log_event(
        str(user_id),
        "remix_succeeded",
        "remix",
        str(remix.id),
        {"files_copied": result.files_copied, "files_skipped": result.files_skipped},
    )
    return finished


async def list_remixes(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[RemixRequest]:
    return (
        await RemixRequest.find(RemixRequest.user_id == user_id)
        .sort(-RemixRequest.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def fail_stale_remixes(now: datetime | None = None) -> int:
    """Mark remixes stuck in ``processing`` past the orchestration timeout as ``error``."""
    settings = get_settings()
    cutoff = (now or datetime.utcnow()) - timedelta(
        seconds=settings.remix_timeout_seconds + settings.remix_stale_grace_seconds
    )
    stale = await RemixRequest.find(
        RemixRequest.status == RemixStatus.PROCESSING.value,
        RemixRequest.created_at < cutoff,
    ).to_list()
    count = 0
    for remix in stale:
        if await _finish(remix, RemixStatus.ERROR, error_message="Remix timed out") is not None:
            count += 1
    if count:
        log.info("stale_remixes_failed", count=count)
    return count

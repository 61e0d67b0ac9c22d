from datetime import datetime, timedelta

import pytest

from remixhub.models.failed_job import FailedJob
from remixhub.models.remix_request import RemixRequest, RemixStatus
from remixhub.worker import tasks
from remixhub.worker.run_worker import WorkerSettings


async def test_fail_stale_remixes_job(user):
    await RemixRequest(
        user_id=user.id,
        source_repo="a",
        destination_repo="b",
        created_at=datetime.utcnow() - timedelta(hours=1),
    ).insert()
    assert await tasks.fail_stale_remixes({"job_id": "cron:1"}) == 1
    remix = await RemixRequest.find_one(RemixRequest.user_id == user.id)
    assert remix.status == RemixStatus.ERROR


async def test_expire_job_without_stale_orders(db):
    assert await tasks.expire_pending_payments({}) == 0


async def test_failed_job_is_dead_lettered(db):
    async def boom():
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError):
        await tasks._run_with_dlq("expire_pending_payments", {"job_id": "job-7", "job_try": 2}, boom())

    failed = await FailedJob.find_one(FailedJob.job_id == "job-7")
    assert failed.job_name == "expire_pending_payments"
    assert failed.job_try == 2
    assert failed.error_type == "RuntimeError"
    assert failed.reason == "provider down"


def test_worker_settings_register_sweeps():
    names = {job.name for job in WorkerSettings.cron_jobs}
    assert {"cron:expire_pending_payments", "cron:fail_stale_remixes", "cron:repair_payment_credits"} <= names


def test_redis_settings_from_url(settings, monkeypatch):
    monkeypatch.setattr(settings, "redis_url", "redis://:pw@cache.internal:6380/2")
    rs = tasks.get_redis_settings()
    assert (rs.host, rs.port, rs.password, rs.database) == ("cache.internal", 6380, "pw", 2)
    assert rs.ssl is False

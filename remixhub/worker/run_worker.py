"""Run ARQ worker. Usage: python -m remixhub.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from remixhub.worker.tasks import (
    expire_pending_payments,
    fail_stale_remixes,
    get_redis_settings,
    repair_payment_credits,
    shutdown,
    startup,
)


class WorkerSettings:
    """Settings for ``arq remixhub.worker.run_worker.WorkerSettings``."""
    redis_settings = get_redis_settings()
    functions = [expire_pending_payments, fail_stale_remixes, repair_payment_credits]
    cron_jobs = [
        cron(expire_pending_payments, second=0),  # every minute at :00
        cron(fail_stale_remixes, second=30),
        cron(repair_payment_credits, minute={0, 15, 30, 45}, second=15),
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()

"""Run ARQ worker. Usage: python -m app.worker.run_worker (or: arq app.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron

from app.worker.tasks import get_redis_settings, reconcile_address, reconcile_balances, shutdown, startup


class WorkerSettings:
    functions = [reconcile_address]
    cron_jobs = [
        cron(reconcile_balances, minute={0, 15, 30, 45}, second=0),  # every 15 minutes
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()


if __name__ == "__main__":
    run_worker(WorkerSettings)

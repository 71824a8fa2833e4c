"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger
from app.services import paion as paion_service
from app.storage.base import build_stores
from app.worker.cron import run_reconcile_balances

log = get_logger(__name__)


async def _run_logged(job_name: str, ctx: dict[str, Any], coro) -> Any:
    """Run coroutine with start/done/failed log lines; failures re-raise so arq can retry."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    log.info("job_start", job=job_name, job_id=job_id)
    try:
        result = await coro
    except Exception as e:
        log.exception("job_failed", job=job_name, job_id=job_id, reason=str(e)[:2000])
        raise
    log.info("job_done", job=job_name, job_id=job_id)
    return result


async def reconcile_address(ctx: dict[str, Any], address: str) -> dict:
    """Reconcile one address on demand."""
    report = await _run_logged("reconcile_address", ctx, paion_service.reconcile(ctx["ledger_store"], address))
    return report.model_dump()


async def reconcile_balances(ctx: dict[str, Any]) -> dict:
    """Cron job: reconcile every balance record against its log."""
    batch_size = get_settings().reconcile_batch_size
    return await _run_logged(
        "reconcile_balances",
        ctx,
        run_reconcile_balances(ctx["ledger_store"], batch_size),
    )


async def startup(ctx: dict) -> None:
    configure_logging(debug=get_settings().debug)
    ctx["ledger_store"], ctx["notification_store"] = await build_stores()


async def shutdown(ctx: dict) -> None:
    store = ctx.get("ledger_store")
    if store is not None:
        await store.close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


async def enqueue_reconcile_address(address: str) -> str | None:
    """Enqueue reconcile_address job (call from API or scripts); return the job id."""
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job("reconcile_address", address)
        return job.job_id if job else None
    finally:
        await redis.aclose()

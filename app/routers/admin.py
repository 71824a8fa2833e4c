from fastapi import APIRouter, Depends, Query

from app.core.config import get_settings
from app.deps import get_ledger_store, get_redis, require_server
from app.services import paion as paion_service
from app.services import stats as stats_service
from app.services.paion import CallerContext, ReconciliationReport
from app.storage.base import LedgerStore

router = APIRouter()


@router.get("/paion-stats")
async def paion_stats(
    top: int = Query(10),
    store: LedgerStore = Depends(get_ledger_store),
    redis=Depends(get_redis),
    _: CallerContext = Depends(require_server),
):
    """Admin: supply, holders and top-N distribution. May be up to ttl_seconds stale."""
    stats, cached = await stats_service.token_stats_with_cache(store, redis, top)
    return {
        "success": True,
        "stats": stats.model_dump(by_alias=True),
        "cached": cached,
        "ttl_seconds": get_settings().stats_cache_ttl_seconds if redis is not None else 0,
    }


@router.get("/reconcile", response_model=ReconciliationReport)
async def reconcile(
    address: str = Query(...),
    store: LedgerStore = Depends(get_ledger_store),
    _: CallerContext = Depends(require_server),
):
    """Admin: compare a stored balance with the fold of its transaction log."""
    return await paion_service.reconcile(store, address)


@router.post("/reconcile/enqueue")
async def enqueue_reconcile(address: str = Query(...), _: CallerContext = Depends(require_server)):
    """Admin: run reconciliation for an address on the worker."""
    from app.worker.tasks import enqueue_reconcile_address
    job_id = await enqueue_reconcile_address(paion_service.normalize_address(address))
    return {"success": True, "job_id": job_id}

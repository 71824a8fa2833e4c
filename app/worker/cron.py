"""Cron: fold every address's transaction log and compare it with the stored balance."""

from app.core.logging import get_logger
from app.services import paion as paion_service
from app.storage.base import LedgerStore

log = get_logger(__name__)


async def run_reconcile_balances(store: LedgerStore, batch_size: int = 500) -> dict:
    """Walk all balance records in address order; return counts and the inconsistent addresses."""
    checked = 0
    mismatched: list[str] = []
    offset = 0
    while True:
        batch = await store.list_balances(batch_size, offset)
        if not batch:
            break
        for bal in batch:
            report = await paion_service.reconcile(store, bal.user_address)
            checked += 1
            if not report.consistent:
                mismatched.append(report.address)
        offset += len(batch)
    log.info("reconcile_balances_done", checked=checked, mismatched=len(mismatched))
    return {"checked": checked, "mismatched": mismatched}

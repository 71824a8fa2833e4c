"""Supply, holder and distribution stats over the balance store, with a short Redis cache."""

import orjson
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import get_settings
from app.core.exceptions import LedgerValidationError
from app.core.logging import get_logger
from app.storage.base import LedgerStore

log = get_logger(__name__)

KEY_PREFIX = "paion:stats"
MAX_TOP_HOLDERS = 100


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TotalStats(_CamelModel):
    total_supply: int = Field(alias="totalSupply")
    total_users: int = Field(alias="totalUsers")
    total_transactions: int = Field(alias="totalTransactions")


class Holder(_CamelModel):
    address: str
    balance: int
    percentage: float


class TokenStats(_CamelModel):
    total_supply: int = Field(alias="totalSupply")
    circulating_supply: int = Field(alias="circulatingSupply")
    total_locked: int = Field(alias="totalLocked")
    total_holders: int = Field(alias="totalHolders")
    average_balance: float = Field(alias="averageBalance")
    top_holders: list[Holder] = Field(alias="topHolders")
    treasury_balance: int = Field(alias="treasuryBalance")
    royalties_balance: int = Field(alias="royaltiesBalance")


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


async def get_total_stats(store: LedgerStore) -> TotalStats:
    summary = await store.summarize_balances()
    return TotalStats(
        total_supply=summary.total_supply,
        total_users=summary.account_count,
        total_transactions=await store.count_transactions(),
    )


async def get_token_stats(store: LedgerStore, top_n: int = 10) -> TokenStats:
    """Holders are addresses with balance > 0; circulating supply leaves out the platform wallets."""
    if top_n < 1 or top_n > MAX_TOP_HOLDERS:
        raise LedgerValidationError(f"top must be between 1 and {MAX_TOP_HOLDERS}", details={"top": top_n})
    settings = get_settings()
    summary = await store.summarize_balances()
    top = await store.top_balances(top_n)

    treasury = await store.get_balance(settings.treasury_address)
    royalties = await store.get_balance(settings.royalties_address)
    treasury_balance = treasury.balance if treasury else 0
    royalties_balance = royalties.balance if royalties else 0
    reserved = treasury_balance
    if settings.royalties_address != settings.treasury_address:
        reserved += royalties_balance

    return TokenStats(
        total_supply=summary.total_supply,
        circulating_supply=summary.total_supply - reserved,
        total_locked=summary.total_locked,
        total_holders=summary.holder_count,
        average_balance=round(summary.total_supply / summary.holder_count, 2) if summary.holder_count else 0.0,
        top_holders=[
            Holder(address=b.user_address, balance=b.balance, percentage=_percent(b.balance, summary.total_supply))
            for b in top
        ],
        treasury_balance=treasury_balance,
        royalties_balance=royalties_balance,
    )


def _key(top_n: int) -> str:
    return f"{KEY_PREFIX}:top{top_n}"


async def get_cached_token_stats(redis, key: str) -> TokenStats | None:
    try:
        raw = await redis.get(key)
    except Exception:
        log.warning("stats_cache_read_failed", key=key)
        return None
    if raw is None:
        return None
    return TokenStats.model_validate(orjson.loads(raw))


async def set_cached_token_stats(redis, key: str, stats: TokenStats, ttl_seconds: int) -> None:
    try:
        await redis.set(key, orjson.dumps(stats.model_dump()), ex=ttl_seconds)
    except Exception:
        log.warning("stats_cache_write_failed", key=key)


async def token_stats_with_cache(store: LedgerStore, redis, top_n: int = 10) -> tuple[TokenStats, bool]:
    """Return (stats, served_from_cache). Values may lag the ledger by up to the cache TTL."""
    ttl = get_settings().stats_cache_ttl_seconds
    if redis is None or ttl <= 0:
        return await get_token_stats(store, top_n), False
    key = _key(top_n)
    cached = await get_cached_token_stats(redis, key)
    if cached is not None:
        return cached, True
    stats = await get_token_stats(store, top_n)
    await set_cached_token_stats(redis, key, stats, ttl)
    return stats, False

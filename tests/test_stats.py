import orjson
import pytest

from app.core.config import get_settings
from app.core.exceptions import LedgerValidationError
from app.services import paion as paion_service
from app.services import stats as stats_service

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 32
BOB = "0x" + "b2" * 32
CAROL = "0x" + "c3" * 32


class FakeRedis:
    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.expiry: dict[str, int | None] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex


class BrokenRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis down")


async def _populate(store, notifications):
    treasury = get_settings().treasury_address
    await paion_service.add_tokens(store, notifications, treasury, 500, "Mint", "manual")
    await paion_service.add_tokens(store, notifications, ALICE, 300, "Quiz", "quiz")
    await paion_service.add_tokens(store, notifications, BOB, 250, "Quiz", "quiz")
    await paion_service.spend_tokens(store, notifications, BOB, 50, "Swap", "swap")
    await paion_service.initialize_balance(store, CAROL)


async def test_total_stats_empty(store):
    stats = await stats_service.get_total_stats(store)
    assert (stats.total_supply, stats.total_users, stats.total_transactions) == (0, 0, 0)


async def test_total_stats(store, notifications):
    await _populate(store, notifications)
    stats = await stats_service.get_total_stats(store)
    assert stats.total_supply == 1000
    assert stats.total_users == 4
    assert stats.total_transactions == 4
    assert stats.model_dump(by_alias=True) == {"totalSupply": 1000, "totalUsers": 4, "totalTransactions": 4}


async def test_token_stats_distribution(store, notifications):
    await _populate(store, notifications)
    settings = get_settings()
    stats = await stats_service.get_token_stats(store, top_n=2)
    assert stats.total_supply == 1000
    assert stats.total_holders == 3  # CAROL holds nothing
    assert stats.average_balance == 333.33
    assert stats.treasury_balance == 500
    if settings.royalties_address == settings.treasury_address:
        assert stats.circulating_supply == 500
    assert [(h.address, h.balance, h.percentage) for h in stats.top_holders] == [
        (settings.treasury_address, 500, 50.0),
        (ALICE, 300, 30.0),
    ]


async def test_token_stats_empty_store(store):
    stats = await stats_service.get_token_stats(store)
    assert stats.total_supply == 0
    assert stats.total_holders == 0
    assert stats.average_balance == 0.0
    assert stats.top_holders == []


async def test_token_stats_rejects_bad_top(store):
    with pytest.raises(LedgerValidationError):
        await stats_service.get_token_stats(store, top_n=0)


async def test_cache_serves_second_read(store, notifications):
    await _populate(store, notifications)
    redis = FakeRedis()
    first, cached = await stats_service.token_stats_with_cache(store, redis, 10)
    assert cached is False
    assert redis.expiry == {"paion:stats:top10": get_settings().stats_cache_ttl_seconds}

    # A write after caching is not visible until the entry expires.
    await paion_service.add_tokens(store, notifications, ALICE, 1, "Late", "quiz")
    second, cached = await stats_service.token_stats_with_cache(store, redis, 10)
    assert cached is True
    assert second == first
    assert orjson.loads(redis.data["paion:stats:top10"])["total_supply"] == 1000


async def test_cache_failures_fall_back_to_fresh_stats(store, notifications):
    await _populate(store, notifications)
    stats, cached = await stats_service.token_stats_with_cache(store, BrokenRedis(), 10)
    assert cached is False
    assert stats.total_supply == 1000


async def test_no_redis_means_no_cache(store):
    stats, cached = await stats_service.token_stats_with_cache(store, None, 10)
    assert cached is False
    assert stats.total_supply == 0

"""MongoDB backend. Needs a reachable server: set MONGODB_TEST_URI (replica set for transactions)."""

import asyncio
import os
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from bson import ObjectId

from app.core.config import Settings
from app.core.exceptions import IdempotencyMismatchError, InsufficientBalanceError, StorageConflictError
from app.models.paion_transaction import PaionTransaction
from app.services import paion as paion_service
from app.storage.mongo import MongoLedgerStore, MongoNotificationStore

pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.skipif(not os.environ.get("MONGODB_TEST_URI"), reason="MONGODB_TEST_URI not set"),
]

ALICE = "0x" + "a1" * 32
BOB = "0x" + "b2" * 32


@pytest_asyncio.fixture
async def mongo_stores():
    from app.db.init import init_db

    settings = Settings(
        mongodb_uri=os.environ["MONGODB_TEST_URI"],
        mongodb_db_name=f"paion_test_{uuid.uuid4().hex[:8]}",
        mongodb_transactions=os.environ.get("MONGODB_TEST_TRANSACTIONS", "1") != "0",
    )
    client = await init_db(settings)
    store = MongoLedgerStore(client, use_transactions=settings.mongodb_transactions)
    try:
        yield store, MongoNotificationStore()
    finally:
        await client.drop_database(settings.mongodb_db_name)
        await store.close()


async def test_credit_debit_and_history(mongo_stores):
    store, notifications = mongo_stores
    await paion_service.add_tokens(store, notifications, ALICE, 100, "Quiz", "quiz", "q-1")
    spent = await paion_service.spend_tokens(store, notifications, ALICE, 30, "Swap", "swap")
    assert (spent.transaction.balance_before, spent.transaction.balance_after) == (100, 70)

    with pytest.raises(InsufficientBalanceError):
        await paion_service.spend_tokens(store, notifications, ALICE, 71, "Too much", "swap")

    bal = await paion_service.get_balance(store, ALICE)
    assert (bal.balance, bal.total_earned, bal.total_spent) == (70, 100, 30)

    history = await paion_service.get_transaction_history(store, ALICE, limit=1)
    assert history.total_count == 2
    assert history.has_more is True
    assert history.transactions[0].transaction_type.value == "spent"

    notes = await notifications.list_for_address(ALICE)
    assert len(notes) == 2
    marked = await notifications.mark_read(notes[0].id, ALICE)
    assert marked.read is True
    assert await notifications.mark_read(notes[0].id, BOB) is None


async def test_replay_by_source_id(mongo_stores):
    store, notifications = mongo_stores
    first = await paion_service.add_tokens(store, notifications, ALICE, 10, "Referral", "referral", "ref-1")
    again = await paion_service.add_tokens(store, notifications, ALICE, 10, "Referral", "referral", "ref-1")
    assert again.replayed is True
    assert again.transaction.id == first.transaction.id
    assert (await paion_service.get_balance(store, ALICE)).balance == 10


async def test_transfer_and_locks(mongo_stores):
    store, notifications = mongo_stores
    await paion_service.add_tokens(store, notifications, ALICE, 50, "Seed", "manual")
    await paion_service.transfer(store, notifications, ALICE, BOB, 20, "Pay")
    await paion_service.lock(store, notifications, ALICE, 10, "Stake")
    with pytest.raises(InsufficientBalanceError):
        await paion_service.unlock(store, notifications, ALICE, 11, "Unstake")

    alice = await paion_service.get_balance(store, ALICE)
    bob = await paion_service.get_balance(store, BOB)
    assert (alice.balance, alice.locked_balance) == (20, 10)
    assert bob.balance == 20
    assert (await paion_service.reconcile(store, ALICE)).consistent is True
    assert (await paion_service.reconcile(store, BOB)).consistent is True


async def test_concurrent_debits_keep_balance_consistent(mongo_stores):
    store, notifications = mongo_stores
    await paion_service.add_tokens(store, notifications, ALICE, 50, "Seed", "manual")
    results = await asyncio.gather(
        *[paion_service.spend_tokens(store, notifications, ALICE, 20, "Buy", "marketplace") for _ in range(4)],
        return_exceptions=True,
    )
    # Write conflicts surface as StorageConflictError; nothing else may escape.
    for r in results:
        assert not isinstance(r, Exception) or isinstance(r, (InsufficientBalanceError, StorageConflictError))
    bal = await paion_service.get_balance(store, ALICE)
    assert bal.balance >= 0
    report = await paion_service.reconcile(store, ALICE)
    assert report.consistent is True


async def test_stats_aggregation(mongo_stores):
    store, notifications = mongo_stores
    await paion_service.add_tokens(store, notifications, ALICE, 30, "Seed", "manual")
    await paion_service.add_tokens(store, notifications, BOB, 70, "Seed", "manual")
    summary = await store.summarize_balances()
    assert (summary.total_supply, summary.account_count, summary.holder_count) == (100, 2, 2)
    top = await store.top_balances(1)
    assert [b.user_address for b in top] == [BOB]


async def test_source_id_reused_for_different_amount_is_rejected(mongo_stores):
    store, notifications = mongo_stores
    await paion_service.add_tokens(store, notifications, ALICE, 100, "Seed", "manual")
    await paion_service.spend_tokens(store, notifications, ALICE, 10, "Order", "marketplace", "order-7")
    with pytest.raises(IdempotencyMismatchError):
        await paion_service.spend_tokens(store, notifications, ALICE, 90, "Order", "marketplace", "order-7")
    assert (await paion_service.get_balance(store, ALICE)).balance == 90


async def test_history_follows_ledger_order_not_clock(mongo_stores):
    store, notifications = mongo_stores
    first = await paion_service.add_tokens(store, notifications, ALICE, 10, "First", "quiz")
    second = await paion_service.add_tokens(store, notifications, ALICE, 20, "Second", "quiz")
    # A request stamped earlier can reach the balance update later; skew the clocks that way.
    await PaionTransaction.get_motor_collection().update_one(
        {"_id": ObjectId(first.transaction.id)},
        {"$set": {"created_at": second.transaction.created_at + timedelta(seconds=5)}},
    )
    rows = await store.all_transactions(ALICE)
    assert [t.id for t in rows] == [first.transaction.id, second.transaction.id]
    assert [t.tx_seq for t in rows] == [1, 2]
    history = await paion_service.get_transaction_history(store, ALICE)
    assert [t.id for t in history.transactions] == [second.transaction.id, first.transaction.id]
    report = await paion_service.reconcile(store, ALICE)
    assert report.consistent is True
    assert report.broken_snapshots == []


async def test_rejected_debit_leaves_no_record_without_transactions(mongo_stores):
    store, notifications = mongo_stores
    plain = MongoLedgerStore(store._client, use_transactions=False)
    with pytest.raises(InsufficientBalanceError):
        await paion_service.spend_tokens(plain, notifications, BOB, 5, "Buy", "marketplace")
    with pytest.raises(InsufficientBalanceError):
        await paion_service.lock(plain, notifications, BOB, 5, "Stake")
    assert await plain.get_balance(BOB) is None

    credited = await paion_service.add_tokens(plain, notifications, BOB, 5, "Seed", "manual")
    assert (credited.balance.balance, credited.balance.tx_seq) == (5, 1)
    assert credited.balance.created_at is not None

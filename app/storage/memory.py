"""Process-local ledger store. Used by tests and LEDGER_BACKEND=memory."""

import asyncio
import uuid
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable, Sequence

from app.core.exceptions import InsufficientBalanceError, StorageConflictError
from app.models.records import (
    BalanceChange,
    BalanceRecord,
    NotificationCategory,
    NotificationRecord,
    NotificationType,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    utcnow,
)
from app.storage.base import AppliedChange, BalanceSummary, LedgerStore, NotificationStore, ensure_same_operation


class InMemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._balances: dict[str, BalanceRecord] = {}
        self._transactions: list[TransactionRecord] = []  # insertion order
        self._by_key: dict[tuple[str, str], TransactionRecord] = {}
        # Locks live only while someone holds or waits on them.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _hold(self, addresses: Iterable[str]) -> AsyncIterator[None]:
        # Sorted acquisition keeps two opposite transfers from deadlocking.
        addresses = sorted(set(addresses))
        for address in addresses:
            self._lock_users[address] += 1
        try:
            async with AsyncExitStack() as stack:
                for address in addresses:
                    await stack.enter_async_context(self._locks.setdefault(address, asyncio.Lock()))
                yield
        finally:
            for address in addresses:
                self._lock_users[address] -= 1
                if not self._lock_users[address]:
                    del self._lock_users[address]
                    self._locks.pop(address, None)

    async def get_balance(self, address: str) -> BalanceRecord | None:
        bal = self._balances.get(address)
        return bal.model_copy() if bal else None

    async def initialize_balance(self, address: str) -> BalanceRecord:
        async with self._hold([address]):
            if address not in self._balances:
                now = utcnow()
                self._balances[address] = BalanceRecord(user_address=address, created_at=now, updated_at=now)
            return self._balances[address].model_copy()

    async def apply(self, changes: Sequence[BalanceChange]) -> list[AppliedChange]:
        addresses = sorted({c.user_address for c in changes})
        async with self._hold(addresses):
            replays = self._find_replays(changes)
            if replays is not None:
                return replays

            working = {a: (self._balances.get(a) or BalanceRecord.zero(a)).model_copy() for a in addresses}
            # Yield like a real round trip would, so interleavings get exercised.
            await asyncio.sleep(0)

            applied: list[AppliedChange] = []
            pending: list[TransactionRecord] = []
            for change in changes:
                bal = working[change.user_address]
                if bal.balance + change.balance_delta < 0:
                    raise InsufficientBalanceError(change.user_address, bal.balance, change.amount)
                if bal.locked_balance + change.locked_delta < 0:
                    raise InsufficientBalanceError(
                        change.user_address, bal.locked_balance, change.amount, field="locked_balance"
                    )
                key = change.idempotency_key
                if key and (change.user_address, key) in self._by_key:
                    raise StorageConflictError(
                        "Operation partially recorded under this source id",
                        details={"idempotency_key": key},
                    )
                now = utcnow()
                before = bal.balance
                bal.balance += change.balance_delta
                bal.locked_balance += change.locked_delta
                bal.total_earned += change.earned_delta
                bal.total_spent += change.spent_delta
                bal.tx_seq += 1
                bal.last_transaction_at = now
                bal.updated_at = now
                if bal.created_at is None:
                    bal.created_at = now
                txn = TransactionRecord(
                    id=uuid.uuid4().hex,
                    user_address=change.user_address,
                    tx_seq=bal.tx_seq,
                    transaction_type=change.transaction_type,
                    amount=change.amount,
                    balance_before=before,
                    balance_after=bal.balance,
                    description=change.description,
                    source_type=change.source_type,
                    source_id=change.source_id,
                    metadata=change.metadata.compact(),
                    idempotency_key=key,
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                    updated_at=now,
                )
                pending.append(txn)
                applied.append(AppliedChange(balance=bal.model_copy(), transaction=txn))

            # Nothing above touched shared state; commit everything at once.
            for address, bal in working.items():
                self._balances[address] = bal
            for txn in pending:
                self._transactions.append(txn)
                if txn.idempotency_key:
                    self._by_key[(txn.user_address, txn.idempotency_key)] = txn
            return applied

    def _find_replays(self, changes: Sequence[BalanceChange]) -> list[AppliedChange] | None:
        found = []
        for change in changes:
            key = change.idempotency_key
            txn = self._by_key.get((change.user_address, key)) if key else None
            if txn is None:
                return None
            ensure_same_operation(change, txn)
            found.append(txn)
        return [
            AppliedChange(balance=self._balances[t.user_address].model_copy(), transaction=t, replayed=True)
            for t in found
        ]

    def _log_for(self, address: str) -> list[TransactionRecord]:
        return [t for t in self._transactions if t.user_address == address]

    async def list_transactions(
        self,
        address: str,
        limit: int,
        offset: int,
        transaction_type: TransactionType | None = None,
    ) -> tuple[list[TransactionRecord], int]:
        rows = self._log_for(address)
        if transaction_type is not None:
            rows = [t for t in rows if t.transaction_type == transaction_type]
        rows.reverse()
        return rows[offset:offset + limit], len(rows)

    async def all_transactions(self, address: str) -> list[TransactionRecord]:
        return self._log_for(address)

    async def count_transactions(self) -> int:
        return len(self._transactions)

    async def summarize_balances(self) -> BalanceSummary:
        rows = list(self._balances.values())
        return BalanceSummary(
            total_supply=sum(b.balance for b in rows),
            total_locked=sum(b.locked_balance for b in rows),
            account_count=len(rows),
            holder_count=sum(1 for b in rows if b.balance > 0),
        )

    async def top_balances(self, n: int) -> list[BalanceRecord]:
        holders = [b for b in self._balances.values() if b.balance > 0]
        holders.sort(key=lambda b: (-b.balance, b.user_address))
        return [b.model_copy() for b in holders[:n]]

    async def list_balances(self, limit: int, offset: int) -> list[BalanceRecord]:
        rows = sorted(self._balances.values(), key=lambda b: b.user_address)
        return [b.model_copy() for b in rows[offset:offset + limit]]


class InMemoryNotificationStore(NotificationStore):
    def __init__(self) -> None:
        self._items: list[NotificationRecord] = []

    async def add(
        self,
        address: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        category: NotificationCategory = NotificationCategory.PLATFORM,
        priority: int = 2,
        metadata: dict | None = None,
    ) -> NotificationRecord:
        item = NotificationRecord(
            id=uuid.uuid4().hex,
            user_address=address,
            title=title,
            message=message,
            type=type,
            category=category,
            priority=priority,
            metadata=metadata or {},
            created_at=utcnow(),
        )
        self._items.append(item)
        return item

    async def list_for_address(self, address: str, unread_only: bool = False, limit: int = 50) -> list[NotificationRecord]:
        rows = [n for n in reversed(self._items) if n.user_address == address and not (unread_only and n.read)]
        return rows[:limit]

    async def mark_read(self, notification_id: str, address: str) -> NotificationRecord | None:
        for n in self._items:
            if n.id == notification_id and n.user_address == address:
                n.read = True
                return n
        return None

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from app.core.config import Settings, get_settings
from app.core.exceptions import IdempotencyMismatchError
from app.models.records import (
    BalanceChange,
    BalanceRecord,
    NotificationCategory,
    NotificationRecord,
    NotificationType,
    TransactionRecord,
    TransactionType,
)


@dataclass
class AppliedChange:
    balance: BalanceRecord
    transaction: TransactionRecord
    replayed: bool = False


@dataclass
class BalanceSummary:
    total_supply: int
    total_locked: int
    account_count: int
    holder_count: int


def _operation(item: BalanceChange | TransactionRecord) -> dict:
    return {
        "transaction_type": item.transaction_type.value,
        "source_type": item.source_type.value,
        "amount": item.amount,
    }


def ensure_same_operation(change: BalanceChange, recorded: TransactionRecord) -> None:
    """Raise IdempotencyMismatchError unless `recorded` is the transaction `change` would have written."""
    requested, stored = _operation(change), _operation(recorded)
    if requested != stored:
        raise IdempotencyMismatchError(change.idempotency_key or "", recorded=stored, requested=requested)


class LedgerStore(ABC):
    """Balance store + append-only transaction log behind one handle."""

    @abstractmethod
    async def get_balance(self, address: str) -> BalanceRecord | None:
        """Return the balance record, or None when the address never transacted."""
        ...

    @abstractmethod
    async def initialize_balance(self, address: str) -> BalanceRecord:
        """Create a zeroed record if missing; return the stored record."""
        ...

    @abstractmethod
    async def apply(self, changes: Sequence[BalanceChange]) -> list[AppliedChange]:
        """
        Apply every change or none of them.
        Per address, changes serialize: no two committed transactions share a balance_before.
        Raises InsufficientBalanceError when a debit/lock/unlock would go below zero,
        StorageConflictError when the backend refuses the write.
        Changes whose idempotency key was already recorded come back with replayed=True.
        """
        ...

    @abstractmethod
    async def list_transactions(
        self,
        address: str,
        limit: int,
        offset: int,
        transaction_type: TransactionType | None = None,
    ) -> tuple[list[TransactionRecord], int]:
        """Newest first; return (page, total matching)."""
        ...

    @abstractmethod
    async def all_transactions(self, address: str) -> list[TransactionRecord]:
        """Whole log for one address, oldest first."""
        ...

    @abstractmethod
    async def count_transactions(self) -> int:
        ...

    @abstractmethod
    async def summarize_balances(self) -> BalanceSummary:
        ...

    @abstractmethod
    async def top_balances(self, n: int) -> list[BalanceRecord]:
        """Addresses with balance > 0, largest first."""
        ...

    @abstractmethod
    async def list_balances(self, limit: int, offset: int) -> list[BalanceRecord]:
        """All balance records ordered by address, for batch jobs."""
        ...

    async def close(self) -> None:
        return None


class NotificationStore(ABC):
    @abstractmethod
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
        ...

    @abstractmethod
    async def list_for_address(self, address: str, unread_only: bool = False, limit: int = 50) -> list[NotificationRecord]:
        """Newest first."""
        ...

    @abstractmethod
    async def mark_read(self, notification_id: str, address: str) -> NotificationRecord | None:
        ...


async def build_stores(settings: Settings | None = None) -> tuple[LedgerStore, NotificationStore]:
    settings = settings or get_settings()
    if settings.ledger_backend == "memory":
        from app.storage.memory import InMemoryLedgerStore, InMemoryNotificationStore
        return InMemoryLedgerStore(), InMemoryNotificationStore()
    from app.db.init import init_db
    from app.storage.mongo import MongoLedgerStore, MongoNotificationStore
    client = await init_db(settings)
    return (
        MongoLedgerStore(client, use_transactions=settings.mongodb_transactions),
        MongoNotificationStore(),
    )

"""Ledger domain types shared by every store backend and the HTTP layer."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

METADATA_VERSION = 1


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what Mongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class SourceType(str, Enum):
    ACHIEVEMENT = "achievement"
    LEVEL_REWARD = "level_reward"
    QUIZ = "quiz"
    SWAP = "swap"
    MARKETPLACE = "marketplace"
    REFERRAL = "referral"
    MANUAL = "manual"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Sign applied to `amount` for each column, per transaction type.
# balance, locked_balance, total_earned, total_spent
_EFFECTS: dict[TransactionType, tuple[int, int, int, int]] = {
    TransactionType.EARNED: (1, 0, 1, 0),
    TransactionType.TRANSFER_IN: (1, 0, 1, 0),
    TransactionType.SPENT: (-1, 0, 0, 1),
    TransactionType.TRANSFER_OUT: (-1, 0, 0, 1),
    TransactionType.LOCKED: (-1, 1, 0, 0),
    TransactionType.UNLOCKED: (1, -1, 0, 0),
}


def signed_amount(transaction_type: TransactionType, amount: int) -> int:
    return _EFFECTS[transaction_type][0] * amount


def locked_amount(transaction_type: TransactionType, amount: int) -> int:
    return _EFFECTS[transaction_type][1] * amount


class TransactionMetadata(BaseModel):
    """Versioned metadata attached to a transaction. Unknown keys are rejected.

    v1 keys:
      achievement_id    achievement that paid out (source_type=achievement)
      level             level reached (source_type=level_reward)
      quiz_id           quiz that paid out (source_type=quiz)
      swap_pair         e.g. "SUI/pAION" (source_type=swap)
      item_id           marketplace listing (source_type=marketplace)
      referred_address  address that joined through the referral (source_type=referral)
      counterparty      other side of a transfer (source_type=transfer)
      note              free-form operator note
      actor             who triggered the change (admin address, job name)
    """

    model_config = ConfigDict(extra="forbid")

    version: int = METADATA_VERSION
    achievement_id: str | None = None
    level: int | None = None
    quiz_id: str | None = None
    swap_pair: str | None = None
    item_id: str | None = None
    referred_address: str | None = None
    counterparty: str | None = None
    note: str | None = Field(default=None, max_length=500)
    actor: str | None = None

    def compact(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class BalanceChange(BaseModel):
    """One instruction for the store: move `amount` (always positive) per `transaction_type`."""

    user_address: str
    transaction_type: TransactionType
    amount: int = Field(gt=0)
    description: str
    source_type: SourceType
    source_id: str | None = None
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)

    @property
    def balance_delta(self) -> int:
        return _EFFECTS[self.transaction_type][0] * self.amount

    @property
    def locked_delta(self) -> int:
        return _EFFECTS[self.transaction_type][1] * self.amount

    @property
    def earned_delta(self) -> int:
        return _EFFECTS[self.transaction_type][2] * self.amount

    @property
    def spent_delta(self) -> int:
        return _EFFECTS[self.transaction_type][3] * self.amount

    @property
    def idempotency_key(self) -> str | None:
        if not self.source_id:
            return None
        return f"{self.source_type.value}:{self.source_id}:{self.transaction_type.value}"


class BalanceRecord(BaseModel):
    user_address: str
    balance: int = 0
    locked_balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    tx_seq: int = 0  # number of transactions applied; the last one carries this value
    last_transaction_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def zero(cls, user_address: str) -> "BalanceRecord":
        return cls(user_address=user_address)


class TransactionRecord(BaseModel):
    id: str
    user_address: str
    tx_seq: int = 0  # position in the address log, 1-based
    transaction_type: TransactionType
    amount: int
    balance_before: int
    balance_after: int
    description: str
    source_type: SourceType
    source_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    transaction_hash: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime
    updated_at: datetime

    @property
    def signed_amount(self) -> int:
        return signed_amount(self.transaction_type, self.amount)


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationCategory(str, Enum):
    PLATFORM = "platform"
    MONTHLY = "monthly"
    COMMUNITY = "community"
    TRADE = "trade"
    SYSTEM = "system"
    PROMOTION = "promotion"


class NotificationRecord(BaseModel):
    id: str
    user_address: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.PLATFORM
    priority: int = Field(default=2, ge=1, le=5)
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

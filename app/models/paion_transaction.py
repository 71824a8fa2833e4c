from datetime import datetime
from typing import Any

import pymongo
from beanie import Document
from pydantic import Field

from app.models.records import (
    SourceType,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    utcnow,
)


class PaionTransaction(Document):
    """Append-only ledger row; never updated after insert."""
    user_address: str
    transaction_type: TransactionType
    amount: int  # always positive, sign follows transaction_type
    balance_before: int
    balance_after: int
    tx_seq: int  # per-address order, taken from the balance document post-image
    description: str = ""
    source_type: SourceType
    source_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    transaction_hash: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "paion_transactions"
        indexes = [
            pymongo.IndexModel([("user_address", 1), ("tx_seq", -1)], unique=True),
            [("user_address", 1), ("transaction_type", 1), ("tx_seq", -1)],
            pymongo.IndexModel(
                [("user_address", 1), ("idempotency_key", 1)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
            ),
        ]

    def to_record(self) -> TransactionRecord:
        data = self.model_dump(exclude={"id", "revision_id"})
        return TransactionRecord(id=str(self.id), **data)

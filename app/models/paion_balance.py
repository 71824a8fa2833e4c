from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from app.models.records import BalanceRecord, utcnow


class PaionBalance(Document):
    """Current pAION holdings per address; mutated only together with a PaionTransaction insert."""
    user_address: Indexed(str, unique=True)
    balance: int = 0
    locked_balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    tx_seq: int = 0
    last_transaction_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "paion_balances"
        indexes = [[("balance", -1)]]

    def to_record(self) -> BalanceRecord:
        return BalanceRecord(**self.model_dump(exclude={"id", "revision_id"}))

"""MongoDB ledger store (Motor + Beanie).

Per-address serialization comes from a conditional `$inc` on the single balance
document: the server applies it atomically, so balance_before/after are read off
the post-image and can never repeat. The same update bumps `tx_seq`, which is the
order history and reconciliation read in; `created_at` is informational only.
The balance update and the transaction insert share one multi-document
transaction (replica set required).
"""

from typing import Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from app.core.exceptions import InsufficientBalanceError, StorageConflictError
from app.core.logging import get_logger
from app.models.notification import Notification
from app.models.paion_balance import PaionBalance
from app.models.paion_transaction import PaionTransaction
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

log = get_logger(__name__)


def _zero_fields(now) -> dict:
    return {
        "balance": 0,
        "locked_balance": 0,
        "total_earned": 0,
        "total_spent": 0,
        "tx_seq": 0,
        "last_transaction_at": None,
        "created_at": now,
    }


class MongoLedgerStore(LedgerStore):
    def __init__(self, client: AsyncIOMotorClient, use_transactions: bool = True) -> None:
        self._client = client
        self._use_transactions = use_transactions

    async def get_balance(self, address: str) -> BalanceRecord | None:
        doc = await PaionBalance.find_one(PaionBalance.user_address == address)
        return doc.to_record() if doc else None

    async def initialize_balance(self, address: str) -> BalanceRecord:
        now = utcnow()
        try:
            doc = await PaionBalance.get_motor_collection().find_one_and_update(
                {"user_address": address},
                {"$setOnInsert": {**_zero_fields(now), "updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost the upsert race; the record exists now.
            doc = await PaionBalance.get_motor_collection().find_one({"user_address": address})
        except PyMongoError as e:
            raise StorageConflictError(details={"reason": str(e)}) from e
        return BalanceRecord.model_validate(doc)

    async def apply(self, changes: Sequence[BalanceChange]) -> list[AppliedChange]:
        try:
            replays = await self._find_replays(changes)
            if replays is not None:
                return replays
            async with await self._client.start_session() as session:
                if not self._use_transactions:
                    return await self._write(changes, session)
                async with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                ):
                    return await self._write(changes, session)
        except DuplicateKeyError as e:
            # A concurrent request with the same source id committed first.
            replays = await self._find_replays(changes)
            if replays is not None:
                log.info("ledger_replay_after_race", addresses=sorted({c.user_address for c in changes}))
                return replays
            raise StorageConflictError(details={"reason": str(e)}) from e
        except PyMongoError as e:
            raise StorageConflictError(details={"reason": str(e)}) from e

    async def _write(
        self,
        changes: Sequence[BalanceChange],
        session: AsyncIOMotorClientSession,
    ) -> list[AppliedChange]:
        balances = PaionBalance.get_motor_collection()
        applied: list[AppliedChange] = []
        for change in changes:
            now = utcnow()
            address = change.user_address
            guard: dict = {"user_address": address}
            if change.balance_delta < 0:
                guard["balance"] = {"$gte": -change.balance_delta}
            if change.locked_delta < 0:
                guard["locked_balance"] = {"$gte": -change.locked_delta}
            # Only credits may create the record; a rejected debit leaves nothing behind.
            creates = not (change.balance_delta < 0 or change.locked_delta < 0)
            after = await balances.find_one_and_update(
                guard,
                {
                    "$inc": {
                        "balance": change.balance_delta,
                        "locked_balance": change.locked_delta,
                        "total_earned": change.earned_delta,
                        "total_spent": change.spent_delta,
                        "tx_seq": 1,
                    },
                    "$set": {"last_transaction_at": now, "updated_at": now},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=creates,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if after is None:
                current = await balances.find_one({"user_address": address}, session=session) or {}
                field = "locked_balance" if change.locked_delta < 0 else "balance"
                raise InsufficientBalanceError(address, current.get(field, 0), change.amount, field=field)

            txn = PaionTransaction(
                user_address=address,
                transaction_type=change.transaction_type,
                amount=change.amount,
                balance_before=after["balance"] - change.balance_delta,
                balance_after=after["balance"],
                tx_seq=after["tx_seq"],
                description=change.description,
                source_type=change.source_type,
                source_id=change.source_id,
                metadata=change.metadata.compact(),
                idempotency_key=change.idempotency_key,
                status=TransactionStatus.COMPLETED,
                created_at=now,
                updated_at=now,
            )
            await txn.insert(session=session)
            applied.append(AppliedChange(balance=BalanceRecord.model_validate(after), transaction=txn.to_record()))
        return applied

    async def _find_replays(self, changes: Sequence[BalanceChange]) -> list[AppliedChange] | None:
        found: list[TransactionRecord] = []
        for change in changes:
            if not change.idempotency_key:
                return None
            txn = await PaionTransaction.find_one(
                PaionTransaction.user_address == change.user_address,
                PaionTransaction.idempotency_key == change.idempotency_key,
            )
            if txn is None:
                return None
            record = txn.to_record()
            ensure_same_operation(change, record)
            found.append(record)
        out = []
        for record in found:
            bal = await self.get_balance(record.user_address)
            out.append(AppliedChange(balance=bal, transaction=record, replayed=True))
        return out

    async def list_transactions(
        self,
        address: str,
        limit: int,
        offset: int,
        transaction_type: TransactionType | None = None,
    ) -> tuple[list[TransactionRecord], int]:
        filters = [PaionTransaction.user_address == address]
        if transaction_type is not None:
            filters.append(PaionTransaction.transaction_type == transaction_type)
        total = await PaionTransaction.find(*filters).count()
        rows = (
            await PaionTransaction.find(*filters)
            .sort(-PaionTransaction.tx_seq)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [r.to_record() for r in rows], total

    async def all_transactions(self, address: str) -> list[TransactionRecord]:
        rows = (
            await PaionTransaction.find(PaionTransaction.user_address == address)
            .sort(+PaionTransaction.tx_seq)
            .to_list()
        )
        return [r.to_record() for r in rows]

    async def count_transactions(self) -> int:
        return await PaionTransaction.find_all().count()

    async def summarize_balances(self) -> BalanceSummary:
        pipeline = [
            {
                "$group": {
                    "_id": None,
                    "total_supply": {"$sum": "$balance"},
                    "total_locked": {"$sum": "$locked_balance"},
                    "account_count": {"$sum": 1},
                    "holder_count": {"$sum": {"$cond": [{"$gt": ["$balance", 0]}, 1, 0]}},
                }
            }
        ]
        rows = await PaionBalance.get_motor_collection().aggregate(pipeline).to_list(length=1)
        if not rows:
            return BalanceSummary(total_supply=0, total_locked=0, account_count=0, holder_count=0)
        row = rows[0]
        return BalanceSummary(
            total_supply=row["total_supply"],
            total_locked=row["total_locked"],
            account_count=row["account_count"],
            holder_count=row["holder_count"],
        )

    async def top_balances(self, n: int) -> list[BalanceRecord]:
        rows = (
            await PaionBalance.find(PaionBalance.balance > 0)
            .sort(-PaionBalance.balance, +PaionBalance.user_address)
            .limit(n)
            .to_list()
        )
        return [r.to_record() for r in rows]

    async def list_balances(self, limit: int, offset: int) -> list[BalanceRecord]:
        rows = await PaionBalance.find_all().sort(+PaionBalance.user_address).skip(offset).limit(limit).to_list()
        return [r.to_record() for r in rows]

    async def close(self) -> None:
        self._client.close()


class MongoNotificationStore(NotificationStore):
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
        doc = Notification(
            user_address=address,
            title=title,
            message=message,
            type=type,
            category=category,
            priority=priority,
            metadata=metadata or {},
        )
        await doc.insert()
        return doc.to_record()

    async def list_for_address(self, address: str, unread_only: bool = False, limit: int = 50) -> list[NotificationRecord]:
        filters = [Notification.user_address == address]
        if unread_only:
            filters.append(Notification.read == False)  # noqa: E712
        rows = await Notification.find(*filters).sort(-Notification.created_at).limit(limit).to_list()
        return [r.to_record() for r in rows]

    async def mark_read(self, notification_id: str, address: str) -> NotificationRecord | None:
        if not ObjectId.is_valid(notification_id):
            return None
        doc = await Notification.find_one(
            Notification.id == ObjectId(notification_id),
            Notification.user_address == address,
        )
        if not doc:
            return None
        doc.read = True
        await doc.save()
        return doc.to_record()

"""pAION ledger: atomic balance changes, transfers, locks, history and reconciliation."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    ForbiddenError,
    IdempotencyMismatchError,
    InsufficientBalanceError,
    LedgerValidationError,
    StorageConflictError,
    error_body,
)
from app.core.logging import get_logger
from app.core.pagination import has_more, paginate
from app.models.records import (
    BalanceChange,
    BalanceRecord,
    NotificationType,
    SourceType,
    TransactionMetadata,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    locked_amount,
)
from app.storage.base import AppliedChange, LedgerStore, NotificationStore

log = get_logger(__name__)

MAX_ADDRESS_LENGTH = 128
MAX_DESCRIPTION_LENGTH = 500
RECENT_TRANSACTIONS = 5


class CallerContext(str, Enum):
    """Who is driving the ledger. Clients may only move value they already hold."""
    CLIENT = "client"
    SERVER = "server"


class OperationResult(BaseModel):
    success: bool
    balance: int | None = None
    transaction: TransactionRecord | None = None
    replayed: bool = False
    error: dict[str, Any] | None = None
    status_code: int = Field(default=200, exclude=True)


class TransactionHistory(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transactions: list[TransactionRecord]
    total_count: int = Field(alias="totalCount")
    has_more: bool = Field(alias="hasMore")


class ReconciliationReport(BaseModel):
    address: str
    expected_balance: int
    actual_balance: int
    expected_locked: int
    actual_locked: int
    transaction_count: int
    broken_snapshots: list[str] = Field(default_factory=list)
    consistent: bool


def normalize_address(address: str | None) -> str:
    address = (address or "").strip()
    if not address:
        raise LedgerValidationError("User address is required")
    if len(address) > MAX_ADDRESS_LENGTH:
        raise LedgerValidationError("User address is too long", details={"max_length": MAX_ADDRESS_LENGTH})
    return address


def _amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise LedgerValidationError("Amount must be an integer", details={"amount": str(amount)})
    return amount


def _description(description: str | None) -> str:
    description = (description or "").strip()
    if not description:
        raise LedgerValidationError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise LedgerValidationError("Description is too long", details={"max_length": MAX_DESCRIPTION_LENGTH})
    return description


def _source_type(source_type: SourceType | str) -> SourceType:
    try:
        return SourceType(source_type)
    except ValueError:
        raise LedgerValidationError(
            f"Invalid source type: {source_type}",
            details={"allowed": [s.value for s in SourceType]},
        ) from None


def _transaction_type(transaction_type: TransactionType | str | None) -> TransactionType | None:
    if transaction_type is None or transaction_type == "":
        return None
    try:
        return TransactionType(transaction_type)
    except ValueError:
        raise LedgerValidationError(
            f"Invalid transaction type: {transaction_type}",
            details={"allowed": [t.value for t in TransactionType]},
        ) from None


def _metadata(metadata: TransactionMetadata | dict | None) -> TransactionMetadata:
    if metadata is None:
        return TransactionMetadata()
    if isinstance(metadata, TransactionMetadata):
        return metadata
    try:
        return TransactionMetadata.model_validate(metadata)
    except ValidationError as e:
        raise LedgerValidationError(
            "Invalid transaction metadata",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def _source_id(source_id: str | None) -> str | None:
    if source_id is None:
        return None
    source_id = str(source_id).strip()
    return source_id or None


def _require_server(context: CallerContext, operation: str) -> None:
    if context != CallerContext.SERVER:
        raise ForbiddenError(f"{operation} requires server context")


_NOTICES = {
    TransactionType.EARNED: ("pAION earned", "Earned {amount} pAION tokens!", NotificationType.SUCCESS),
    TransactionType.SPENT: ("pAION spent", "Spent {amount} pAION tokens!", NotificationType.INFO),
    TransactionType.TRANSFER_IN: ("pAION received", "Received {amount} pAION from {counterparty}", NotificationType.SUCCESS),
    TransactionType.TRANSFER_OUT: ("pAION sent", "Sent {amount} pAION to {counterparty}", NotificationType.INFO),
    TransactionType.LOCKED: ("pAION locked", "Locked {amount} pAION tokens", NotificationType.INFO),
    TransactionType.UNLOCKED: ("pAION unlocked", "Unlocked {amount} pAION tokens", NotificationType.INFO),
}


async def _notify(notifications: NotificationStore | None, applied: list[AppliedChange]) -> None:
    """User-visible notice per committed change. Delivery problems never undo the ledger write."""
    if notifications is None:
        return
    for item in applied:
        if item.replayed:
            continue
        txn = item.transaction
        title, template, kind = _NOTICES[txn.transaction_type]
        message = template.format(amount=txn.amount, counterparty=txn.metadata.get("counterparty", "another user"))
        try:
            await notifications.add(
                txn.user_address,
                title,
                message,
                type=kind,
                metadata={"transaction_id": txn.id, "balance": item.balance.balance},
            )
        except Exception:
            log.exception("notification_failed", address=txn.user_address, transaction_id=txn.id)


async def _commit(
    store: LedgerStore,
    notifications: NotificationStore | None,
    changes: list[BalanceChange],
    event: str,
) -> list[AppliedChange]:
    try:
        applied = await store.apply(changes)
    except InsufficientBalanceError as e:
        log.info("ledger_rejected", address=e.address, available=e.available, required=e.required)
        raise
    except IdempotencyMismatchError as e:
        log.info("ledger_idempotency_mismatch", **e.details)
        raise
    except StorageConflictError as e:
        log.warning("ledger_storage_conflict", addresses=[c.user_address for c in changes], **e.details)
        raise
    if all(a.replayed for a in applied):
        log.info("ledger_replayed", transaction_ids=[a.transaction.id for a in applied])
        return applied
    for a in applied:
        log.info(
            event,
            address=a.transaction.user_address,
            transaction_id=a.transaction.id,
            transaction_type=a.transaction.transaction_type.value,
            amount=a.transaction.amount,
            balance_before=a.transaction.balance_before,
            balance_after=a.transaction.balance_after,
        )
    await _notify(notifications, applied)
    return applied


async def get_balance(store: LedgerStore, address: str) -> BalanceRecord:
    """Return the balance record for address; zeroed default if it never transacted."""
    address = normalize_address(address)
    return await store.get_balance(address) or BalanceRecord.zero(address)


async def initialize_balance(store: LedgerStore, address: str) -> BalanceRecord:
    """Create the zeroed record if missing. Safe to call repeatedly."""
    address = normalize_address(address)
    bal = await store.initialize_balance(address)
    log.info("balance_initialized", address=address)
    return bal


async def apply_change(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> AppliedChange:
    """
    Credit (amount > 0) or debit (amount < 0) one address atomically.
    Debits larger than the balance raise InsufficientBalanceError and write nothing.
    With a source_id, repeating the call returns the first result instead of applying twice.
    """
    address = normalize_address(address)
    amount = _amount(amount)
    if amount == 0:
        raise LedgerValidationError("Amount must not be zero")
    if amount > 0:
        _require_server(context, "Crediting pAION")
    change = BalanceChange(
        user_address=address,
        transaction_type=TransactionType.EARNED if amount > 0 else TransactionType.SPENT,
        amount=abs(amount),
        description=_description(description),
        source_type=_source_type(source_type),
        source_id=_source_id(source_id),
        metadata=_metadata(metadata),
    )
    applied = await _commit(store, notifications, [change], "ledger_applied")
    return applied[0]


async def add_tokens(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> AppliedChange:
    amount = _amount(amount)
    if amount <= 0:
        raise LedgerValidationError("Amount must be positive")
    return await apply_change(store, notifications, address, amount, description, source_type, source_id, metadata, context)


async def spend_tokens(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> AppliedChange:
    amount = _amount(amount)
    if amount <= 0:
        raise LedgerValidationError("Amount must be positive")
    return await apply_change(store, notifications, address, -amount, description, source_type, source_id, metadata, context)


async def mutate_balance(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> OperationResult:
    """apply_change, but every failure comes back as {success: false, error} instead of raising."""
    try:
        applied = await apply_change(
            store, notifications, address, amount, description, source_type, source_id, metadata, context
        )
    except AppError as e:
        return OperationResult(success=False, error=error_body(e)["error"], status_code=e.status_code)
    return OperationResult(
        success=True,
        balance=applied.balance.balance,
        transaction=applied.transaction,
        replayed=applied.replayed,
    )


async def transfer(
    store: LedgerStore,
    notifications: NotificationStore | None,
    from_address: str,
    to_address: str,
    amount: int,
    description: str,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> tuple[AppliedChange, AppliedChange]:
    """
    Move amount between two addresses as one unit: transfer_out on sender, transfer_in on recipient.
    Allowed in either caller context; `context` is accepted so every mutation shares one signature.
    """
    from_address = normalize_address(from_address)
    to_address = normalize_address(to_address)
    if from_address == to_address:
        raise LedgerValidationError("Cannot transfer to the same address")
    amount = _amount(amount)
    if amount <= 0:
        raise LedgerValidationError("Amount must be positive")
    description = _description(description)
    meta = _metadata(metadata)
    source_id = _source_id(source_id)
    changes = [
        BalanceChange(
            user_address=from_address,
            transaction_type=TransactionType.TRANSFER_OUT,
            amount=amount,
            description=description,
            source_type=SourceType.TRANSFER,
            source_id=source_id,
            metadata=meta.model_copy(update={"counterparty": to_address}),
        ),
        BalanceChange(
            user_address=to_address,
            transaction_type=TransactionType.TRANSFER_IN,
            amount=amount,
            description=description,
            source_type=SourceType.TRANSFER,
            source_id=source_id,
            metadata=meta.model_copy(update={"counterparty": from_address}),
        ),
    ]
    out, incoming = await _commit(store, notifications, changes, "transfer_applied")
    return out, incoming


async def _move_locked(
    store: LedgerStore,
    notifications: NotificationStore | None,
    transaction_type: TransactionType,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str,
    source_id: str | None,
    metadata: TransactionMetadata | dict | None,
) -> AppliedChange:
    address = normalize_address(address)
    amount = _amount(amount)
    if amount <= 0:
        raise LedgerValidationError("Amount must be positive")
    change = BalanceChange(
        user_address=address,
        transaction_type=transaction_type,
        amount=amount,
        description=_description(description),
        source_type=_source_type(source_type),
        source_id=_source_id(source_id),
        metadata=_metadata(metadata),
    )
    applied = await _commit(store, notifications, [change], "ledger_applied")
    return applied[0]


async def lock(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str = SourceType.MANUAL,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> AppliedChange:
    """Reserve part of the spendable balance (balance -> locked_balance). Allowed in either context."""
    return await _move_locked(
        store, notifications, TransactionType.LOCKED, address, amount, description, source_type, source_id, metadata
    )


async def unlock(
    store: LedgerStore,
    notifications: NotificationStore | None,
    address: str,
    amount: int,
    description: str,
    source_type: SourceType | str = SourceType.MANUAL,
    source_id: str | None = None,
    metadata: TransactionMetadata | dict | None = None,
    context: CallerContext = CallerContext.SERVER,
) -> AppliedChange:
    """Release reserved tokens back to the spendable balance."""
    _require_server(context, "Unlocking pAION")
    return await _move_locked(
        store, notifications, TransactionType.UNLOCKED, address, amount, description, source_type, source_id, metadata
    )


async def get_transaction_history(
    store: LedgerStore,
    address: str,
    limit: int | None = None,
    offset: int = 0,
    transaction_type: TransactionType | str | None = None,
) -> TransactionHistory:
    """Newest-first page of an address's log plus total count and has-more flag."""
    address = normalize_address(address)
    settings = get_settings()
    limit, offset = paginate(
        settings.default_page_size if limit is None else limit,
        offset,
        max_limit=settings.max_page_size,
    )
    rows, total = await store.list_transactions(address, limit, offset, _transaction_type(transaction_type))
    return TransactionHistory(transactions=rows, total_count=total, has_more=has_more(total, limit, offset))


async def get_recent_transactions(store: LedgerStore, address: str) -> list[TransactionRecord]:
    history = await get_transaction_history(store, address, RECENT_TRANSACTIONS, 0)
    return history.transactions


async def reconcile(store: LedgerStore, address: str) -> ReconciliationReport:
    """Fold the completed log and compare it with the stored balance record."""
    address = normalize_address(address)
    log_rows = await store.all_transactions(address)
    stored = await store.get_balance(address) or BalanceRecord.zero(address)
    expected_balance = 0
    expected_locked = 0
    broken: list[str] = []
    for txn in log_rows:
        if txn.status != TransactionStatus.COMPLETED:
            continue
        if txn.balance_after - txn.balance_before != txn.signed_amount or txn.balance_before != expected_balance:
            broken.append(txn.id)
        expected_balance += txn.signed_amount
        expected_locked += locked_amount(txn.transaction_type, txn.amount)
    report = ReconciliationReport(
        address=address,
        expected_balance=expected_balance,
        actual_balance=stored.balance,
        expected_locked=expected_locked,
        actual_locked=stored.locked_balance,
        transaction_count=len(log_rows),
        broken_snapshots=broken,
        consistent=(
            not broken
            and expected_balance == stored.balance
            and expected_locked == stored.locked_balance
        ),
    )
    if not report.consistent:
        log.warning("reconcile_mismatch", **report.model_dump())
    return report

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from app.deps import get_caller_context, get_ledger_store, get_notification_store
from app.models.records import SourceType, TransactionMetadata, TransactionRecord, TransactionType
from app.services import paion as paion_service
from app.services import stats as stats_service
from app.services.paion import CallerContext, TransactionHistory
from app.storage.base import AppliedChange, LedgerStore, NotificationStore

router = APIRouter()


class AddressRequest(BaseModel):
    address: str


class MutateRequest(BaseModel):
    address: str
    amount: int  # positive = credit, negative = debit
    description: str
    source_type: SourceType
    source_id: str | None = None
    metadata: TransactionMetadata | None = None


class AmountRequest(BaseModel):
    address: str
    amount: int = Field(gt=0)
    description: str
    source_type: SourceType = SourceType.MANUAL
    source_id: str | None = None
    metadata: TransactionMetadata | None = None


class TransferRequest(BaseModel):
    from_address: str
    to_address: str
    amount: int = Field(gt=0)
    description: str = "pAION transfer"
    source_id: str | None = None
    metadata: TransactionMetadata | None = None


class BalanceResponse(BaseModel):
    success: bool = True
    address: str
    balance: int
    locked_balance: int
    total_earned: int
    total_spent: int
    last_transaction_at: datetime | None = None


class ChangeResponse(BaseModel):
    success: bool = True
    balance: int
    locked_balance: int
    transaction: TransactionRecord
    replayed: bool = False


class TransferResponse(BaseModel):
    success: bool = True
    balance: int
    recipient_balance: int
    transactions: list[TransactionRecord]
    replayed: bool = False


class HistoryResponse(TransactionHistory):
    success: bool = True


def _change_response(applied: AppliedChange) -> ChangeResponse:
    return ChangeResponse(
        balance=applied.balance.balance,
        locked_balance=applied.balance.locked_balance,
        transaction=applied.transaction,
        replayed=applied.replayed,
    )


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    address: str = Query(..., description="User wallet address"),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Current balance; zeroes for addresses that never transacted."""
    bal = await paion_service.get_balance(store, address)
    return BalanceResponse(address=bal.user_address, **bal.model_dump(exclude={"user_address", "tx_seq", "created_at", "updated_at"}))


@router.post("/balance/initialize", response_model=BalanceResponse)
async def initialize_balance(body: AddressRequest, store: LedgerStore = Depends(get_ledger_store)):
    bal = await paion_service.initialize_balance(store, body.address)
    return BalanceResponse(address=bal.user_address, **bal.model_dump(exclude={"user_address", "tx_seq", "created_at", "updated_at"}))


@router.get("/transactions", response_model=HistoryResponse)
async def get_transactions(
    address: str = Query(...),
    limit: int = Query(20),
    offset: int = Query(0),
    type: TransactionType | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Transaction log for an address, newest first."""
    history = await paion_service.get_transaction_history(store, address, limit, offset, type)
    return HistoryResponse(**history.model_dump())


@router.get("/transactions/recent", response_model=list[TransactionRecord])
async def get_recent_transactions(address: str = Query(...), store: LedgerStore = Depends(get_ledger_store)):
    return await paion_service.get_recent_transactions(store, address)


@router.post("/mutate")
async def mutate_balance(
    body: MutateRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    """Credit or debit by signed amount. Always answers {success, ...}; failures carry an error object."""
    result = await paion_service.mutate_balance(
        store,
        notifications,
        body.address,
        body.amount,
        body.description,
        body.source_type,
        body.source_id,
        body.metadata,
        context,
    )
    return ORJSONResponse(status_code=result.status_code, content=result.model_dump(mode="json"))


@router.post("/earn", response_model=ChangeResponse)
async def earn(
    body: AmountRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    applied = await paion_service.add_tokens(
        store, notifications, body.address, body.amount, body.description,
        body.source_type, body.source_id, body.metadata, context,
    )
    return _change_response(applied)


@router.post("/spend", response_model=ChangeResponse)
async def spend(
    body: AmountRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    applied = await paion_service.spend_tokens(
        store, notifications, body.address, body.amount, body.description,
        body.source_type, body.source_id, body.metadata, context,
    )
    return _change_response(applied)


@router.post("/transfer", response_model=TransferResponse)
async def transfer(
    body: TransferRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    """Sender debit and recipient credit in one unit."""
    out, incoming = await paion_service.transfer(
        store, notifications, body.from_address, body.to_address, body.amount,
        body.description, body.source_id, body.metadata, context,
    )
    return TransferResponse(
        balance=out.balance.balance,
        recipient_balance=incoming.balance.balance,
        transactions=[out.transaction, incoming.transaction],
        replayed=out.replayed,
    )


@router.post("/lock", response_model=ChangeResponse)
async def lock(
    body: AmountRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    applied = await paion_service.lock(
        store, notifications, body.address, body.amount, body.description,
        body.source_type, body.source_id, body.metadata, context,
    )
    return _change_response(applied)


@router.post("/unlock", response_model=ChangeResponse)
async def unlock(
    body: AmountRequest,
    store: LedgerStore = Depends(get_ledger_store),
    notifications: NotificationStore = Depends(get_notification_store),
    context: CallerContext = Depends(get_caller_context),
):
    applied = await paion_service.unlock(
        store, notifications, body.address, body.amount, body.description,
        body.source_type, body.source_id, body.metadata, context,
    )
    return _change_response(applied)


@router.get("/stats", response_model=stats_service.TotalStats)
async def total_stats(store: LedgerStore = Depends(get_ledger_store)):
    """Total supply, accounts and transactions."""
    return await stats_service.get_total_stats(store)

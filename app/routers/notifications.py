from fastapi import APIRouter, Depends, Query

from app.deps import get_notification_store
from app.models.records import NotificationRecord
from app.services import notifications as notifications_service
from app.storage.base import NotificationStore

router = APIRouter()


@router.get("", response_model=list[NotificationRecord])
async def list_notifications(
    address: str = Query(...),
    unread_only: bool = Query(False),
    limit: int = Query(50),
    notifications: NotificationStore = Depends(get_notification_store),
):
    """Ledger notices for an address, newest first."""
    return await notifications_service.list_notifications(notifications, address, unread_only, limit)


@router.post("/{notification_id}/read", response_model=NotificationRecord)
async def mark_read(
    notification_id: str,
    address: str = Query(...),
    notifications: NotificationStore = Depends(get_notification_store),
):
    return await notifications_service.mark_read(notifications, notification_id, address)

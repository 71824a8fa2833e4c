"""Ledger notices shown to users (credited/debited/received)."""

from app.core.exceptions import LedgerValidationError, NotFoundError
from app.models.records import NotificationRecord
from app.services.paion import normalize_address
from app.storage.base import NotificationStore

MAX_NOTIFICATIONS = 100


async def list_notifications(
    notifications: NotificationStore,
    address: str,
    unread_only: bool = False,
    limit: int = 50,
) -> list[NotificationRecord]:
    if limit < 1:
        raise LedgerValidationError("limit must be at least 1", details={"limit": limit})
    return await notifications.list_for_address(
        normalize_address(address), unread_only=unread_only, limit=min(limit, MAX_NOTIFICATIONS)
    )


async def mark_read(notifications: NotificationStore, notification_id: str, address: str) -> NotificationRecord:
    item = await notifications.mark_read(notification_id, normalize_address(address))
    if not item:
        raise NotFoundError("Notification not found")
    return item

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field

from app.models.records import NotificationCategory, NotificationRecord, NotificationType, utcnow


class Notification(Document):
    user_address: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.PLATFORM
    priority: int = 2  # 1=low, 5=urgent
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "notifications"
        indexes = [
            [("user_address", 1), ("read", 1), ("created_at", -1)],
        ]

    def to_record(self) -> NotificationRecord:
        data = self.model_dump(exclude={"id", "revision_id"})
        return NotificationRecord(id=str(self.id), **data)

from app.models.notification import Notification
from app.models.paion_balance import PaionBalance
from app.models.paion_transaction import PaionTransaction

__all__ = [
    "Notification",
    "PaionBalance",
    "PaionTransaction",
]

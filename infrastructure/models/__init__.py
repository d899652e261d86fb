"""Infrastructure models package exports."""
from .base import Base, metadata
from .transaction import TransactionModel
from .webhook import WebhookDeliveryModel

__all__ = [
    "Base",
    "metadata",
    "TransactionModel",
    "WebhookDeliveryModel",
]

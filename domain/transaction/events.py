"""
Transaction domain events.

Dataclass events record reconciliation facts for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid


@dataclass
class TransactionEvent:
    order_reference: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentReceived(TransactionEvent):
    """A webhook delivery was verified and applied to the transaction."""

    status: Optional[str] = None
    event_type: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

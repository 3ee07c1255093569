"""
Payment domain events.

Dataclass events record committed ledger transitions for downstream handling
(notification sinks, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_id: str
    request_id: str
    amount: str
    currency: str
    provider_intent_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass
class PaymentAuthorized(PaymentEvent):
    pass


@dataclass
class PaymentAuthorizationFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentCaptured(PaymentEvent):
    pass


@dataclass
class PaymentCaptureFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentCancelled(PaymentEvent):
    pass


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_id: str = ""
    refund_amount: str = ""
    refund_row_id: Optional[str] = None


@dataclass
class PaymentTransferred(PaymentEvent):
    transfer_id: str = ""
    traveler_id: str = ""
    payout_amount: str = ""
    payout_row_id: Optional[str] = None

"""
Notification sink port.

The payment engine publishes committed ledger transitions here (realtime
fan-out, email, projections live behind it). Delivery is best effort: a
failing sink never undoes a ledger write.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.payment.events import PaymentEvent


@runtime_checkable
class PaymentNotifier(Protocol):
    async def notify(self, event: PaymentEvent) -> None: ...

"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CancelIntent,
    CaptureRequest,
    CreateCustomer,
    CreateIntent,
    PaymentIntent,
    PaymentMethodDetails,
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment processors.

    Implementations should be async and side-effect free beyond IO. Mutating
    calls honor `idempotency_key`: a logically identical retry with the same key
    returns the original result instead of repeating the money movement.
    Errors are raised as `PaymentProviderError` (or a subclass).
    """

    provider: str

    async def create_intent(self, req: CreateIntent) -> PaymentIntent: ...

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent: ...

    async def cancel_intent(self, req: CancelIntent) -> PaymentIntent: ...

    async def capture(self, req: CaptureRequest) -> PaymentIntent: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    async def transfer(self, req: TransferRequest) -> TransferResult: ...

    async def create_customer(self, req: CreateCustomer) -> str: ...

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethodDetails: ...

    async def detach_payment_method(self, payment_method_id: str) -> None: ...

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None: ...

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails: ...

    def parse_webhook(self, payload: bytes, signature: str, secret: Optional[str] = None) -> WebhookEvent: ...

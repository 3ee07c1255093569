"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts crossing the provider port are `Decimal` in major units; adapters
convert to the provider's minor units.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "USD", "EUR", "GBP", "CNY", "JPY", "KRW", "HKD", "AUD", "CAD", "SGD",
}

# Normalized intent statuses shared by all adapters
IntentStatus = Literal[
    "requires_payment_method",
    "pending",
    "requires_capture",
    "succeeded",
    "canceled",
]

WebhookKind = Literal[
    "authorization.succeeded",
    "authorization.failed",
    "authorization.canceled",
    "charge.refunded",
    "other",
]


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class CreateIntent(BaseModel):
    """Manual-capture authorization request."""

    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    customer_id: str
    description: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class PaymentIntent(BaseModel):
    intent_id: str
    status: IntentStatus
    provider: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    customer_id: Optional[str] = None
    client_secret: Optional[str] = None
    # provider charge backing the intent, used as a transfer source
    charge_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CaptureRequest(BaseModel):
    intent_id: str
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    idempotency_key: Optional[str] = None


class CancelIntent(BaseModel):
    intent_id: str
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None


class RefundRequest(BaseModel):
    intent_id: str
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency_refund(cls, v: str) -> str:
        return _validate_currency(v)


class RefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    intent_id: Optional[str] = None
    amount: Optional[Decimal] = None


class TransferRequest(BaseModel):
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    destination: str
    source_intent_id: str
    transfer_group: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency_transfer(cls, v: str) -> str:
        return _validate_currency(v)


class TransferResult(BaseModel):
    transfer_id: str
    provider: str
    destination: str
    amount: Decimal
    currency: str


class CreateCustomer(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    idempotency_key: Optional[str] = None


class PaymentMethodDetails(BaseModel):
    provider_method_id: str
    type: str = "card"
    brand: Optional[str] = None
    last_four: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    customer_id: Optional[str] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    kind: WebhookKind = "other"
    provider: str
    intent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    data: dict[str, Any] = Field(default_factory=dict)
    # raw body for traceability (optional)
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


"""
In-memory payment provider.

Behaves like a manual-capture PaymentIntents API: intents move through
Stripe-style statuses, mutating calls honor idempotency keys (a replay with the
same key returns the first result without a second side effect), and webhooks
are signed with the same `t=<ts>,v1=<hmac-sha256>` scheme Stripe uses.

Used for local development and as the provider in tests. Failures and delays
can be injected per operation.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections import Counter, defaultdict
from dataclasses import dataclass
from decimal import Decimal
from itertools import count
from typing import Any, Callable, Optional

import anyio

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
from core.settings import PaymentSettings, payment_settings
from domain.payment.exceptions import PaymentProviderError, PaymentSignatureError
from infrastructure.external.payments.base import BasePaymentClient


@dataclass
class FakeIntent:
    id: str
    amount: Decimal
    currency: str
    customer_id: str
    client_secret: str
    status: str = "requires_payment_method"
    description: Optional[str] = None
    charge_id: Optional[str] = None
    amount_captured: Decimal = Decimal("0.00")
    amount_refunded: Decimal = Decimal("0.00")
    failure_reason: Optional[str] = None


class FakePaymentGateway(BasePaymentClient):
    provider = "fake"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        auto_confirm: bool = False,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._settings = settings or payment_settings
        super().__init__(retry=retry or {"max": self._settings.retry.max, "base": 0})
        self.webhook_secret = self._settings.fake.webhook_secret
        self.auto_confirm = auto_confirm

        self.intents: dict[str, FakeIntent] = {}
        self.refunds: dict[str, RefundResult] = {}
        self.transfers: dict[str, TransferResult] = {}
        self.customers: dict[str, CreateCustomer] = {}
        self.payment_methods: dict[str, PaymentMethodDetails] = {}
        self.default_methods: dict[str, str] = {}

        # operation -> number of calls received (replays and failures included)
        self.calls: Counter[str] = Counter()
        self._ids = count(1)
        self._replies: dict[tuple[str, str], Any] = {}
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._delays: dict[str, float] = {}

    # ------------------------------------------------------------------ test controls

    def fail_next(self, operation: str, exc: Optional[Exception] = None) -> None:
        """The next call of `operation` raises `exc` (a provider error by default)."""
        self._failures[operation].append(
            exc or PaymentProviderError(f"simulated {operation} failure", provider=self.provider, provider_code="simulated")
        )

    def set_delay(self, operation: str, seconds: float) -> None:
        self._delays[operation] = seconds

    def confirm_intent(self, intent_id: str) -> FakeIntent:
        """Client-side confirmation: funds are held and the intent awaits capture."""
        intent = self._intent(intent_id)
        intent.status = "requires_capture"
        intent.charge_id = intent.charge_id or self._new_id("ch")
        intent.failure_reason = None
        return intent

    def decline_intent(self, intent_id: str, reason: str = "Your card was declined.") -> FakeIntent:
        intent = self._intent(intent_id)
        intent.status = "requires_payment_method"
        intent.failure_reason = reason
        return intent

    def add_payment_method(self, details: PaymentMethodDetails) -> None:
        self.payment_methods[details.provider_method_id] = details

    def sign_webhook(self, payload: bytes, *, timestamp: Optional[int] = None, secret: Optional[str] = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        digest = self._signature(payload, ts, secret or self.webhook_secret)
        return f"t={ts},v1={digest}"

    def webhook_payload(self, event_type: str, obj: dict[str, Any], *, event_id: Optional[str] = None) -> bytes:
        body = {
            "id": event_id or self._new_id("evt"),
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }
        return json.dumps(body).encode("utf-8")

    # ------------------------------------------------------------------ plumbing

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_fake_{next(self._ids)}"

    def _intent(self, intent_id: str) -> FakeIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentProviderError(
                f"No such payment_intent: '{intent_id}'",
                provider=self.provider,
                provider_code="resource_missing",
            )
        return intent

    def _error(self, message: str, code: str) -> PaymentProviderError:
        return PaymentProviderError(message, provider=self.provider, provider_code=code)

    async def _execute(self, operation: str, key: Optional[str], fn: Callable[[], Any]) -> Any:
        self.calls[operation] += 1

        async def _attempt():
            delay = self._delays.get(operation)
            if delay:
                await anyio.sleep(delay)
            if self._failures[operation]:
                raise self._failures[operation].pop(0)
            if key is not None and (operation, key) in self._replies:
                self._log("fake_idempotent_replay", operation=operation)
                return self._replies[(operation, key)]
            result = fn()
            if key is not None:
                self._replies[(operation, key)] = result
            return result

        return await self._retry(_attempt)

    def _to_intent(self, intent: FakeIntent) -> PaymentIntent:
        return PaymentIntent(
            intent_id=intent.id,
            status=self._map_status(intent.status),
            provider=self.provider,
            amount=intent.amount,
            currency=intent.currency,
            customer_id=intent.customer_id,
            client_secret=intent.client_secret,
            charge_id=intent.charge_id,
            failure_reason=intent.failure_reason,
        )

    # ------------------------------------------------------------------ port

    async def create_intent(self, req: CreateIntent) -> PaymentIntent:  # type: ignore[override]
        def _create() -> PaymentIntent:
            intent_id = self._new_id("pi")
            intent = FakeIntent(
                id=intent_id,
                amount=req.amount,
                currency=req.currency,
                customer_id=req.customer_id,
                client_secret=f"{intent_id}_secret",
                description=req.description,
            )
            self.intents[intent_id] = intent
            if self.auto_confirm:
                self.confirm_intent(intent_id)
            return self._to_intent(intent)

        return await self._execute("create_intent", req.idempotency_key, _create)

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:  # type: ignore[override]
        return await self._execute("retrieve_intent", None, lambda: self._to_intent(self._intent(intent_id)))

    async def cancel_intent(self, req: CancelIntent) -> PaymentIntent:  # type: ignore[override]
        def _cancel() -> PaymentIntent:
            intent = self._intent(req.intent_id)
            if intent.status in {"succeeded", "canceled"}:
                raise self._error(
                    f"You cannot cancel this PaymentIntent because it has a status of {intent.status}.",
                    "payment_intent_unexpected_state",
                )
            intent.status = "canceled"
            return self._to_intent(intent)

        return await self._execute("cancel_intent", req.idempotency_key, _cancel)

    async def capture(self, req: CaptureRequest) -> PaymentIntent:  # type: ignore[override]
        def _capture() -> PaymentIntent:
            intent = self._intent(req.intent_id)
            if intent.status != "requires_capture":
                raise self._error(
                    f"This PaymentIntent could not be captured because it has a status of {intent.status}.",
                    "payment_intent_unexpected_state",
                )
            amount = req.amount if req.amount is not None else intent.amount
            if amount > intent.amount:
                raise self._error("Amount to capture exceeds the authorized amount.", "amount_too_large")
            intent.status = "succeeded"
            intent.amount_captured = amount
            return self._to_intent(intent)

        return await self._execute("capture", req.idempotency_key, _capture)

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        def _refund() -> RefundResult:
            intent = self._intent(req.intent_id)
            if intent.status != "succeeded":
                raise self._error(f"PaymentIntent {intent.id} has no captured charge to refund.", "charge_not_captured")
            available = intent.amount_captured - intent.amount_refunded
            amount = req.amount if req.amount is not None else available
            if amount > available:
                raise self._error(
                    f"Refund amount ({amount}) is greater than unrefunded amount on charge ({available})",
                    "amount_too_large",
                )
            intent.amount_refunded += amount
            result = RefundResult(
                refund_id=self._new_id("re"),
                status="succeeded",
                provider=self.provider,
                intent_id=intent.id,
                amount=amount,
            )
            self.refunds[result.refund_id] = result
            return result

        return await self._execute("refund", req.idempotency_key, _refund)

    async def transfer(self, req: TransferRequest) -> TransferResult:  # type: ignore[override]
        def _transfer() -> TransferResult:
            source = self._intent(req.source_intent_id)
            if source.status != "succeeded" or not source.charge_id:
                raise self._error(
                    f"PaymentIntent {source.id} has no captured charge to transfer from",
                    "invalid_source_transaction",
                )
            result = TransferResult(
                transfer_id=self._new_id("tr"),
                provider=self.provider,
                destination=req.destination,
                amount=req.amount,
                currency=req.currency,
            )
            self.transfers[result.transfer_id] = result
            return result

        return await self._execute("transfer", req.idempotency_key, _transfer)

    async def create_customer(self, req: CreateCustomer) -> str:  # type: ignore[override]
        def _create() -> str:
            customer_id = self._new_id("cus")
            self.customers[customer_id] = req
            return customer_id

        return await self._execute("create_customer", req.idempotency_key, _create)

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethodDetails:  # type: ignore[override]
        def _attach() -> PaymentMethodDetails:
            if customer_id not in self.customers:
                raise self._error(f"No such customer: '{customer_id}'", "resource_missing")
            details = self.payment_methods.get(payment_method_id) or PaymentMethodDetails(
                provider_method_id=payment_method_id,
                brand="visa",
                last_four="4242",
                exp_month=12,
                exp_year=2030,
            )
            details = details.model_copy(update={"customer_id": customer_id})
            self.payment_methods[payment_method_id] = details
            return details

        return await self._execute("attach_payment_method", None, _attach)

    async def detach_payment_method(self, payment_method_id: str) -> None:  # type: ignore[override]
        def _detach() -> None:
            details = self.payment_methods.get(payment_method_id)
            if details is None:
                raise self._error(f"No such PaymentMethod: '{payment_method_id}'", "resource_missing")
            self.payment_methods[payment_method_id] = details.model_copy(update={"customer_id": None})

        await self._execute("detach_payment_method", None, _detach)

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:  # type: ignore[override]
        def _set_default() -> None:
            details = self.payment_methods.get(payment_method_id)
            if details is None or details.customer_id != customer_id:
                raise self._error(
                    f"PaymentMethod {payment_method_id} is not attached to customer {customer_id}",
                    "resource_missing",
                )
            self.default_methods[customer_id] = payment_method_id

        await self._execute("set_default_payment_method", None, _set_default)

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails:  # type: ignore[override]
        def _get() -> PaymentMethodDetails:
            details = self.payment_methods.get(payment_method_id)
            if details is None:
                raise self._error(f"No such PaymentMethod: '{payment_method_id}'", "resource_missing")
            return details

        return await self._execute("get_payment_method", None, _get)

    # ------------------------------------------------------------------ webhooks

    @staticmethod
    def _signature(payload: bytes, timestamp: int, secret: str) -> str:
        signed = f"{timestamp}.".encode("utf-8") + payload
        return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()

    def parse_webhook(self, payload: bytes, signature: str, secret: Optional[str] = None) -> WebhookEvent:  # type: ignore[override]
        secret = secret or self.webhook_secret
        if not signature:
            raise PaymentSignatureError("Missing signature header", provider=self.provider)
        parts = dict(item.split("=", 1) for item in signature.split(",") if "=" in item)
        try:
            timestamp = int(parts["t"])
            expected = parts["v1"]
        except (KeyError, ValueError) as exc:
            raise PaymentSignatureError("Malformed signature header", provider=self.provider) from exc

        if not hmac.compare_digest(self._signature(payload, timestamp, secret), expected):
            raise PaymentSignatureError("Signature mismatch", provider=self.provider)
        tolerance = self._settings.webhook.tolerance_seconds
        if tolerance and abs(time.time() - timestamp) > tolerance:
            raise PaymentSignatureError(
                "Timestamp outside the tolerance zone",
                provider=self.provider,
                details={"timestamp": timestamp, "tolerance": tolerance},
            )

        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise PaymentSignatureError("Invalid webhook payload", provider=self.provider) from exc
        data = body.get("data") if isinstance(body, dict) else None
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(body, dict) or not isinstance(obj or {}, dict):
            raise PaymentSignatureError("Invalid webhook payload", provider=self.provider)

        event_type = str(body.get("type", ""))
        obj = obj or {}
        if event_type.startswith("payment_intent."):
            intent_id = obj.get("id")
        else:
            intent_id = obj.get("payment_intent")
        error = obj.get("last_payment_error") or {}
        return WebhookEvent(
            id=str(body.get("id", "")),
            type=event_type,
            kind=self._map_event_kind(event_type),
            provider=self.provider,
            intent_id=intent_id,
            failure_reason=error.get("message"),
            data=obj,
            raw_body=payload,
        )

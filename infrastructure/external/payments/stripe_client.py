"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (`stripe.PaymentIntent`, `stripe.Refund`, ...) are
  blocking; each call runs in a worker thread via `anyio.to_thread.run_sync`.
- Authorizations are created with `capture_method="manual"` and captured later.
- Idempotency keys are supplied through the `idempotency_key` kwarg.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
"""
from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Optional

import anyio
import stripe

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
from domain.payment.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PaymentCode


# Values Stripe accepts for `reason` / `cancellation_reason`
REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}
CANCELLATION_REASONS = {"duplicate", "fraudulent", "requested_by_customer", "abandoned"}


def _ref(value: Any) -> Optional[str]:
    """Expandable Stripe fields hold either an id or the expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return getattr(value, "id", None)


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, settings: Optional[PaymentSettings] = None):
        self._settings = settings or payment_settings
        super().__init__(
            retry={"max": self._settings.retry.max, "base": self._settings.retry.base_backoff},
        )
        if not self._settings.stripe.secret_key:
            raise RuntimeError("STRIPE__SECRET_KEY not configured")
        # Configure module-level key for compatibility across SDK variants
        stripe.api_key = self._settings.stripe.secret_key
        if self._settings.stripe.api_version:
            stripe.api_version = self._settings.stripe.api_version
        # retries are handled by BasePaymentClient._retry
        stripe.max_network_retries = 0

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        params = {k: v for k, v in kwargs.items() if v is not None}

        async def _invoke():
            try:
                return await anyio.to_thread.run_sync(partial(fn, *args, **params), abandon_on_cancel=True)
            except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
                raise PaymentRecoverableError(
                    exc.user_message or str(exc),
                    provider=self.provider,
                    provider_code=getattr(exc, "code", None),
                    details={"operation": operation},
                    code=(
                        PaymentCode.RATE_LIMITED
                        if isinstance(exc, stripe.RateLimitError)
                        else PaymentCode.PROVIDER_RECOVERABLE
                    ),
                ) from exc
            except stripe.StripeError as exc:
                raise PaymentProviderError(
                    exc.user_message or str(exc),
                    provider=self.provider,
                    provider_code=getattr(exc, "code", None),
                    details={"operation": operation, "http_status": getattr(exc, "http_status", None)},
                ) from exc

        self._log("stripe_request", operation=operation, idempotency_key=params.get("idempotency_key"))
        return await self._retry(_invoke)

    def _to_intent(self, pi: Any) -> PaymentIntent:
        currency = (getattr(pi, "currency", None) or "").upper() or None
        amount = getattr(pi, "amount", None)
        error = getattr(pi, "last_payment_error", None)
        return PaymentIntent(
            intent_id=str(pi.id),
            status=self._map_status(str(pi.status)),
            provider=self.provider,
            amount=self._from_minor(amount, currency) if amount is not None and currency else None,
            currency=currency,
            customer_id=_ref(getattr(pi, "customer", None)),
            client_secret=getattr(pi, "client_secret", None),
            charge_id=_ref(getattr(pi, "latest_charge", None)),
            failure_reason=getattr(error, "message", None) if error else None,
        )

    @staticmethod
    def _to_method(pm: Any) -> PaymentMethodDetails:
        card = getattr(pm, "card", None)
        return PaymentMethodDetails(
            provider_method_id=str(pm.id),
            type=str(getattr(pm, "type", "card")),
            brand=getattr(card, "brand", None) if card else None,
            last_four=getattr(card, "last4", None) if card else None,
            exp_month=getattr(card, "exp_month", None) if card else None,
            exp_year=getattr(card, "exp_year", None) if card else None,
            customer_id=_ref(getattr(pm, "customer", None)),
        )

    async def create_intent(self, req: CreateIntent) -> PaymentIntent:  # type: ignore[override]
        pi = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=self._to_minor(req.amount, req.currency),
            currency=req.currency.lower(),
            customer=req.customer_id,
            capture_method="manual",
            description=req.description,
            metadata=req.metadata or None,
            idempotency_key=req.idempotency_key,
        )
        return self._to_intent(pi)

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:  # type: ignore[override]
        pi = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id)
        return self._to_intent(pi)

    async def cancel_intent(self, req: CancelIntent) -> PaymentIntent:  # type: ignore[override]
        pi = await self._call(
            "cancel_intent",
            stripe.PaymentIntent.cancel,
            req.intent_id,
            cancellation_reason=req.reason if req.reason in CANCELLATION_REASONS else None,
            idempotency_key=req.idempotency_key,
        )
        return self._to_intent(pi)

    async def capture(self, req: CaptureRequest) -> PaymentIntent:  # type: ignore[override]
        pi = await self._call(
            "capture",
            stripe.PaymentIntent.capture,
            req.intent_id,
            amount_to_capture=self._to_minor(req.amount, req.currency) if req.amount is not None else None,
            idempotency_key=req.idempotency_key,
        )
        return self._to_intent(pi)

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        metadata = dict(req.metadata)
        if req.reason and req.reason not in REFUND_REASONS:
            metadata["reason"] = req.reason
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=req.intent_id,
            amount=self._to_minor(req.amount, req.currency) if req.amount is not None else None,
            reason=req.reason if req.reason in REFUND_REASONS else None,
            metadata=metadata or None,
            idempotency_key=req.idempotency_key,
        )
        amount = getattr(refund, "amount", None)
        return RefundResult(
            refund_id=str(refund.id),
            status=str(getattr(refund, "status", "") or ""),
            provider=self.provider,
            intent_id=_ref(getattr(refund, "payment_intent", None)) or req.intent_id,
            amount=self._from_minor(amount, req.currency) if amount is not None else req.amount,
        )

    async def transfer(self, req: TransferRequest) -> TransferResult:  # type: ignore[override]
        # transfers are tied to the charge that funded them
        source = await self.retrieve_intent(req.source_intent_id)
        if not source.charge_id:
            raise PaymentProviderError(
                f"PaymentIntent {req.source_intent_id} has no charge to transfer from",
                provider=self.provider,
                details={"operation": "transfer"},
            )
        tr = await self._call(
            "transfer",
            stripe.Transfer.create,
            amount=self._to_minor(req.amount, req.currency),
            currency=req.currency.lower(),
            destination=req.destination,
            source_transaction=source.charge_id,
            transfer_group=req.transfer_group,
            metadata=req.metadata or None,
            idempotency_key=req.idempotency_key,
        )
        return TransferResult(
            transfer_id=str(tr.id),
            provider=self.provider,
            destination=req.destination,
            amount=req.amount,
            currency=req.currency,
        )

    async def create_customer(self, req: CreateCustomer) -> str:  # type: ignore[override]
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=req.email,
            name=req.name,
            metadata={"user_id": req.user_id},
            idempotency_key=req.idempotency_key,
        )
        return str(customer.id)

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> PaymentMethodDetails:  # type: ignore[override]
        pm = await self._call(
            "attach_payment_method",
            stripe.PaymentMethod.attach,
            payment_method_id,
            customer=customer_id,
        )
        return self._to_method(pm)

    async def detach_payment_method(self, payment_method_id: str) -> None:  # type: ignore[override]
        await self._call("detach_payment_method", stripe.PaymentMethod.detach, payment_method_id)

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:  # type: ignore[override]
        await self._call(
            "set_default_payment_method",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethodDetails:  # type: ignore[override]
        pm = await self._call("get_payment_method", stripe.PaymentMethod.retrieve, payment_method_id)
        return self._to_method(pm)

    def parse_webhook(self, payload: bytes, signature: str, secret: Optional[str] = None) -> WebhookEvent:  # type: ignore[override]
        secret = secret or self._settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        if not signature:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=secret,
                tolerance=self._settings.webhook.tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc

        obj = event.data.object
        event_type = str(event.type)
        if event_type.startswith("payment_intent."):
            intent_id = _ref(getattr(obj, "id", None))
        else:
            intent_id = _ref(getattr(obj, "payment_intent", None))
        error = getattr(obj, "last_payment_error", None)
        created = getattr(event, "created", None)
        return WebhookEvent(
            id=str(event.id),
            type=event_type,
            kind=self._map_event_kind(event_type),
            provider=self.provider,
            intent_id=intent_id,
            failure_reason=getattr(error, "message", None) if error else None,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            data={"object_id": getattr(obj, "id", None), "object": getattr(obj, "object", None)},
            raw_body=payload,
        )

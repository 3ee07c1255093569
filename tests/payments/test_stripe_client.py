import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest


stripe = pytest.importorskip("stripe")

from application.dtos.payments import CaptureRequest, CreateIntent, RefundRequest
from core.settings import PaymentSettings
from shared.codes.payment_codes import PaymentCode
from domain.payment.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)


WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def client(monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    # restore module-level configuration after each test
    monkeypatch.setattr(stripe, "api_key", stripe.api_key)
    monkeypatch.setattr(stripe, "max_network_retries", stripe.max_network_retries)
    settings = PaymentSettings(
        default_provider="stripe",
        stripe={"secret_key": "sk_test_123", "webhook_secret": WEBHOOK_SECRET},
        retry={"max": 2, "base_backoff": 0},
    )
    return StripeClient(settings)


def _intent(**overrides):
    fields = dict(
        id="pi_123",
        status="requires_capture",
        amount=2898,
        currency="usd",
        customer="cus_1",
        client_secret="pi_123_secret",
        latest_charge="ch_1",
        last_payment_error=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_missing_secret_key_is_rejected():
    from infrastructure.external.payments.stripe_client import StripeClient

    with pytest.raises(RuntimeError):
        StripeClient(PaymentSettings(default_provider="stripe", stripe={"secret_key": None}))


@pytest.mark.asyncio
async def test_create_intent_uses_manual_capture_and_minor_units(client, monkeypatch):
    seen = {}

    def fake_create(**kwargs):
        seen.update(kwargs)
        return _intent(status="requires_payment_method")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    intent = await client.create_intent(
        CreateIntent(amount=Decimal("28.98"), currency="USD", customer_id="cus_1", idempotency_key="key-1")
    )
    assert seen["amount"] == 2898
    assert seen["currency"] == "usd"
    assert seen["capture_method"] == "manual"
    assert seen["idempotency_key"] == "key-1"
    assert "description" not in seen
    assert intent.intent_id == "pi_123"
    assert intent.status == "requires_payment_method"
    assert intent.amount == Decimal("28.98")
    assert intent.client_secret == "pi_123_secret"


@pytest.mark.asyncio
async def test_capture_and_refund_arguments(client, monkeypatch):
    captured = {}
    refunded = {}

    def fake_capture(intent_id, **kwargs):
        captured.update(kwargs, intent_id=intent_id)
        return _intent(status="succeeded")

    def fake_refund(**kwargs):
        refunded.update(kwargs)
        return SimpleNamespace(id="re_1", status="succeeded", amount=kwargs["amount"], payment_intent="pi_123")

    monkeypatch.setattr(stripe.PaymentIntent, "capture", fake_capture)
    monkeypatch.setattr(stripe.Refund, "create", fake_refund)

    intent = await client.capture(
        CaptureRequest(intent_id="pi_123", amount=Decimal("28.98"), currency="USD", idempotency_key="cap")
    )
    assert intent.status == "succeeded"
    assert captured == {"intent_id": "pi_123", "amount_to_capture": 2898, "idempotency_key": "cap"}

    result = await client.refund(
        RefundRequest(intent_id="pi_123", amount=Decimal("10"), currency="USD", reason="item missing", idempotency_key="ref")
    )
    assert result.refund_id == "re_1"
    assert result.amount == Decimal("10.00")
    assert "reason" not in refunded
    assert refunded["metadata"] == {"reason": "item missing"}


@pytest.mark.asyncio
async def test_connection_errors_are_retried(client, monkeypatch):
    attempts = []

    def flaky_retrieve(intent_id):
        attempts.append(intent_id)
        if len(attempts) < 3:
            raise stripe.APIConnectionError("network down")
        return _intent()

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", flaky_retrieve)
    intent = await client.retrieve_intent("pi_123")
    assert intent.status == "requires_capture"
    assert intent.charge_id == "ch_1"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retries_are_bounded(client, monkeypatch):
    def always_down(intent_id):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", always_down)
    with pytest.raises(PaymentRecoverableError) as exc_info:
        await client.retrieve_intent("pi_123")
    assert exc_info.value.code == PaymentCode.PROVIDER_RECOVERABLE


@pytest.mark.asyncio
async def test_rate_limits_are_retried_and_reported(client, monkeypatch):
    attempts = []

    def throttled(intent_id):
        attempts.append(intent_id)
        raise stripe.RateLimitError("Too many requests")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", throttled)
    with pytest.raises(PaymentRecoverableError) as exc_info:
        await client.retrieve_intent("pi_123")
    assert exc_info.value.code == PaymentCode.RATE_LIMITED
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_api_errors_are_not_retried(client, monkeypatch):
    attempts = []

    def bad_request(intent_id, **kwargs):
        attempts.append(intent_id)
        raise stripe.InvalidRequestError("This PaymentIntent could not be captured", param="id", code="payment_intent_unexpected_state")

    monkeypatch.setattr(stripe.PaymentIntent, "capture", bad_request)
    with pytest.raises(PaymentProviderError) as exc_info:
        await client.capture(CaptureRequest(intent_id="pi_123", idempotency_key="cap"))
    assert not isinstance(exc_info.value, PaymentRecoverableError)
    assert exc_info.value.details["provider_code"] == "payment_intent_unexpected_state"
    assert len(attempts) == 1


def _signed(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def test_parse_webhook_verifies_signature(client):
    payload = json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": "payment_intent.payment_failed",
        "created": int(time.time()),
        "data": {"object": {
            "id": "pi_123",
            "object": "payment_intent",
            "last_payment_error": {"message": "card declined"},
        }},
    }).encode()

    event = client.parse_webhook(payload, _signed(payload))
    assert event.id == "evt_1"
    assert event.kind == "authorization.failed"
    assert event.intent_id == "pi_123"
    assert event.failure_reason == "card declined"

    with pytest.raises(PaymentSignatureError):
        client.parse_webhook(payload, _signed(payload, secret="whsec_wrong"))
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook(payload, "")


def test_charge_events_resolve_intent(client):
    payload = json.dumps({
        "id": "evt_2",
        "object": "event",
        "type": "charge.refunded",
        "created": int(time.time()),
        "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": "pi_123"}},
    }).encode()
    event = client.parse_webhook(payload, _signed(payload))
    assert event.kind == "charge.refunded"
    assert event.intent_id == "pi_123"

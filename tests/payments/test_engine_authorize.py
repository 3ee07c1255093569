from decimal import Decimal

import pytest

from application.services.payment_service import PaymentEngine
from core.settings import PaymentSettings
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentStatus
from domain.payment.exceptions import (
    DeliveryRequestNotFoundException,
    PaymentAuthorizationPendingException,
    PaymentPreconditionException,
    PaymentProviderError,
    PaymentProviderTimeoutError,
    PaymentRecoverableError,
)
from infrastructure.memory import memory_uow_factory


@pytest.mark.asyncio
async def test_authorize_persists_pending_row_after_provider(engine, gateway, store):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester", description="coffee")
    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == Decimal("28.98")
    assert payment.currency == "USD"
    assert payment.provider_intent_id in gateway.intents
    assert payment.metadata["client_secret"].startswith(payment.provider_intent_id)
    assert gateway.intents[payment.provider_intent_id].amount == Decimal("28.98")
    assert list(store.payments) == [payment.id]


@pytest.mark.asyncio
async def test_same_token_twice_creates_one_authorization(engine, gateway):
    first = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    second = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    assert first.id == second.id
    assert len(gateway.intents) == 1
    assert len(await engine.get_payments_by_request_id("req_1")) == 1


@pytest.mark.asyncio
async def test_explicit_idempotency_key(engine, gateway):
    a = await engine.authorize_payment("req_1", "10", "cus_requester", idempotency_key="order-1")
    b = await engine.authorize_payment("req_1", "10", "cus_requester", idempotency_key="order-2")
    c = await engine.authorize_payment("req_1", "10", "cus_requester", idempotency_key="order-1")
    assert a.id == c.id
    assert a.id != b.id
    assert len(gateway.intents) == 2


@pytest.mark.asyncio
async def test_provider_failure_persists_nothing(engine, gateway, store):
    gateway.fail_next("create_intent")
    with pytest.raises(PaymentProviderError):
        await engine.authorize_payment("req_1", "28.98", "cus_requester")
    assert store.payments == {}


@pytest.mark.asyncio
async def test_recoverable_failure_is_retried_with_same_key(engine, gateway):
    gateway.fail_next("create_intent", PaymentRecoverableError("connection reset", provider="fake"))
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    assert payment.status == PaymentStatus.PENDING
    assert len(gateway.intents) == 1


@pytest.mark.asyncio
async def test_timeout_persists_nothing(gateway, store):
    settings = PaymentSettings(default_provider="fake", timeouts={"total": 0.05})
    engine = PaymentEngine(gateway, memory_uow_factory(store), settings=settings)
    gateway.set_delay("create_intent", 1)
    with pytest.raises(PaymentProviderTimeoutError):
        await engine.authorize_payment("req_1", "28.98", "cus_requester")
    assert store.payments == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-5", "0.10", "1000000.00", "abc"])
async def test_invalid_amount_makes_no_provider_call(engine, gateway, amount):
    with pytest.raises(DomainValidationException):
        await engine.authorize_payment("req_1", amount, "cus_requester")
    assert gateway.calls["create_intent"] == 0


@pytest.mark.asyncio
async def test_missing_identifiers(engine, gateway):
    with pytest.raises(DomainValidationException):
        await engine.authorize_payment("req_1", "10", " ")
    with pytest.raises(DeliveryRequestNotFoundException):
        await engine.authorize_payment("missing", "10", "cus_requester")
    assert gateway.calls["create_intent"] == 0


@pytest.mark.asyncio
async def test_confirm_authorization(engine, gateway, notifier):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")

    with pytest.raises(PaymentAuthorizationPendingException):
        await engine.confirm_authorization(payment.id)
    assert (await engine.get_payment_by_id(payment.id)).status == PaymentStatus.PENDING

    gateway.confirm_intent(payment.provider_intent_id)
    authorized = await engine.confirm_authorization(payment.id)
    assert authorized.status == PaymentStatus.AUTHORIZED
    assert notifier.names == ["PaymentAuthorized"]

    with pytest.raises(PaymentPreconditionException):
        await engine.confirm_authorization(payment.id)


@pytest.mark.asyncio
async def test_declined_authorization_fails(engine, gateway, notifier):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    gateway.decline_intent(payment.provider_intent_id, "Your card was declined.")
    failed = await engine.confirm_authorization(payment.id)
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Your card was declined."
    assert failed.failed_at is not None
    assert notifier.names == ["PaymentAuthorizationFailed"]


@pytest.mark.asyncio
async def test_new_attempt_after_decline_needs_fresh_key(engine, gateway):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    gateway.decline_intent(payment.provider_intent_id, "Your card was declined.")
    await engine.confirm_authorization(payment.id)

    replayed = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    assert replayed.id == payment.id
    assert replayed.status == PaymentStatus.FAILED

    retry = await engine.authorize_payment("req_1", "28.98", "cus_requester", idempotency_key="attempt-2")
    assert retry.id != payment.id
    assert retry.status == PaymentStatus.PENDING
    assert len(gateway.intents) == 2


@pytest.mark.asyncio
async def test_retrieve_intent_reads_through(engine, gateway):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    intent = await engine.retrieve_intent(payment.provider_intent_id)
    assert intent.status == "requires_payment_method"
    assert intent.amount == Decimal("28.98")

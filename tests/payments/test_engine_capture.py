import asyncio

import pytest

from application.services.payment_service import PaymentEngine
from core.settings import PaymentSettings
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.exceptions import (
    PaymentOperationInFlightException,
    PaymentPreconditionException,
    PaymentProviderError,
    PaymentProviderTimeoutError,
)
from infrastructure.memory import memory_uow_factory


@pytest.mark.asyncio
async def test_capture_success(engine, make_authorized, notifier):
    payment = await make_authorized()
    captured = await engine.capture_payment(payment.id)
    assert captured.status == PaymentStatus.CAPTURED
    assert captured.captured_at is not None
    assert captured.pending_operation is None
    assert notifier.names[-1] == "PaymentCaptured"


@pytest.mark.asyncio
async def test_capture_requires_authorized(engine, gateway):
    payment = await engine.authorize_payment("req_1", "100", "cus_requester")
    with pytest.raises(PaymentPreconditionException):
        await engine.capture_payment(payment.id)
    assert gateway.calls["capture"] == 0


@pytest.mark.asyncio
async def test_capture_failure_writes_failed_then_raises(engine, gateway, make_authorized, notifier):
    payment = await make_authorized()
    gateway.fail_next("capture")
    with pytest.raises(PaymentProviderError):
        await engine.capture_payment(payment.id)
    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.FAILED
    assert row.failure_reason == "simulated capture failure"
    assert row.pending_operation is None
    assert notifier.names[-1] == "PaymentCaptureFailed"


@pytest.mark.asyncio
async def test_concurrent_double_capture(engine, gateway, make_authorized):
    payment = await make_authorized()
    gateway.set_delay("capture", 0.05)

    results = await asyncio.gather(
        engine.capture_payment(payment.id),
        engine.capture_payment(payment.id),
        return_exceptions=True,
    )

    captured = [r for r in results if isinstance(r, Payment)]
    rejected = [r for r in results if isinstance(r, PaymentPreconditionException)]
    assert len(captured) == 1 and len(rejected) == 1
    assert captured[0].status == PaymentStatus.CAPTURED
    assert gateway.calls["capture"] == 1


@pytest.mark.asyncio
async def test_capture_timeout_keeps_claim(gateway, store, make_authorized):
    payment = await make_authorized()
    settings = PaymentSettings(default_provider="fake", timeouts={"total": 0.05})
    engine = PaymentEngine(gateway, memory_uow_factory(store), settings=settings)
    gateway.set_delay("capture", 1)

    with pytest.raises(PaymentProviderTimeoutError):
        await engine.capture_payment(payment.id)

    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.AUTHORIZED
    assert row.pending_operation == "capture"
    assert row.pending_idempotency_key
    assert [p.id for p in await engine.get_in_flight_payments()] == [payment.id]

    with pytest.raises(PaymentOperationInFlightException):
        await engine.capture_payment(payment.id)
    assert gateway.calls["capture"] == 1


@pytest.mark.asyncio
async def test_cancel_authorized(engine, gateway, make_authorized, notifier):
    payment = await make_authorized()
    cancelled = await engine.cancel_payment(payment.id, reason="requested_by_customer")
    assert cancelled.status == PaymentStatus.CANCELLED
    assert gateway.intents[payment.provider_intent_id].status == "canceled"
    assert notifier.names[-1] == "PaymentCancelled"


@pytest.mark.asyncio
async def test_cancel_failure_leaves_row_unchanged(engine, gateway, make_authorized):
    payment = await make_authorized()
    gateway.fail_next("cancel_intent")
    with pytest.raises(PaymentProviderError):
        await engine.cancel_payment(payment.id)
    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.AUTHORIZED
    assert row.pending_operation is None

    # claim released: capture is still possible
    assert (await engine.capture_payment(payment.id)).status == PaymentStatus.CAPTURED


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_capture(gateway, store, settings, make_authorized):
    class BrokenNotifier:
        async def notify(self, event):
            raise RuntimeError("sink down")

    payment = await make_authorized()
    engine = PaymentEngine(gateway, memory_uow_factory(store), notifier=BrokenNotifier(), settings=settings)
    captured = await engine.capture_payment(payment.id)
    assert captured.status == PaymentStatus.CAPTURED
    assert (await engine.get_payment_by_id(payment.id)).status == PaymentStatus.CAPTURED

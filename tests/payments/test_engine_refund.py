from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentStatus, PaymentType
from domain.payment.exceptions import PaymentPreconditionException, PaymentProviderError


@pytest.mark.asyncio
async def test_full_refund_appends_no_row(engine, gateway, make_captured, notifier):
    payment = await make_captured("100.00")
    refunded = await engine.refund_payment(payment.id)
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refunded_at is not None
    assert refunded.amount == Decimal("100.00")
    assert len(await engine.get_payments_by_request_id("req_1")) == 1
    assert gateway.intents[payment.provider_intent_id].amount_refunded == Decimal("100.00")
    event = notifier.events[-1]
    assert event.name == "PaymentRefunded"
    assert event.refund_row_id is None


@pytest.mark.asyncio
async def test_partial_refund_appends_refund_row(engine, make_captured, notifier):
    payment = await make_captured("100.00")
    refunded = await engine.refund_payment(payment.id, Decimal("40"), reason="item missing")
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.amount == Decimal("100.00")

    rows = await engine.get_payments_by_request_id("req_1")
    refund_rows = [r for r in rows if r.type == PaymentType.REFUND]
    assert len(rows) == 2
    assert len(refund_rows) == 1
    refund_row = refund_rows[0]
    assert refund_row.amount == Decimal("40.00")
    assert refund_row.status == PaymentStatus.REFUNDED
    assert refund_row.metadata["original_payment_id"] == payment.id
    assert refund_row.provider_intent_id.startswith("re_")
    assert notifier.events[-1].refund_row_id == refund_row.id


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "100.01"])
async def test_refund_amount_bounds(engine, gateway, make_captured, amount):
    payment = await make_captured("100.00")
    with pytest.raises(DomainValidationException):
        await engine.refund_payment(payment.id, amount)
    assert gateway.calls["refund"] == 0


@pytest.mark.asyncio
async def test_refund_requires_capture(engine, gateway, make_authorized):
    payment = await make_authorized()
    with pytest.raises(PaymentPreconditionException):
        await engine.refund_payment(payment.id)
    assert gateway.calls["refund"] == 0


@pytest.mark.asyncio
async def test_refund_after_transfer(engine, make_captured):
    payment = await make_captured()
    await engine.transfer_to_traveler(payment.id, "u_traveler")
    refunded = await engine.refund_payment(payment.id, "20")
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.transferred_at is not None
    types = sorted(r.type.value for r in await engine.get_payments_by_request_id("req_1"))
    assert types == ["delivery_payment", "payout", "refund"]


@pytest.mark.asyncio
async def test_refund_failure_leaves_row_captured(engine, gateway, make_captured):
    payment = await make_captured()
    gateway.fail_next("refund")
    with pytest.raises(PaymentProviderError):
        await engine.refund_payment(payment.id, "10")
    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.CAPTURED
    assert row.pending_operation is None
    assert len(await engine.get_payments_by_request_id("req_1")) == 1


@pytest.mark.asyncio
async def test_refund_row_cannot_be_refunded(engine, make_captured):
    payment = await make_captured()
    await engine.refund_payment(payment.id, "10")
    refund_row = next(
        r for r in await engine.get_payments_by_request_id("req_1") if r.type == PaymentType.REFUND
    )
    with pytest.raises(PaymentPreconditionException):
        await engine.refund_payment(refund_row.id)

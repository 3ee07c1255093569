import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentStatus
from domain.payment.exceptions import (
    DeliveryRequestNotFoundException,
    PaymentNotFoundException,
    PaymentPreconditionException,
    PaymentProviderError,
)


async def _refunded(engine, gateway, make_authorized):
    payment = await make_authorized()
    await engine.capture_payment(payment.id)
    return await engine.refund_payment(payment.id)


async def _cancelled(engine, gateway, make_authorized):
    payment = await make_authorized()
    return await engine.cancel_payment(payment.id)


async def _failed(engine, gateway, make_authorized):
    payment = await make_authorized()
    gateway.fail_next("capture")
    with pytest.raises(PaymentProviderError):
        await engine.capture_payment(payment.id)
    return await engine.get_payment_by_id(payment.id)


OPERATIONS = {
    "confirm_authorization": lambda engine, p: engine.confirm_authorization(p.id),
    "capture": lambda engine, p: engine.capture_payment(p.id),
    "cancel": lambda engine, p: engine.cancel_payment(p.id),
    "refund": lambda engine, p: engine.refund_payment(p.id),
    "transfer": lambda engine, p: engine.transfer_to_traveler(p.id, "u_traveler"),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("build,status", [
    (_refunded, PaymentStatus.REFUNDED),
    (_cancelled, PaymentStatus.CANCELLED),
    (_failed, PaymentStatus.FAILED),
])
async def test_terminal_rows_reject_every_operation(engine, gateway, make_authorized, build, status):
    payment = await build(engine, gateway, make_authorized)
    assert payment.status == status
    calls_before = sum(gateway.calls.values())

    for op in OPERATIONS.values():
        with pytest.raises(PaymentPreconditionException):
            await op(engine, payment)

    assert sum(gateway.calls.values()) == calls_before
    assert (await engine.get_payment_by_id(payment.id)).status == status


@pytest.mark.asyncio
async def test_read_operations_validate_identifiers(engine):
    with pytest.raises(PaymentNotFoundException):
        await engine.get_payment_by_id("missing")
    with pytest.raises(DomainValidationException):
        await engine.get_payment_by_id("")
    with pytest.raises(DeliveryRequestNotFoundException):
        await engine.get_payments_by_request_id("missing")
    with pytest.raises(DomainValidationException):
        await engine.get_payments_by_customer_id(None)


@pytest.mark.asyncio
async def test_payments_by_customer(engine, make_captured):
    payment = await make_captured()
    rows = await engine.get_payments_by_customer_id("cus_requester")
    assert [r.id for r in rows] == [payment.id]
    assert await engine.get_payments_by_customer_id("cus_other") == []

from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    Payment,
    PaymentOperation,
    PaymentStatus,
    PaymentType,
    predecessors,
)
from domain.payment.exceptions import (
    PaymentOperationInFlightException,
    PaymentPreconditionException,
)
from domain.payment.money import from_minor, to_minor, to_money


def _payment(**overrides):
    fields = dict(
        request_id="req_1",
        provider_intent_id="pi_1",
        customer_id="cus_1",
        amount=Decimal("100"),
        currency="usd",
    )
    fields.update(overrides)
    return Payment.new(**fields)


def test_new_payment_defaults():
    p = _payment()
    assert p.status == PaymentStatus.PENDING
    assert p.type == PaymentType.DELIVERY_PAYMENT
    assert p.amount == Decimal("100.00")
    assert p.currency == "USD"
    assert len(p.id) == 32
    assert p.created_at is not None
    assert p.captured_at is None


@pytest.mark.parametrize("field,value", [
    ("amount", Decimal("1.00")),
    ("currency", "EUR"),
    ("type", PaymentType.REFUND),
    ("request_id", "req_2"),
    ("id", "other"),
])
def test_identity_fields_are_immutable(field, value):
    p = _payment()
    with pytest.raises(DomainValidationException):
        setattr(p, field, value)


def test_assigning_same_value_is_allowed():
    p = _payment()
    p.amount = Decimal("100.00")
    assert p.amount == Decimal("100.00")


@pytest.mark.parametrize("amount", ["0", "-1", "abc", float("nan"), True])
def test_invalid_amount_rejected(amount):
    with pytest.raises(DomainValidationException):
        _payment(amount=amount)


@pytest.mark.parametrize("currency", ["", "US", "US1", "DOLLAR"])
def test_invalid_currency_rejected(currency):
    with pytest.raises(DomainValidationException):
        _payment(currency=currency)


def test_transitions_are_forward_only_and_stamp_timestamps():
    p = _payment()
    p.transition_to(PaymentStatus.AUTHORIZED)
    p.transition_to(PaymentStatus.CAPTURED)
    assert p.captured_at is not None
    with pytest.raises(PaymentPreconditionException):
        p.transition_to(PaymentStatus.AUTHORIZED)
    p.transition_to(PaymentStatus.REFUNDED)
    assert p.refunded_at is not None
    assert p.is_terminal
    with pytest.raises(PaymentPreconditionException):
        p.transition_to(PaymentStatus.TRANSFERRED)


def test_failure_records_reason():
    p = _payment(status=PaymentStatus.AUTHORIZED)
    p.transition_to(PaymentStatus.FAILED, reason="card declined")
    assert p.failed_at is not None
    assert p.failure_reason == "card declined"


def test_derived_rows_reject_operations():
    refund_row = _payment(type=PaymentType.REFUND, status=PaymentStatus.REFUNDED)
    assert refund_row.refunded_at is not None
    for op in PaymentOperation:
        with pytest.raises(PaymentPreconditionException):
            refund_row.ensure_can(op)


def test_claim_blocks_other_operations():
    p = _payment(status=PaymentStatus.AUTHORIZED)
    p.ensure_can(PaymentOperation.CAPTURE)
    p.claim(PaymentOperation.CAPTURE, "key")
    assert p.is_in_flight
    with pytest.raises(PaymentOperationInFlightException):
        p.ensure_can(PaymentOperation.CANCEL)
    p.release()
    assert not p.is_in_flight


def test_predecessors():
    assert predecessors(PaymentStatus.REFUNDED) == {PaymentStatus.CAPTURED, PaymentStatus.TRANSFERRED}
    assert predecessors(PaymentStatus.PENDING) == frozenset()


def test_money_helpers():
    assert to_money(10.99) == Decimal("10.99")
    assert to_money("1.005") == Decimal("1.01")
    assert to_minor(Decimal("28.98"), "USD") == 2898
    assert to_minor(Decimal("500"), "JPY") == 500
    assert from_minor(2898, "usd") == Decimal("28.98")
    assert from_minor(500, "JPY") == Decimal("500.00")

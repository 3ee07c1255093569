from decimal import Decimal

import pytest

from domain.payment.entity import Payment, PaymentOperation, PaymentStatus
from infrastructure.memory import memory_uow_factory


def _payment(intent_id, **overrides):
    fields = dict(
        request_id="req_1",
        provider_intent_id=intent_id,
        customer_id="cus_requester",
        amount=Decimal("28.98"),
        currency="USD",
    )
    fields.update(overrides)
    return Payment.new(**fields)


@pytest.fixture
def uow_factory(store):
    return memory_uow_factory(store)


@pytest.mark.asyncio
async def test_list_by_status_pages(uow_factory):
    rows = [_payment(f"pi_mem_{i}") for i in range(3)]
    async with uow_factory() as uow:
        for row in rows:
            await uow.payments.create(row)
        await uow.payments.mark_authorized(rows[0].id, expected=[PaymentStatus.PENDING])

    async with uow_factory(readonly=True) as uow:
        pending = await uow.payments.list_by_status(PaymentStatus.PENDING)
        authorized = await uow.payments.list_by_status(PaymentStatus.AUTHORIZED)
        page = await uow.payments.list_by_status(PaymentStatus.PENDING, skip=1, limit=1)

    assert {p.id for p in pending} == {rows[1].id, rows[2].id}
    assert [p.id for p in authorized] == [rows[0].id]
    assert len(page) == 1


@pytest.mark.asyncio
async def test_mark_helpers_stamp_matching_timestamp(uow_factory):
    transferred = _payment("pi_mem_t", status=PaymentStatus.CAPTURED)
    failed = _payment("pi_mem_f", status=PaymentStatus.AUTHORIZED)
    async with uow_factory() as uow:
        await uow.payments.create(transferred)
        await uow.payments.create(failed)

        row = await uow.payments.mark_transferred(transferred.id, expected=[PaymentStatus.CAPTURED])
        assert row.status == PaymentStatus.TRANSFERRED
        assert row.transferred_at is not None
        assert row.failed_at is None

        row = await uow.payments.mark_failed(failed.id, expected=[PaymentStatus.AUTHORIZED], reason="card_declined")
        assert row.status == PaymentStatus.FAILED
        assert row.failure_reason == "card_declined"
        assert row.failed_at is not None

        # expected status no longer matches
        assert await uow.payments.mark_failed(failed.id, expected=[PaymentStatus.AUTHORIZED]) is None


@pytest.mark.asyncio
async def test_guarded_update_requires_held_claim(uow_factory):
    payment = _payment("pi_mem_c", status=PaymentStatus.AUTHORIZED)
    async with uow_factory() as uow:
        await uow.payments.create(payment)
        claimed = await uow.payments.claim(
            payment.id, PaymentOperation.CAPTURE, expected=[PaymentStatus.AUTHORIZED], idempotency_key="k1"
        )
        assert claimed.pending_operation == "capture"
        assert await uow.payments.claim(
            payment.id, PaymentOperation.CANCEL, expected=[PaymentStatus.AUTHORIZED]
        ) is None
        assert await uow.payments.mark_cancelled(
            payment.id, expected=[PaymentStatus.AUTHORIZED], operation=PaymentOperation.CANCEL
        ) is None
        row = await uow.payments.mark_captured(
            payment.id, expected=[PaymentStatus.AUTHORIZED], operation=PaymentOperation.CAPTURE
        )
    assert row.status == PaymentStatus.CAPTURED
    assert row.pending_operation is None
    assert row.pending_idempotency_key is None


@pytest.mark.asyncio
async def test_rollback_restores_store(uow_factory):
    payment = _payment("pi_mem_r")
    with pytest.raises(RuntimeError):
        async with uow_factory() as uow:
            await uow.payments.create(payment)
            raise RuntimeError("boom")

    async with uow_factory(readonly=True) as uow:
        assert await uow.payments.get_by_id(payment.id) is None


@pytest.mark.asyncio
async def test_returned_rows_are_copies(uow_factory):
    payment = _payment("pi_mem_copy")
    async with uow_factory() as uow:
        stored = await uow.payments.create(payment)
    stored.metadata["note"] = "local change"

    async with uow_factory(readonly=True) as uow:
        row = await uow.payments.get_by_id(payment.id)
    assert "note" not in row.metadata

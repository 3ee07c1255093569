import pytest

from application.services.webhook_service import PaymentWebhookService
from domain.payment.entity import PaymentStatus
from domain.payment.exceptions import PaymentSignatureError
from infrastructure.memory import memory_uow_factory


@pytest.fixture
def webhooks(gateway, store, notifier):
    return PaymentWebhookService(gateway, memory_uow_factory(store), notifier=notifier)


def _deliver(gateway, event_type, obj, **kwargs):
    payload = gateway.webhook_payload(event_type, obj, **kwargs)
    return payload, gateway.sign_webhook(payload)


@pytest.mark.asyncio
async def test_authorization_succeeded_moves_pending_to_authorized(engine, gateway, webhooks, notifier):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    payload, sig = _deliver(gateway, "payment_intent.amount_capturable_updated", {"id": payment.provider_intent_id})

    event = await webhooks.handle(payload, sig)
    assert event.kind == "authorization.succeeded"
    assert (await engine.get_payment_by_id(payment.id)).status == PaymentStatus.AUTHORIZED
    assert notifier.names == ["PaymentAuthorized"]

    # redelivery is acknowledged without a second transition
    await webhooks.handle(payload, sig)
    assert notifier.names == ["PaymentAuthorized"]


@pytest.mark.asyncio
async def test_payment_failed_records_reason(engine, gateway, webhooks):
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    payload, sig = _deliver(
        gateway,
        "payment_intent.payment_failed",
        {"id": payment.provider_intent_id, "last_payment_error": {"message": "insufficient funds"}},
    )
    await webhooks.handle(payload, sig)
    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.FAILED
    assert row.failure_reason == "insufficient funds"


@pytest.mark.asyncio
async def test_charge_refunded(engine, gateway, webhooks, make_captured):
    payment = await make_captured()
    payload, sig = _deliver(gateway, "charge.refunded", {"id": "ch_1", "payment_intent": payment.provider_intent_id})
    await webhooks.handle(payload, sig)
    row = await engine.get_payment_by_id(payment.id)
    assert row.status == PaymentStatus.REFUNDED
    assert row.refunded_at is not None


@pytest.mark.asyncio
async def test_illegal_transition_is_skipped(engine, gateway, webhooks, make_captured, notifier):
    payment = await make_captured()
    published = list(notifier.names)
    payload, sig = _deliver(gateway, "payment_intent.canceled", {"id": payment.provider_intent_id})
    await webhooks.handle(payload, sig)
    assert (await engine.get_payment_by_id(payment.id)).status == PaymentStatus.CAPTURED
    assert notifier.names == published


@pytest.mark.asyncio
async def test_unknown_intent_and_other_events_are_acknowledged(gateway, webhooks, store):
    payload, sig = _deliver(gateway, "payment_intent.succeeded", {"id": "pi_unknown"})
    await webhooks.handle(payload, sig)

    payload, sig = _deliver(gateway, "customer.created", {"id": "cus_1"})
    event = await webhooks.handle(payload, sig)
    assert event.kind == "other"
    assert store.payments == {}


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(gateway, webhooks):
    payload = gateway.webhook_payload("payment_intent.succeeded", {"id": "pi_1"})
    with pytest.raises(PaymentSignatureError):
        await webhooks.handle(payload, gateway.sign_webhook(payload, secret="whsec_other"))
    with pytest.raises(PaymentSignatureError):
        await webhooks.handle(payload, "")
    with pytest.raises(PaymentSignatureError):
        await webhooks.handle(payload, gateway.sign_webhook(payload, timestamp=1))


@pytest.mark.asyncio
async def test_webhook_before_engine_finalize_is_accepted(engine, gateway, webhooks, make_captured):
    payment = await make_captured("100.00")
    payload, sig = _deliver(gateway, "charge.refunded", {"id": "ch_1", "payment_intent": payment.provider_intent_id})

    original_refund = gateway.refund

    async def refund_then_webhook(req):
        result = await original_refund(req)
        await webhooks.handle(payload, sig)
        return result

    gateway.refund = refund_then_webhook
    refunded = await engine.refund_payment(payment.id, "30")
    assert refunded.status == PaymentStatus.REFUNDED
    rows = await engine.get_payments_by_request_id("req_1")
    assert sorted(r.amount for r in rows) == [30, 100]


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_webhook_transition(engine, gateway, store):
    class BrokenNotifier:
        async def notify(self, event):
            raise RuntimeError("sink down")

    webhooks = PaymentWebhookService(gateway, memory_uow_factory(store), notifier=BrokenNotifier())
    payment = await engine.authorize_payment("req_1", "28.98", "cus_requester")
    payload, sig = _deliver(gateway, "payment_intent.amount_capturable_updated", {"id": payment.provider_intent_id})

    event = await webhooks.handle(payload, sig)
    assert event.kind == "authorization.succeeded"
    assert (await engine.get_payment_by_id(payment.id)).status == PaymentStatus.AUTHORIZED

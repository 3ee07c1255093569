"""
Provider webhook application.

Verified notifications are normalized by the gateway adapter into a
`WebhookEvent.kind`; this service applies the matching forward transition to
the ledger row identified by the intent id, using the same compare-and-set
update as the engine. Redelivery is harmless: an event whose transition was
already applied, or is no longer legal, is logged and acknowledged.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from application.dtos.payments import WebhookEvent
from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger, payment_log_context
from domain.payment.entity import PaymentStatus, PaymentType, predecessors
from domain.payment.events import (
    PaymentAuthorizationFailed,
    PaymentAuthorized,
    PaymentCancelled,
    PaymentEvent,
    PaymentRefunded,
)


logger = get_logger(__name__)


# kind -> (target status, statuses the event may move from)
WEBHOOK_TRANSITIONS = {
    "authorization.succeeded": (PaymentStatus.AUTHORIZED, frozenset({PaymentStatus.PENDING})),
    "authorization.failed": (PaymentStatus.FAILED, predecessors(PaymentStatus.FAILED)),
    "authorization.canceled": (PaymentStatus.CANCELLED, predecessors(PaymentStatus.CANCELLED)),
    "charge.refunded": (PaymentStatus.REFUNDED, predecessors(PaymentStatus.REFUNDED)),
}

_EVENTS = {
    PaymentStatus.AUTHORIZED: PaymentAuthorized,
    PaymentStatus.FAILED: PaymentAuthorizationFailed,
    PaymentStatus.CANCELLED: PaymentCancelled,
    PaymentStatus.REFUNDED: PaymentRefunded,
}


class PaymentWebhookService:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: Callable[..., Any],
        *,
        notifier: Optional[PaymentNotifier] = None,
        secret: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._secret = secret

    async def handle(self, payload: bytes, signature: str) -> WebhookEvent:
        """校验签名并应用事件；签名错误抛出 PaymentSignatureError"""
        event = self.gateway.parse_webhook(payload, signature, self._secret)
        logger.info(
            "payment_webhook_parsed",
            provider=self.gateway.provider,
            event_type=event.type,
            event_id=event.id,
            kind=event.kind,
        )
        if event.kind not in WEBHOOK_TRANSITIONS or not event.intent_id:
            logger.info("payment_webhook_ignored", event_id=event.id, event_type=event.type)
            return event

        with payment_log_context(webhook_event_id=event.id, intent_id=event.intent_id):
            await self._apply(event)
        return event

    async def _apply(self, event: WebhookEvent) -> None:
        target, expected = WEBHOOK_TRANSITIONS[event.kind]
        async with self._uow_factory() as uow:
            payment = await uow.payments.get_by_provider_intent_id(event.intent_id)
            if payment is None or payment.type != PaymentType.DELIVERY_PAYMENT:
                logger.warning("payment_webhook_unknown_intent")
                return
            if payment.status == target:
                logger.info("payment_webhook_already_applied", payment_id=payment.id, status=target.value)
                return
            reason = event.failure_reason or event.type if target == PaymentStatus.FAILED else None
            updated = await uow.payments.update_status(
                payment.id, target, expected=expected, reason=reason
            )
            if updated is None:
                logger.warning(
                    "payment_webhook_transition_skipped",
                    payment_id=payment.id,
                    status=payment.status.value,
                    target=target.value,
                )
                return

        logger.info("payment_webhook_applied", payment_id=updated.id, status=target.value)
        await self._publish(_EVENTS[target], updated, reason)

    async def _publish(self, event_cls, payment, reason: Optional[str]) -> None:
        if self._notifier is None:
            return
        fields = dict(
            payment_id=payment.id,
            request_id=payment.request_id,
            amount=str(payment.amount),
            currency=payment.currency,
            provider_intent_id=payment.provider_intent_id,
        )
        event: PaymentEvent = (
            event_cls(**fields, reason=reason) if event_cls is PaymentAuthorizationFailed else event_cls(**fields)
        )
        try:
            await self._notifier.notify(event)
        except Exception:
            logger.error("payment_notification_failed", event_name=event.name, exc_info=True)

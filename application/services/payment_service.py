"""
Application service orchestrating the payment lifecycle.

The engine depends only on the PaymentGateway port, the ledger unit of work and
read-only request/user lookups. Gateway implementations are provided by
infrastructure and injected from the composition root.

Every provider-facing operation runs the same sequence:

1. load the row and check the operation's precondition (no provider call on failure);
2. claim the row with a compare-and-set write that commits before the call, so a
   concurrent caller for the same payment is rejected instead of reaching the provider;
3. call the provider with a deterministic idempotency key, bounded by a timeout;
4. write the terminal status with a second compare-and-set that requires the claim.

A timeout is an unknown outcome: nothing is written and the claim stays in place
until the row is reconciled (see `get_in_flight_payments`).
"""
from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

from application.dtos.payments import (
    CancelIntent,
    CaptureRequest,
    CreateIntent,
    PaymentIntent,
    RefundRequest,
    TransferRequest,
)
from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.provider_calls import call_provider
from core.logging_config import get_logger, payment_log_context
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    DomainValidationException,
    UserNotFoundException,
    require_identifier,
)
from domain.delivery.entity import DeliveryRequest
from domain.payment.cost import CostBreakdown, calculate_cost
from domain.payment.entity import (
    OPERATION_PRECONDITIONS,
    Payment,
    PaymentOperation,
    PaymentStatus,
    PaymentType,
)
from domain.payment.events import (
    PaymentAuthorizationFailed,
    PaymentAuthorized,
    PaymentCancelled,
    PaymentCaptured,
    PaymentCaptureFailed,
    PaymentEvent,
    PaymentRefunded,
    PaymentTransferred,
)
from domain.payment.exceptions import (
    DeliveryRequestNotFoundException,
    PaymentAlreadyExistsException,
    PaymentAuthorizationPendingException,
    PaymentNotFoundException,
    PaymentOperationInFlightException,
    PaymentPreconditionException,
    PaymentProviderError,
    PaymentProviderTimeoutError,
    PaymentStateConflictException,
    PayoutAccountMissingException,
)
from domain.payment.money import MoneyLike, to_money


logger = get_logger(__name__)


def _derive_idempotency_key(operation: str, *parts: Any) -> str:
    # Stable, reproducible key derived from business identifiers (no timestamp)
    base = "|".join([operation, *(str(p) for p in parts)])
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _event_fields(payment: Payment) -> dict:
    return {
        "payment_id": payment.id,
        "request_id": payment.request_id,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "provider_intent_id": payment.provider_intent_id,
    }


class PaymentEngine:
    """支付生命周期编排：授权 → 扣款 → 打款 / 退款，以及取消"""

    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: Callable[..., Any],
        *,
        notifier: Optional[PaymentNotifier] = None,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._settings = settings or payment_settings

    # ------------------------------------------------------------------ authorize

    async def authorize_payment(
        self,
        request_id: str,
        amount: MoneyLike,
        customer_id: str,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Payment:
        """
        创建渠道授权（手动扣款），渠道成功后才写入 PENDING 账本行

        同一幂等键的重试会拿到同一个渠道 intent，此时直接返回已有账本行。
        默认幂等键由 (customer, amount, currency, request) 派生：授权被拒后重新发起
        的新一次尝试必须传入新的 idempotency_key，否则会拿回已失败的账本行。
        """
        request_id = require_identifier(request_id, "request_id")
        customer_id = require_identifier(customer_id, "customer_id")
        amount = self._validate_amount(amount)
        currency = self._settings.currency
        await self._get_request(request_id)

        key = idempotency_key or _derive_idempotency_key(
            "authorize", customer_id, amount, currency, request_id
        )
        with payment_log_context(request_id=request_id, operation="authorize"):
            logger.info(
                "payment_authorize_request",
                customer_id=customer_id,
                amount=str(amount),
                currency=currency,
                provider=self.gateway.provider,
                idempotency_key=key,
            )
            try:
                intent = await self._call_provider(
                    "authorize",
                    self.gateway.create_intent,
                    CreateIntent(
                        amount=amount,
                        currency=currency,
                        customer_id=customer_id,
                        description=description,
                        idempotency_key=key,
                        metadata={"request_id": request_id},
                    ),
                )
            except PaymentProviderError as exc:
                logger.warning("payment_authorize_failed", error=exc.message, code=int(exc.code))
                raise

            metadata = {"client_secret": intent.client_secret} if intent.client_secret else {}
            payment = Payment.new(
                request_id=request_id,
                provider_intent_id=intent.intent_id,
                customer_id=customer_id,
                amount=amount,
                currency=currency,
                description=description,
                metadata=metadata,
            )
            try:
                async with self._uow_factory() as uow:
                    existing = await uow.payments.get_by_provider_intent_id(intent.intent_id)
                    if existing is not None:
                        logger.info("payment_authorize_replayed", payment_id=existing.id, intent_id=intent.intent_id)
                        return existing
                    payment = await uow.payments.create(payment)
            except PaymentAlreadyExistsException:
                # lost the race against a concurrent retry with the same key
                async with self._uow_factory(readonly=True) as uow:
                    existing = await uow.payments.get_by_provider_intent_id(intent.intent_id)
                if existing is None:
                    raise
                logger.info("payment_authorize_replayed", payment_id=existing.id, intent_id=intent.intent_id)
                return existing

            logger.info(
                "payment_authorize_response",
                payment_id=payment.id,
                intent_id=intent.intent_id,
                status=intent.status,
            )
            return payment

    async def confirm_authorization(self, payment_id: str) -> Payment:
        """
        根据渠道 intent 状态确认授权结果

        requires_capture → AUTHORIZED；渠道取消或授权失败 → FAILED；
        其余状态说明客户端尚未完成确认，抛出 PaymentAuthorizationPendingException。
        """
        operation = PaymentOperation.CONFIRM_AUTHORIZATION
        with payment_log_context(payment_id=payment_id, operation=operation.value):
            payment = await self._load(payment_id)
            payment.ensure_can(operation)
            intent = await self._call_provider(
                operation.value, self.gateway.retrieve_intent, payment.provider_intent_id
            )
            if intent.status == "requires_capture":
                updated = await self._commit_transition(payment, operation, PaymentStatus.AUTHORIZED)
                logger.info("payment_authorized", intent_id=intent.intent_id)
                await self._publish(PaymentAuthorized(**_event_fields(updated)))
                return updated

            if intent.status == "canceled" or (
                intent.status == "requires_payment_method" and intent.failure_reason
            ):
                reason = intent.failure_reason or "authorization canceled by provider"
                updated = await self._commit_transition(
                    payment, operation, PaymentStatus.FAILED, reason=reason
                )
                logger.warning("payment_authorization_failed", intent_id=intent.intent_id, reason=reason)
                await self._publish(PaymentAuthorizationFailed(**_event_fields(updated), reason=reason))
                return updated

            logger.info("payment_authorization_pending", intent_id=intent.intent_id, provider_status=intent.status)
            raise PaymentAuthorizationPendingException(payment.id, intent.status)

    # ------------------------------------------------------------------ capture / cancel

    async def capture_payment(self, payment_id: str) -> Payment:
        """
        扣款：成功 → CAPTURED；渠道失败 → 本地写入 FAILED 后再抛出渠道异常
        """
        operation = PaymentOperation.CAPTURE
        with payment_log_context(payment_id=payment_id, operation=operation.value):
            payment = await self._load(payment_id)
            payment.ensure_can(operation)
            key = _derive_idempotency_key(
                operation.value, payment.id, payment.provider_intent_id, payment.amount
            )
            payment = await self._claim(payment, operation, key)
            logger.info("payment_capture_request", amount=str(payment.amount), idempotency_key=key)
            try:
                await self._call_provider(
                    operation.value,
                    self.gateway.capture,
                    CaptureRequest(
                        intent_id=payment.provider_intent_id,
                        amount=payment.amount,
                        currency=payment.currency,
                        idempotency_key=key,
                    ),
                )
            except PaymentProviderTimeoutError:
                raise
            except PaymentProviderError as exc:
                logger.warning("payment_capture_failed", error=exc.message, code=int(exc.code))
                failed = await self._commit_transition(
                    payment, operation, PaymentStatus.FAILED, reason=exc.message, claimed=True
                )
                await self._publish(PaymentCaptureFailed(**_event_fields(failed), reason=exc.message))
                raise

            captured = await self._commit_transition(
                payment, operation, PaymentStatus.CAPTURED, claimed=True
            )
            logger.info("payment_captured")
            await self._publish(PaymentCaptured(**_event_fields(captured)))
            return captured

    async def cancel_payment(self, payment_id: str, reason: Optional[str] = None) -> Payment:
        """撤销授权：成功 → CANCELLED；渠道失败时行状态不变"""
        operation = PaymentOperation.CANCEL
        with payment_log_context(payment_id=payment_id, operation=operation.value):
            payment = await self._load(payment_id)
            payment.ensure_can(operation)
            key = _derive_idempotency_key(operation.value, payment.id, payment.provider_intent_id)
            payment = await self._claim(payment, operation, key)
            logger.info("payment_cancel_request", idempotency_key=key)
            await self._call_or_release(
                payment,
                operation,
                self.gateway.cancel_intent,
                CancelIntent(intent_id=payment.provider_intent_id, reason=reason, idempotency_key=key),
            )
            cancelled = await self._commit_transition(
                payment, operation, PaymentStatus.CANCELLED, claimed=True
            )
            logger.info("payment_cancelled")
            await self._publish(PaymentCancelled(**_event_fields(cancelled)))
            return cancelled

    # ------------------------------------------------------------------ refund / transfer

    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[MoneyLike] = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        退款（全额或部分）

        原始行变为 REFUNDED，金额保持不变；部分退款额外追加一条 REFUND 类型账本行。
        """
        operation = PaymentOperation.REFUND
        with payment_log_context(payment_id=payment_id, operation=operation.value):
            payment = await self._load(payment_id)
            payment.ensure_can(operation)
            refund_amount = payment.amount if amount is None else to_money(amount)
            if refund_amount <= 0 or refund_amount > payment.amount:
                raise DomainValidationException(
                    f"Refund amount must be greater than 0 and at most {payment.amount}: {refund_amount}",
                    field="amount",
                )
            key = _derive_idempotency_key(
                operation.value, payment.id, payment.provider_intent_id, refund_amount
            )
            payment = await self._claim(payment, operation, key)
            logger.info("payment_refund_request", amount=str(refund_amount), idempotency_key=key)
            result = await self._call_or_release(
                payment,
                operation,
                self.gateway.refund,
                RefundRequest(
                    intent_id=payment.provider_intent_id,
                    amount=refund_amount,
                    currency=payment.currency,
                    reason=reason,
                    idempotency_key=key,
                    metadata={"payment_id": payment.id},
                ),
            )

            refund_row = None
            if refund_amount < payment.amount:
                refund_row = Payment.new(
                    request_id=payment.request_id,
                    provider_intent_id=result.refund_id,
                    customer_id=payment.customer_id,
                    amount=refund_amount,
                    currency=payment.currency,
                    type=PaymentType.REFUND,
                    status=PaymentStatus.REFUNDED,
                    description=reason or f"Partial refund of payment {payment.id}",
                    metadata={"original_payment_id": payment.id},
                )
            refunded = await self._commit_transition(
                payment, operation, PaymentStatus.REFUNDED, claimed=True, derived=refund_row
            )
            logger.info(
                "payment_refunded",
                refund_id=result.refund_id,
                amount=str(refund_amount),
                partial=refund_row is not None,
            )
            await self._publish(
                PaymentRefunded(
                    **_event_fields(refunded),
                    refund_id=result.refund_id,
                    refund_amount=str(refund_amount),
                    refund_row_id=refund_row.id if refund_row else None,
                )
            )
            return refunded

    async def transfer_to_traveler(self, payment_id: str, traveler_id: str) -> Payment:
        """
        向旅行者打款：金额为配送费（不含商品费用），成功后追加 PAYOUT 账本行
        """
        operation = PaymentOperation.TRANSFER
        traveler_id = require_identifier(traveler_id, "traveler_id")
        with payment_log_context(payment_id=payment_id, operation=operation.value, traveler_id=traveler_id):
            payment = await self._load(payment_id)
            payment.ensure_can(operation)
            async with self._uow_factory(readonly=True) as uow:
                traveler = await uow.users.get_by_id(traveler_id)
            if traveler is None:
                raise UserNotFoundException(traveler_id)
            if not traveler.payout_account_id:
                raise PayoutAccountMissingException(traveler_id, payment.id)

            request = await self._get_request(payment.request_id)
            payout = request.delivery_fee
            if payout <= 0 or payout > payment.amount:
                raise PaymentPreconditionException(
                    f"Delivery fee {payout} cannot be paid out of payment {payment.id}",
                    payment_id=payment.id,
                    status=payment.status.value,
                    operation=operation.value,
                )

            key = _derive_idempotency_key(operation.value, payment.id, traveler_id, payout)
            payment = await self._claim(payment, operation, key)
            logger.info(
                "payment_transfer_request",
                amount=str(payout),
                destination=traveler.payout_account_id,
                idempotency_key=key,
            )
            result = await self._call_or_release(
                payment,
                operation,
                self.gateway.transfer,
                TransferRequest(
                    amount=payout,
                    currency=payment.currency,
                    destination=traveler.payout_account_id,
                    source_intent_id=payment.provider_intent_id,
                    transfer_group=payment.request_id,
                    idempotency_key=key,
                    metadata={"payment_id": payment.id, "traveler_id": traveler_id},
                ),
            )

            payout_row = Payment.new(
                request_id=payment.request_id,
                provider_intent_id=result.transfer_id,
                customer_id=traveler.payout_account_id,
                amount=payout,
                currency=payment.currency,
                type=PaymentType.PAYOUT,
                status=PaymentStatus.TRANSFERRED,
                description=f"Payout to traveler {traveler_id}",
                metadata={"original_payment_id": payment.id, "traveler_id": traveler_id},
            )
            transferred = await self._commit_transition(
                payment, operation, PaymentStatus.TRANSFERRED, claimed=True, derived=payout_row
            )
            logger.info("payment_transferred", transfer_id=result.transfer_id, amount=str(payout))
            await self._publish(
                PaymentTransferred(
                    **_event_fields(transferred),
                    transfer_id=result.transfer_id,
                    traveler_id=traveler_id,
                    payout_amount=str(payout),
                    payout_row_id=payout_row.id,
                )
            )
            return transferred

    # ------------------------------------------------------------------ read side

    async def calculate_total_cost(self, request_id: str, tip: MoneyLike = Decimal("0")) -> CostBreakdown:
        request = await self._get_request(require_identifier(request_id, "request_id"))
        return calculate_cost(request.items, request.delivery_fee, tip)

    async def get_payment_by_id(self, payment_id: str) -> Payment:
        return await self._load(payment_id)

    async def get_payments_by_request_id(self, request_id: str) -> List[Payment]:
        request = await self._get_request(require_identifier(request_id, "request_id"))
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payments.list_by_request(request.id)

    async def get_payments_by_customer_id(self, customer_id: str) -> List[Payment]:
        customer_id = require_identifier(customer_id, "customer_id")
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payments.list_by_customer(customer_id)

    async def get_in_flight_payments(self) -> List[Payment]:
        """持有在途标记的账本行：渠道结果未知，需按幂等键向渠道对账"""
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payments.list_in_flight()

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        intent_id = require_identifier(intent_id, "intent_id")
        return await self._call_provider("retrieve", self.gateway.retrieve_intent, intent_id)

    # ------------------------------------------------------------------ helpers

    def _validate_amount(self, amount: MoneyLike) -> Decimal:
        value = to_money(amount)
        limits = self._settings.limits
        if value <= 0:
            raise DomainValidationException(f"Payment amount must be greater than 0: {value}", field="amount")
        if value < limits.min_amount or value > limits.max_amount:
            raise DomainValidationException(
                f"Payment amount must be between {limits.min_amount} and {limits.max_amount}: {value}",
                field="amount",
            )
        return value

    async def _get_request(self, request_id: str) -> DeliveryRequest:
        async with self._uow_factory(readonly=True) as uow:
            request = await uow.requests.get_by_id(request_id)
        if request is None:
            raise DeliveryRequestNotFoundException(request_id)
        return request

    async def _load(self, payment_id: str) -> Payment:
        payment_id = require_identifier(payment_id, "payment_id")
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payments.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id)
        return payment

    async def _claim(self, payment: Payment, operation: PaymentOperation, key: str) -> Payment:
        async with self._uow_factory() as uow:
            claimed = await uow.payments.claim(
                payment.id,
                operation,
                expected=OPERATION_PRECONDITIONS[operation],
                idempotency_key=key,
            )
            if claimed is None:
                current = await uow.payments.get_by_id(payment.id)
                if current is None:
                    raise PaymentNotFoundException(payment.id)
                logger.info(
                    "payment_claim_rejected",
                    status=current.status.value,
                    pending_operation=current.pending_operation,
                )
                # raises the precondition or in-flight error describing the current row
                current.ensure_can(operation)
                raise PaymentOperationInFlightException(payment.id, current.pending_operation, operation.value)
        return claimed

    async def _call_provider(self, operation: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        return await call_provider(
            self.gateway.provider, operation, self._settings.timeouts.total, func, *args
        )

    async def _call_or_release(
        self,
        payment: Payment,
        operation: PaymentOperation,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """渠道失败时释放在途标记并保持原状态；超时则保留标记等待对账"""
        try:
            return await self._call_provider(operation.value, func, *args)
        except PaymentProviderTimeoutError:
            raise
        except PaymentProviderError as exc:
            logger.warning(f"payment_{operation.value}_failed", error=exc.message, code=int(exc.code))
            try:
                async with self._uow_factory() as uow:
                    await uow.payments.release(payment.id, operation)
            except Exception:
                logger.error("payment_release_failed", exc_info=True)
            raise

    async def _commit_transition(
        self,
        payment: Payment,
        operation: PaymentOperation,
        target: PaymentStatus,
        *,
        reason: Optional[str] = None,
        claimed: bool = False,
        derived: Optional[Payment] = None,
    ) -> Payment:
        """
        CAS 写入目标状态（claimed 时要求在途标记仍由本操作持有），
        并在同一事务中追加派生账本行。

        未命中时若行已处于目标状态（例如渠道 webhook 先到），视为已完成。
        """
        try:
            async with self._uow_factory() as uow:
                updated = await uow.payments.update_status(
                    payment.id,
                    target,
                    expected=OPERATION_PRECONDITIONS[operation],
                    operation=operation if claimed else None,
                    reason=reason,
                )
                if updated is None:
                    current = await uow.payments.get_by_id(payment.id)
                    if current is None or current.status != target:
                        raise PaymentStateConflictException(
                            payment.id,
                            operation.value,
                            current.status.value if current else None,
                        )
                    logger.info("payment_transition_already_applied", status=target.value)
                    updated = current
                if derived is not None:
                    if await uow.payments.get_by_provider_intent_id(derived.provider_intent_id) is None:
                        await uow.payments.create(derived)
        except Exception:
            logger.error("payment_finalize_failed", target=target.value, exc_info=True)
            raise
        return updated

    async def _publish(self, event: PaymentEvent) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(event)
        except Exception:
            # ledger write is already committed
            logger.error("payment_notification_failed", event_name=event.name, exc_info=True)

"""
支付仓储实现 - 使用SQLAlchemy实现账本数据访问

状态更新使用条件 UPDATE（WHERE status IN (...)），通过 rowcount 判断是否命中，
同一行的并发写入只有一个能成功。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import Payment, PaymentOperation, PaymentStatus, PaymentType
from domain.payment.exceptions import PaymentAlreadyExistsException
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel


logger = get_logger(__name__)

# 目标状态 -> 对应的迁移时间戳列
_TIMESTAMP_COLUMNS = {
    PaymentStatus.CAPTURED: "captured_at",
    PaymentStatus.TRANSFERRED: "transferred_at",
    PaymentStatus.REFUNDED: "refunded_at",
    PaymentStatus.FAILED: "failed_at",
}


class SQLAlchemyPaymentRepository(PaymentRepository):
    """账本仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            request_id=model.request_id,
            provider_intent_id=model.provider_intent_id,
            customer_id=model.customer_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            type=PaymentType(model.type),
            description=model.description,
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
            captured_at=model.captured_at,
            transferred_at=model.transferred_at,
            refunded_at=model.refunded_at,
            failed_at=model.failed_at,
            failure_reason=model.failure_reason,
            pending_operation=model.pending_operation,
            pending_idempotency_key=model.pending_idempotency_key,
            pending_since=model.pending_since,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            request_id=entity.request_id,
            provider_intent_id=entity.provider_intent_id,
            customer_id=entity.customer_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            type=entity.type.value,
            description=entity.description,
            extra_metadata=entity.metadata,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            captured_at=entity.captured_at,
            transferred_at=entity.transferred_at,
            refunded_at=entity.refunded_at,
            failed_at=entity.failed_at,
            failure_reason=entity.failure_reason,
            pending_operation=entity.pending_operation,
            pending_idempotency_key=entity.pending_idempotency_key,
            pending_since=entity.pending_since,
        )

    async def create(self, payment: Payment) -> Payment:
        """追加账本行"""
        try:
            db_payment = self._to_model(payment)
            self.session.add(db_payment)
            await self.session.flush()
            await self.session.refresh(db_payment)
        except IntegrityError as e:
            await self.session.rollback()
            if "provider_intent_id" in str(e).lower():
                logger.warning(
                    "payment_create_conflict",
                    provider_intent_id=payment.provider_intent_id,
                )
                raise PaymentAlreadyExistsException(payment.provider_intent_id) from e
            raise
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            request_id=db_payment.request_id,
            type=db_payment.type,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)

    async def _one(self, *criteria) -> Optional[Payment]:
        # populate_existing: CAS 更新绕过了会话的身份映射，必须重新加载
        result = await self.session.execute(
            select(PaymentModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def _many(self, query) -> List[Payment]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [self._to_entity(p) for p in result.scalars().all()]

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        return await self._one(PaymentModel.id == payment_id)

    async def get_by_provider_intent_id(self, provider_intent_id: str) -> Optional[Payment]:
        return await self._one(PaymentModel.provider_intent_id == provider_intent_id)

    async def list_by_request(self, request_id: str) -> List[Payment]:
        return await self._many(
            select(PaymentModel)
            .where(PaymentModel.request_id == request_id)
            .order_by(PaymentModel.created_at.asc())
        )

    async def list_by_customer(self, customer_id: str) -> List[Payment]:
        return await self._many(
            select(PaymentModel)
            .where(PaymentModel.customer_id == customer_id)
            .order_by(PaymentModel.created_at.desc())
        )

    async def list_by_status(
        self,
        status: PaymentStatus,
        skip: int = 0,
        limit: int = 100
    ) -> List[Payment]:
        """根据状态获取账本行"""
        return await self._many(
            select(PaymentModel)
            .where(PaymentModel.status == PaymentStatus(status).value)
            .order_by(PaymentModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )

    async def list_in_flight(self) -> List[Payment]:
        return await self._many(
            select(PaymentModel)
            .where(PaymentModel.pending_operation.is_not(None))
            .order_by(PaymentModel.pending_since.asc())
        )

    async def claim(
        self,
        payment_id: str,
        operation: PaymentOperation,
        *,
        expected: Iterable[PaymentStatus],
        idempotency_key: Optional[str] = None,
    ) -> Optional[Payment]:
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status.in_([PaymentStatus(s).value for s in expected]),
                PaymentModel.pending_operation.is_(None),
            )
            .values(
                pending_operation=PaymentOperation(operation).value,
                pending_idempotency_key=idempotency_key,
                pending_since=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("payment_claim_miss", payment_id=payment_id, operation=PaymentOperation(operation).value)
            return None
        return await self.get_by_id(payment_id)

    async def release(self, payment_id: str, operation: PaymentOperation) -> Optional[Payment]:
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.pending_operation == PaymentOperation(operation).value,
            )
            .values(
                pending_operation=None,
                pending_idempotency_key=None,
                pending_since=None,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        logger.info("payment_claim_released", payment_id=payment_id, operation=PaymentOperation(operation).value)
        return await self.get_by_id(payment_id)

    async def update_status(
        self,
        payment_id: str,
        target: PaymentStatus,
        *,
        expected: Iterable[PaymentStatus],
        operation: Optional[PaymentOperation] = None,
        reason: Optional[str] = None,
    ) -> Optional[Payment]:
        target = PaymentStatus(target)
        now = datetime.now(timezone.utc)
        values = {
            "status": target.value,
            "updated_at": now,
            "pending_operation": None,
            "pending_idempotency_key": None,
            "pending_since": None,
        }
        column = _TIMESTAMP_COLUMNS.get(target)
        if column:
            values[column] = now
        if target == PaymentStatus.FAILED:
            values["failure_reason"] = reason

        stmt = update(PaymentModel).where(
            PaymentModel.id == payment_id,
            PaymentModel.status.in_([PaymentStatus(s).value for s in expected]),
        )
        if operation is not None:
            stmt = stmt.where(PaymentModel.pending_operation == PaymentOperation(operation).value)
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("payment_cas_miss", payment_id=payment_id, target=target.value)
            return None

        logger.info("payment_status_updated", payment_id=payment_id, status=target.value)
        return await self.get_by_id(payment_id)

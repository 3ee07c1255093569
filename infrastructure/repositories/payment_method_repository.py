"""
支付方式仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.payment_method import PaymentMethod
from domain.payment.repository import PaymentMethodRepository
from infrastructure.models.payment import PaymentMethodModel


logger = get_logger(__name__)


class SQLAlchemyPaymentMethodRepository(PaymentMethodRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentMethodModel) -> PaymentMethod:
        return PaymentMethod(
            id=model.id,
            user_id=model.user_id,
            provider_method_id=model.provider_method_id,
            type=model.type,
            brand=model.brand,
            last_four=model.last_four,
            exp_month=model.exp_month,
            exp_year=model.exp_year,
            is_default=bool(model.is_default),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, method: PaymentMethod) -> PaymentMethod:
        db_method = PaymentMethodModel(
            id=method.id,
            user_id=method.user_id,
            provider_method_id=method.provider_method_id,
            type=method.type,
            brand=method.brand,
            last_four=method.last_four,
            exp_month=method.exp_month,
            exp_year=method.exp_year,
            is_default=method.is_default,
            created_at=method.created_at,
            updated_at=method.updated_at,
        )
        self.session.add(db_method)
        await self.session.flush()
        await self.session.refresh(db_method)
        return self._to_entity(db_method)

    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        db_method = await self.session.get(PaymentMethodModel, method_id, populate_existing=True)
        return self._to_entity(db_method) if db_method else None

    async def get_by_provider_method_id(
        self, user_id: str, provider_method_id: str
    ) -> Optional[PaymentMethod]:
        result = await self.session.execute(
            select(PaymentMethodModel).where(
                PaymentMethodModel.user_id == user_id,
                PaymentMethodModel.provider_method_id == provider_method_id,
            )
        )
        db_method = result.scalar_one_or_none()
        return self._to_entity(db_method) if db_method else None

    async def list_by_user(self, user_id: str) -> List[PaymentMethod]:
        result = await self.session.execute(
            select(PaymentMethodModel)
            .where(PaymentMethodModel.user_id == user_id)
            .order_by(PaymentMethodModel.is_default.desc(), PaymentMethodModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def set_default(self, user_id: str, method_id: str) -> Optional[PaymentMethod]:
        now = datetime.now(timezone.utc)
        await self.session.execute(
            update(PaymentMethodModel)
            .where(PaymentMethodModel.user_id == user_id, PaymentMethodModel.id != method_id)
            .values(is_default=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            update(PaymentMethodModel)
            .where(PaymentMethodModel.user_id == user_id, PaymentMethodModel.id == method_id)
            .values(is_default=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await self.get_by_id(method_id)

    async def delete(self, method_id: str) -> bool:
        result = await self.session.execute(
            delete(PaymentMethodModel).where(PaymentMethodModel.id == method_id)
        )
        deleted = result.rowcount == 1
        if deleted:
            logger.info("payment_method_deleted", method_id=method_id)
        return deleted

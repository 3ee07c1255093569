"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            email=model.email,
            full_name=model.full_name,
            customer_id=model.customer_id,
            payout_account_id=model.payout_account_id,
        )

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        db_user = await self.session.get(UserModel, user_id, populate_existing=True)
        return self._to_entity(db_user) if db_user else None

    async def update_customer_id(self, user_id: str, customer_id: str) -> Optional[User]:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(customer_id=customer_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        logger.info("user_customer_id_updated", user_id=user_id)
        return await self.get_by_id(user_id)

"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import get_session_factory
from infrastructure.repositories.delivery_request_repository import SQLAlchemyDeliveryRequestRepository
from infrastructure.repositories.payment_method_repository import SQLAlchemyPaymentMethodRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRepository
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        await super().__aenter__()
        if self.session is None:
            factory = self._session_factory or get_session_factory()
            self.session = factory()
        self.payments = SQLAlchemyPaymentRepository(self.session)
        self.payment_methods = SQLAlchemyPaymentMethodRepository(self.session)
        self.users = SQLAlchemyUserRepository(self.session)
        self.requests = SQLAlchemyDeliveryRequestRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.payments = None  # type: ignore[assignment]
            self.payment_methods = None  # type: ignore[assignment]
            self.users = None  # type: ignore[assignment]
            self.requests = None  # type: ignore[assignment]

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def sqlalchemy_uow_factory(session_factory: Optional[Callable[[], AsyncSession]] = None):
    """返回 `uow_factory(readonly=False)` 形式的工厂，供应用服务使用"""

    def factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return factory

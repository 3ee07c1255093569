"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.delivery.repository import DeliveryRequestRepository
from domain.payment.repository import PaymentMethodRepository, PaymentRepository
from domain.user.repository import UserRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    payments: PaymentRepository
    payment_methods: PaymentMethodRepository
    users: UserRepository
    requests: DeliveryRequestRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.payments = None  # type: ignore[assignment]
        self.payment_methods = None  # type: ignore[assignment]
        self.users = None  # type: ignore[assignment]
        self.requests = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        self._committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...

"""
支付仓储接口 - 账本存储的抽象契约

状态更新全部是带预期状态的比较并设置（CAS）：一次原子的单行更新，
未命中（状态不符或在途标记不符）时返回 None，由调用方决定如何处理。
仓储本身不判断迁移是否合法，合法性由引擎传入的 expected 决定。
没有删除操作：账本行只追加、不删除。
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .entity import Payment, PaymentOperation, PaymentStatus
from .payment_method import PaymentMethod


class PaymentRepository(ABC):
    """账本仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """追加账本行"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_provider_intent_id(self, provider_intent_id: str) -> Optional[Payment]:
        """根据渠道句柄（intent / refund / transfer id）获取账本行"""
        pass

    @abstractmethod
    async def list_by_request(self, request_id: str) -> List[Payment]:
        """按创建时间升序返回某个配送请求的所有账本行"""
        pass

    @abstractmethod
    async def list_by_customer(self, customer_id: str) -> List[Payment]:
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: PaymentStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Payment]:
        pass

    @abstractmethod
    async def list_in_flight(self) -> List[Payment]:
        """返回持有在途标记的账本行（渠道结果未知，需要对账）"""
        pass

    @abstractmethod
    async def claim(
        self,
        payment_id: str,
        operation: PaymentOperation,
        *,
        expected: Iterable[PaymentStatus],
        idempotency_key: Optional[str] = None,
    ) -> Optional[Payment]:
        """状态在 expected 内且无在途标记时写入在途标记"""
        pass

    @abstractmethod
    async def release(self, payment_id: str, operation: PaymentOperation) -> Optional[Payment]:
        """清除由 operation 持有的在途标记，状态不变"""
        pass

    @abstractmethod
    async def update_status(
        self,
        payment_id: str,
        target: PaymentStatus,
        *,
        expected: Iterable[PaymentStatus],
        operation: Optional[PaymentOperation] = None,
        reason: Optional[str] = None,
    ) -> Optional[Payment]:
        """
        CAS 状态更新：写入目标状态与对应时间戳并清除在途标记

        operation 不为空时还要求该操作的在途标记仍被持有。
        """
        pass

    async def mark_authorized(self, payment_id: str, *, expected, operation=None) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.AUTHORIZED, expected=expected, operation=operation
        )

    async def mark_captured(self, payment_id: str, *, expected, operation=None) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.CAPTURED, expected=expected, operation=operation
        )

    async def mark_transferred(self, payment_id: str, *, expected, operation=None) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.TRANSFERRED, expected=expected, operation=operation
        )

    async def mark_refunded(self, payment_id: str, *, expected, operation=None) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.REFUNDED, expected=expected, operation=operation
        )

    async def mark_failed(
        self, payment_id: str, *, expected, reason: Optional[str] = None, operation=None
    ) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.FAILED, expected=expected, operation=operation, reason=reason
        )

    async def mark_cancelled(self, payment_id: str, *, expected, operation=None) -> Optional[Payment]:
        return await self.update_status(
            payment_id, PaymentStatus.CANCELLED, expected=expected, operation=operation
        )


class PaymentMethodRepository(ABC):
    """支付方式仓储抽象接口"""

    @abstractmethod
    async def create(self, method: PaymentMethod) -> PaymentMethod:
        pass

    @abstractmethod
    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        pass

    @abstractmethod
    async def get_by_provider_method_id(
        self, user_id: str, provider_method_id: str
    ) -> Optional[PaymentMethod]:
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str) -> List[PaymentMethod]:
        """默认支付方式在前，其余按创建时间倒序"""
        pass

    @abstractmethod
    async def set_default(self, user_id: str, method_id: str) -> Optional[PaymentMethod]:
        """将 method_id 设为默认，并取消该用户其他支付方式的默认标记"""
        pass

    @abstractmethod
    async def delete(self, method_id: str) -> bool:
        pass

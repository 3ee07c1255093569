"""
进程内存实现 - 账本、支付方式、用户与配送请求

用于测试和本地运行。与 SQLAlchemy 实现遵守同一套 CAS 契约：
存取时做深拷贝，调用方拿到的实体修改不会影响存储。
仓储方法内部没有 await 点，单次调用在事件循环上是原子的。
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.delivery.entity import DeliveryRequest
from domain.delivery.repository import DeliveryRequestRepository
from domain.payment.entity import Payment, PaymentOperation, PaymentStatus
from domain.payment.exceptions import PaymentAlreadyExistsException
from domain.payment.payment_method import PaymentMethod
from domain.payment.repository import PaymentMethodRepository, PaymentRepository
from domain.user.entity import User
from domain.user.repository import UserRepository


logger = get_logger(__name__)

_TIMESTAMP_FIELDS = {
    PaymentStatus.CAPTURED: "captured_at",
    PaymentStatus.TRANSFERRED: "transferred_at",
    PaymentStatus.REFUNDED: "refunded_at",
    PaymentStatus.FAILED: "failed_at",
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class InMemoryStore:
    """所有内存仓储共享的数据"""
    payments: Dict[str, Payment] = field(default_factory=dict)
    payment_methods: Dict[str, PaymentMethod] = field(default_factory=dict)
    users: Dict[str, User] = field(default_factory=dict)
    requests: Dict[str, DeliveryRequest] = field(default_factory=dict)

    def add_user(self, user: User) -> User:
        self.users[user.id] = copy.deepcopy(user)
        return user

    def add_request(self, request: DeliveryRequest) -> DeliveryRequest:
        self.requests[request.id] = copy.deepcopy(request)
        return request

    def snapshot(self) -> dict:
        return {
            "payments": copy.deepcopy(self.payments),
            "payment_methods": copy.deepcopy(self.payment_methods),
            "users": copy.deepcopy(self.users),
        }

    def restore(self, snapshot: dict) -> None:
        self.payments = snapshot["payments"]
        self.payment_methods = snapshot["payment_methods"]
        self.users = snapshot["users"]


class InMemoryPaymentRepository(PaymentRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    @property
    def _rows(self) -> Dict[str, Payment]:
        return self._store.payments

    async def create(self, payment: Payment) -> Payment:
        if payment.id in self._rows:
            raise ValueError(f"Payment {payment.id} already stored")
        if any(p.provider_intent_id == payment.provider_intent_id for p in self._rows.values()):
            raise PaymentAlreadyExistsException(payment.provider_intent_id)
        self._rows[payment.id] = copy.deepcopy(payment)
        logger.info(
            "payment_created",
            payment_id=payment.id,
            request_id=payment.request_id,
            type=payment.type.value,
            status=payment.status.value,
        )
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        payment = self._rows.get(payment_id)
        return copy.deepcopy(payment) if payment else None

    async def get_by_provider_intent_id(self, provider_intent_id: str) -> Optional[Payment]:
        for payment in self._rows.values():
            if payment.provider_intent_id == provider_intent_id:
                return copy.deepcopy(payment)
        return None

    def _select(self, predicate, *, reverse: bool) -> List[Payment]:
        rows = [p for p in self._rows.values() if predicate(p)]
        rows.sort(key=lambda p: p.created_at or _EPOCH, reverse=reverse)
        return [copy.deepcopy(p) for p in rows]

    async def list_by_request(self, request_id: str) -> List[Payment]:
        return self._select(lambda p: p.request_id == request_id, reverse=False)

    async def list_by_customer(self, customer_id: str) -> List[Payment]:
        return self._select(lambda p: p.customer_id == customer_id, reverse=True)

    async def list_by_status(self, status: PaymentStatus, skip: int = 0, limit: int = 100) -> List[Payment]:
        status = PaymentStatus(status)
        return self._select(lambda p: p.status == status, reverse=True)[skip:skip + limit]

    async def list_in_flight(self) -> List[Payment]:
        rows = [p for p in self._rows.values() if p.pending_operation]
        rows.sort(key=lambda p: p.pending_since or _EPOCH)
        return [copy.deepcopy(p) for p in rows]

    async def claim(
        self,
        payment_id: str,
        operation: PaymentOperation,
        *,
        expected: Iterable[PaymentStatus],
        idempotency_key: Optional[str] = None,
    ) -> Optional[Payment]:
        payment = self._rows.get(payment_id)
        if payment is None or payment.status not in set(expected) or payment.pending_operation:
            logger.info("payment_claim_miss", payment_id=payment_id, operation=PaymentOperation(operation).value)
            return None
        payment.claim(operation, idempotency_key)
        return copy.deepcopy(payment)

    async def release(self, payment_id: str, operation: PaymentOperation) -> Optional[Payment]:
        payment = self._rows.get(payment_id)
        if payment is None or payment.pending_operation != PaymentOperation(operation).value:
            return None
        payment.release()
        logger.info("payment_claim_released", payment_id=payment_id, operation=PaymentOperation(operation).value)
        return copy.deepcopy(payment)

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
        payment = self._rows.get(payment_id)
        if (
            payment is None
            or payment.status not in set(expected)
            or (operation is not None and payment.pending_operation != PaymentOperation(operation).value)
        ):
            logger.info("payment_cas_miss", payment_id=payment_id, target=target.value)
            return None

        now = datetime.now(timezone.utc)
        payment.status = target
        column = _TIMESTAMP_FIELDS.get(target)
        if column:
            setattr(payment, column, now)
        if target == PaymentStatus.FAILED:
            payment.failure_reason = reason
        payment.pending_operation = None
        payment.pending_idempotency_key = None
        payment.pending_since = None
        payment.updated_at = now
        logger.info("payment_status_updated", payment_id=payment_id, status=target.value)
        return copy.deepcopy(payment)


class InMemoryPaymentMethodRepository(PaymentMethodRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def create(self, method: PaymentMethod) -> PaymentMethod:
        self._store.payment_methods[method.id] = copy.deepcopy(method)
        return copy.deepcopy(method)

    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        method = self._store.payment_methods.get(method_id)
        return copy.deepcopy(method) if method else None

    async def get_by_provider_method_id(self, user_id: str, provider_method_id: str) -> Optional[PaymentMethod]:
        for method in self._store.payment_methods.values():
            if method.user_id == user_id and method.provider_method_id == provider_method_id:
                return copy.deepcopy(method)
        return None

    async def list_by_user(self, user_id: str) -> List[PaymentMethod]:
        methods = [m for m in self._store.payment_methods.values() if m.user_id == user_id]
        methods.sort(key=lambda m: m.created_at or _EPOCH, reverse=True)
        methods.sort(key=lambda m: not m.is_default)
        return [copy.deepcopy(m) for m in methods]

    async def set_default(self, user_id: str, method_id: str) -> Optional[PaymentMethod]:
        target = self._store.payment_methods.get(method_id)
        if target is None or target.user_id != user_id:
            return None
        now = datetime.now(timezone.utc)
        for method in self._store.payment_methods.values():
            if method.user_id == user_id:
                method.is_default = method.id == method_id
                method.updated_at = now
        return copy.deepcopy(target)

    async def delete(self, method_id: str) -> bool:
        return self._store.payment_methods.pop(method_id, None) is not None


class InMemoryUserRepository(UserRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_by_id(self, user_id: str) -> Optional[User]:
        user = self._store.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def update_customer_id(self, user_id: str, customer_id: str) -> Optional[User]:
        user = self._store.users.get(user_id)
        if user is None:
            return None
        user.customer_id = customer_id
        return copy.deepcopy(user)


class InMemoryDeliveryRequestRepository(DeliveryRequestRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_by_id(self, request_id: str) -> Optional[DeliveryRequest]:
        request = self._store.requests.get(request_id)
        return copy.deepcopy(request) if request else None


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    内存 Unit of Work

    写操作立即生效；非只读单元在进入时保存快照，回滚时恢复。
    单元内部不应等待仓储以外的协程，否则其他任务的写入可能被回滚覆盖。
    """

    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self._store = store
        self._snapshot: Optional[dict] = None

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        await super().__aenter__()
        if not self._readonly:
            self._snapshot = self._store.snapshot()
        self.payments = InMemoryPaymentRepository(self._store)
        self.payment_methods = InMemoryPaymentMethodRepository(self._store)
        self.users = InMemoryUserRepository(self._store)
        self.requests = InMemoryDeliveryRequestRepository(self._store)
        return self

    async def commit(self) -> None:
        self._snapshot = None
        self._committed = True

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self._store.restore(self._snapshot)
            self._snapshot = None
        self._committed = False


def memory_uow_factory(store: InMemoryStore):
    """返回 `uow_factory(readonly=False)` 形式的工厂"""

    def factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)

    return factory

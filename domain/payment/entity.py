"""
支付领域实体 - 账本行（Payment）与其状态机
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import (
    PaymentOperationInFlightException,
    PaymentPreconditionException,
)
from domain.payment.money import to_money


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"           # 已创建授权，等待渠道确认
    AUTHORIZED = "authorized"     # 资金已冻结，待扣款
    CAPTURED = "captured"         # 已扣款
    TRANSFERRED = "transferred"   # 已向旅行者打款
    REFUNDED = "refunded"         # 已退款
    FAILED = "failed"             # 失败
    CANCELLED = "cancelled"       # 已取消


class PaymentType(str, Enum):
    """账本行类型：原始扣款 / 派生的退款行与打款行"""
    DELIVERY_PAYMENT = "delivery_payment"
    REFUND = "refund"
    PAYOUT = "payout"


class PaymentOperation(str, Enum):
    """会调用支付渠道的引擎操作"""
    CONFIRM_AUTHORIZATION = "confirm_authorization"
    CAPTURE = "capture"
    CANCEL = "cancel"
    REFUND = "refund"
    TRANSFER = "transfer"


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.AUTHORIZED, PaymentStatus.FAILED}),
    PaymentStatus.AUTHORIZED: frozenset(
        {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.TRANSFERRED, PaymentStatus.REFUNDED}),
    PaymentStatus.TRANSFERRED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

OPERATION_PRECONDITIONS: dict[PaymentOperation, frozenset[PaymentStatus]] = {
    PaymentOperation.CONFIRM_AUTHORIZATION: frozenset({PaymentStatus.PENDING}),
    PaymentOperation.CAPTURE: frozenset({PaymentStatus.AUTHORIZED}),
    PaymentOperation.CANCEL: frozenset({PaymentStatus.AUTHORIZED}),
    PaymentOperation.REFUND: frozenset({PaymentStatus.CAPTURED, PaymentStatus.TRANSFERRED}),
    PaymentOperation.TRANSFER: frozenset({PaymentStatus.CAPTURED}),
}

# Fields frozen once the row exists
_IMMUTABLE_FIELDS = frozenset({"id", "request_id", "amount", "currency", "type"})


def predecessors(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """所有可以直接迁移到 target 的状态"""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Payment:
    """
    账本行 - 资金事实的最小单位

    业务规则：
    1. 金额必须大于0，以分为精度的定点数保存
    2. 货币代码必须是3位字母
    3. 状态只能沿 ALLOWED_TRANSITIONS 向前迁移
    4. id / request_id / amount / currency / type 创建后不可修改
    5. 每个迁移时间戳只在对应迁移时写入一次
    """

    id: str
    request_id: str
    provider_intent_id: str
    customer_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    type: PaymentType = PaymentType.DELIVERY_PAYMENT
    description: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    transferred_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    # 在途渠道调用标记（claim）
    pending_operation: Optional[str] = None
    pending_idempotency_key: Optional[str] = None
    pending_since: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        for name in ("id", "request_id", "provider_intent_id", "customer_id"):
            if not getattr(self, name):
                raise DomainValidationException(f"{name} is required", field=name)
        self.amount = to_money(self.amount)
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.currency = self.currency.upper()
        self.status = PaymentStatus(self.status)
        self.type = PaymentType(self.type)
        if self.metadata is None:
            self.metadata = {}
        self._normalize_timestamps()
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name, value):
        if (
            name in _IMMUTABLE_FIELDS
            and self.__dict__.get("_sealed")
            and self.__dict__.get(name) != value
        ):
            raise DomainValidationException(
                f"Payment field '{name}' is immutable",
                field=name,
            )
        super().__setattr__(name, value)

    @classmethod
    def new(
        cls,
        *,
        request_id: str,
        provider_intent_id: str,
        customer_id: str,
        amount: Decimal,
        currency: str,
        type: PaymentType = PaymentType.DELIVERY_PAYMENT,
        status: PaymentStatus = PaymentStatus.PENDING,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> "Payment":
        """创建新账本行，分配 id 与创建时间"""
        now = _utcnow()
        payment = cls(
            id=uuid.uuid4().hex,
            request_id=request_id,
            provider_intent_id=provider_intent_id,
            customer_id=customer_id,
            amount=amount,
            currency=currency,
            status=status,
            type=type,
            description=description,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        # 派生行直接以终态创建，同步写入对应时间戳
        if status == PaymentStatus.REFUNDED:
            payment.refunded_at = now
        elif status == PaymentStatus.TRANSFERRED:
            payment.transferred_at = now
        return payment

    def _normalize_timestamps(self) -> None:
        """规范化所有时间戳为 UTC"""
        for name in (
            "created_at", "updated_at", "captured_at", "transferred_at",
            "refunded_at", "failed_at", "pending_since",
        ):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_in_flight(self) -> bool:
        return self.pending_operation is not None

    def ensure_can(self, operation: PaymentOperation) -> None:
        """
        校验操作前置条件，不满足时抛出前置条件异常

        业务规则：
        1. 只有原始扣款行（DELIVERY_PAYMENT）可被引擎操作
        2. 当前状态必须在操作要求的状态集合内
        3. 同一笔支付不能有未完成的渠道调用
        """
        operation = PaymentOperation(operation)
        required = OPERATION_PRECONDITIONS[operation]
        if self.type != PaymentType.DELIVERY_PAYMENT:
            raise PaymentPreconditionException(
                f"Cannot {operation.value} a {self.type.value} ledger row",
                payment_id=self.id,
                status=self.status.value,
                operation=operation.value,
                required=[s.value for s in required],
            )
        if self.status not in required:
            raise PaymentPreconditionException(
                f"Cannot {operation.value} payment {self.id} in status {self.status.value}",
                payment_id=self.id,
                status=self.status.value,
                operation=operation.value,
                required=[s.value for s in required],
            )
        if self.pending_operation:
            raise PaymentOperationInFlightException(self.id, self.pending_operation, operation.value)

    def claim(self, operation: PaymentOperation, idempotency_key: Optional[str]) -> None:
        """标记在途渠道调用"""
        self.pending_operation = PaymentOperation(operation).value
        self.pending_idempotency_key = idempotency_key
        self.pending_since = _utcnow()
        self.updated_at = self.pending_since

    def release(self) -> None:
        """清除在途标记"""
        self.pending_operation = None
        self.pending_idempotency_key = None
        self.pending_since = None
        self.updated_at = _utcnow()

    def transition_to(self, target: PaymentStatus, *, reason: Optional[str] = None) -> None:
        """
        向前迁移状态并写入对应时间戳，同时清除在途标记

        业务规则：只允许 ALLOWED_TRANSITIONS 中的迁移
        """
        target = PaymentStatus(target)
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise PaymentPreconditionException(
                f"Illegal payment transition: {self.status.value} -> {target.value}",
                payment_id=self.id,
                status=self.status.value,
                required=[s.value for s in predecessors(target)],
            )
        now = _utcnow()
        self.status = target
        if target == PaymentStatus.CAPTURED:
            self.captured_at = now
        elif target == PaymentStatus.TRANSFERRED:
            self.transferred_at = now
        elif target == PaymentStatus.REFUNDED:
            self.refunded_at = now
        elif target == PaymentStatus.FAILED:
            self.failed_at = now
            self.failure_reason = reason
        self.pending_operation = None
        self.pending_idempotency_key = None
        self.pending_since = None
        self.updated_at = now

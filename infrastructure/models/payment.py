"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
    UniqueConstraint,
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    账本行数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键（UUID hex，由领域层分配）
    id = Column(String(32), primary_key=True)

    request_id = Column(
        String(64),
        ForeignKey("delivery_requests.id"),
        nullable=False,
        index=True,
        comment="配送请求ID",
    )

    # 渠道句柄：授权 intent / 退款 / 转账 ID
    provider_intent_id = Column(String(255), unique=True, nullable=False, comment="渠道句柄")
    customer_id = Column(String(255), nullable=False, index=True, comment="付款方（打款行为收款方）渠道ID")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="金额")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/authorized/captured/transferred/refunded/failed/cancelled",
    )
    type = Column(
        String(20),
        nullable=False,
        default="delivery_payment",
        comment="类型: delivery_payment/refund/payout",
    )
    description = Column(Text, nullable=True)

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    captured_at = Column(DateTime(timezone=True), nullable=True, comment="扣款时间")
    transferred_at = Column(DateTime(timezone=True), nullable=True, comment="打款时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")
    failed_at = Column(DateTime(timezone=True), nullable=True, comment="失败时间")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    # 在途渠道调用标记
    pending_operation = Column(String(32), nullable=True, comment="在途操作")
    pending_idempotency_key = Column(String(128), nullable=True, comment="在途操作的幂等键")
    pending_since = Column(DateTime(timezone=True), nullable=True, comment="在途开始时间")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 索引
    __table_args__ = (
        Index("ix_payments_created_at", "created_at"),
        Index("ix_payments_pending_operation", "pending_operation"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, request_id='{self.request_id}', "
            f"type='{self.type}', amount={self.amount}, status='{self.status}')>"
        )


class PaymentMethodModel(Base):
    """用户保存的支付方式"""
    __tablename__ = "payment_methods"

    id = Column(String(32), primary_key=True)
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_method_id = Column(String(255), nullable=False, comment="渠道支付方式ID")
    type = Column(String(32), nullable=False, default="card")
    brand = Column(String(32), nullable=True)
    last_four = Column(String(4), nullable=True)
    exp_month = Column(Integer, nullable=True)
    exp_year = Column(Integer, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider_method_id", name="uq_payment_methods_user_provider_method"),
    )

    def __repr__(self):
        return f"<PaymentMethodModel(id={self.id}, user_id={self.user_id}, brand='{self.brand}')>"

"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型

用户表由账户模块维护，这里只映射支付需要的列。
"""
from sqlalchemy import Column, String, DateTime
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """
    用户数据库模型

    这是数据库表的映射，不包含业务逻辑
    """
    __tablename__ = "users"

    # 主键
    id = Column(String(64), primary_key=True)

    email = Column(String(255), unique=True, index=True, nullable=False, comment="邮箱")
    full_name = Column(String(100), nullable=True, comment="全名")

    # 支付渠道身份
    customer_id = Column(String(255), nullable=True, comment="渠道客户ID（付款方）")
    payout_account_id = Column(String(255), nullable=True, comment="渠道收款账户ID（旅行者）")

    # 时间信息
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

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}')>"

"""
配送请求数据库模型（只读映射，表由请求模块维护）
"""
from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from .base import Base


class DeliveryRequestModel(Base):
    __tablename__ = "delivery_requests"

    id = Column(String(64), primary_key=True)
    requester_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True, comment="请求方用户ID")
    trip_id = Column(String(64), nullable=False, index=True, comment="行程ID")
    delivery_fee = Column(Numeric(precision=12, scale=2), nullable=False, comment="配送费")

    items = relationship(
        "RequestItemModel",
        back_populates="request",
        lazy="selectin",
        order_by="RequestItemModel.id",
    )

    def __repr__(self):
        return f"<DeliveryRequestModel(id={self.id}, delivery_fee={self.delivery_fee})>"


class RequestItemModel(Base):
    __tablename__ = "request_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(
        String(64),
        ForeignKey("delivery_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    estimated_price = Column(Numeric(precision=12, scale=2), nullable=False, comment="预估单价")
    actual_price = Column(Numeric(precision=12, scale=2), nullable=True, comment="实际单价")

    request = relationship("DeliveryRequestModel", back_populates="items")

"""
配送请求实体 - 由行程/请求模块维护，支付引擎只读
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.money import to_money


@dataclass
class RequestItem:
    name: str
    quantity: int
    estimated_price: Decimal
    actual_price: Optional[Decimal] = None

    def __post_init__(self):
        if self.quantity < 0:
            raise DomainValidationException(
                f"Item quantity must not be negative: {self.quantity}",
                field="quantity",
            )
        self.estimated_price = to_money(self.estimated_price, field="estimated_price")
        if self.actual_price is not None:
            self.actual_price = to_money(self.actual_price, field="actual_price")


@dataclass
class DeliveryRequest:
    id: str
    requester_id: str
    trip_id: str
    delivery_fee: Decimal
    items: List[RequestItem] = field(default_factory=list)

    def __post_init__(self):
        self.delivery_fee = to_money(self.delivery_fee, field="delivery_fee")

"""
费用计算 - 纯函数，无 I/O

总价 = 商品费用 + 配送费 + 小费，商品单价优先使用实际价格，否则使用预估价格。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from domain.common.exceptions import DomainValidationException
from domain.payment.money import MoneyLike, to_money


class PricedItem(Protocol):
    quantity: int
    estimated_price: Decimal
    actual_price: Optional[Decimal]


@dataclass(frozen=True)
class CostBreakdown:
    items_cost: Decimal
    delivery_fee: Decimal
    tip: Decimal
    total: Decimal


def unit_price(item: PricedItem) -> Decimal:
    """实际价格存在时覆盖预估价格"""
    price = item.actual_price if item.actual_price is not None else item.estimated_price
    return to_money(price, field="price")


def calculate_cost(
    items: Iterable[PricedItem],
    delivery_fee: MoneyLike,
    tip: MoneyLike = Decimal("0"),
) -> CostBreakdown:
    items_cost = Decimal("0.00")
    for item in items:
        if item.quantity < 0:
            raise DomainValidationException(
                f"Item quantity must not be negative: {item.quantity}",
                field="quantity",
            )
        items_cost += unit_price(item) * item.quantity

    fee = to_money(delivery_fee, field="delivery_fee")
    if fee < 0:
        raise DomainValidationException(f"Delivery fee must not be negative: {fee}", field="delivery_fee")
    tip_amount = to_money(tip, field="tip")
    if tip_amount < 0:
        raise DomainValidationException(f"Tip must not be negative: {tip_amount}", field="tip")

    items_cost = to_money(items_cost, field="items_cost")
    return CostBreakdown(
        items_cost=items_cost,
        delivery_fee=fee,
        tip=tip_amount,
        total=to_money(items_cost + fee + tip_amount, field="total"),
    )

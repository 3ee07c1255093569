"""
支付方式实体 - 用户在支付渠道保存的卡片等支付工具
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import DomainValidationException


@dataclass
class PaymentMethod:
    id: str
    user_id: str
    provider_method_id: str
    type: str = "card"
    brand: Optional[str] = None
    last_four: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id:
            raise DomainValidationException("user_id is required", field="user_id")
        if not self.provider_method_id:
            raise DomainValidationException("provider_method_id is required", field="provider_method_id")
        if self.last_four is not None and (len(self.last_four) != 4 or not self.last_four.isdigit()):
            raise DomainValidationException(f"Invalid card last four: {self.last_four}", field="last_four")
        if self.exp_month is not None and not 1 <= self.exp_month <= 12:
            raise DomainValidationException(f"Invalid expiry month: {self.exp_month}", field="exp_month")

    @classmethod
    def new(cls, *, user_id: str, provider_method_id: str, is_default: bool = False, **details) -> "PaymentMethod":
        now = datetime.now(timezone.utc)
        return cls(
            id=uuid.uuid4().hex,
            user_id=user_id,
            provider_method_id=provider_method_id,
            is_default=is_default,
            created_at=now,
            updated_at=now,
            **details,
        )

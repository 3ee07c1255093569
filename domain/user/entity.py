"""
用户领域实体 - 支付相关视图

用户资料由账户模块维护，这里只保留支付需要的字段：
渠道客户ID（付款方）与渠道收款账户ID（旅行者收款）。
"""
from dataclasses import dataclass
from typing import Optional
import re

from domain.common.exceptions import DomainValidationException


@dataclass
class User:
    """用户实体"""

    id: str
    email: str
    full_name: Optional[str] = None
    customer_id: Optional[str] = None
    payout_account_id: Optional[str] = None

    def __post_init__(self):
        self.validate_email()

    def validate_email(self) -> None:
        """业务规则：邮箱格式验证"""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, self.email):
            raise DomainValidationException(f"无效的邮箱格式: {self.email}", field="email")

    @property
    def can_receive_payouts(self) -> bool:
        return bool(self.payout_account_id)

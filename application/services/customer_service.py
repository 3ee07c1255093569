"""
客户与支付方式管理 - 渠道客户ID、已保存的支付方式
"""
from __future__ import annotations

import hashlib
from typing import Any, Callable, List, Optional

from application.dtos.payments import CreateCustomer
from application.ports.payment_gateway import PaymentGateway
from application.services.provider_calls import call_provider
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import UserNotFoundException, require_identifier
from domain.payment.exceptions import CustomerMissingException, PaymentMethodNotFoundException
from domain.payment.payment_method import PaymentMethod
from domain.user.entity import User


logger = get_logger(__name__)


class CustomerService:
    """客户应用服务"""

    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: Callable[..., Any],
        *,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory
        self._settings = settings or payment_settings

    async def _call(self, operation: str, func, *args):
        return await call_provider(
            self.gateway.provider, operation, self._settings.timeouts.total, func, *args
        )

    async def _get_user(self, user_id: str) -> User:
        user_id = require_identifier(user_id, "user_id")
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        return user

    async def _require_customer(self, user_id: str) -> User:
        user = await self._get_user(user_id)
        if not user.customer_id:
            raise CustomerMissingException(user.id)
        return user

    async def create_customer(self, user_id: str) -> str:
        """在支付渠道创建客户并回写到用户"""
        user = await self._get_user(user_id)
        key = hashlib.sha256(f"customer|{user.id}|{user.email}".encode("utf-8")).hexdigest()
        customer_id = await self._call(
            "create_customer",
            self.gateway.create_customer,
            CreateCustomer(user_id=user.id, email=user.email, name=user.full_name, idempotency_key=key),
        )
        async with self._uow_factory() as uow:
            await uow.users.update_customer_id(user.id, customer_id)
        logger.info("payment_customer_created", user_id=user.id, customer_id=customer_id)
        return customer_id

    async def get_or_create_customer(self, user_id: str) -> str:
        user = await self._get_user(user_id)
        if user.customer_id:
            return user.customer_id
        return await self.create_customer(user.id)

    async def add_payment_method(self, user_id: str, payment_method_id: str) -> PaymentMethod:
        """
        绑定支付方式到用户的渠道客户

        第一个支付方式自动成为默认支付方式；重复绑定返回已有记录。
        """
        payment_method_id = require_identifier(payment_method_id, "payment_method_id")
        user = await self._require_customer(user_id)

        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.payment_methods.get_by_provider_method_id(user.id, payment_method_id)
            if existing is not None:
                return existing
            is_default = not await uow.payment_methods.list_by_user(user.id)

        details = await self._call(
            "attach_payment_method",
            self.gateway.attach_payment_method,
            user.customer_id,
            payment_method_id,
        )
        if is_default:
            await self._call(
                "set_default_payment_method",
                self.gateway.set_default_payment_method,
                user.customer_id,
                payment_method_id,
            )

        method = PaymentMethod.new(
            user_id=user.id,
            provider_method_id=payment_method_id,
            is_default=is_default,
            type=details.type,
            brand=details.brand,
            last_four=details.last_four,
            exp_month=details.exp_month,
            exp_year=details.exp_year,
        )
        async with self._uow_factory() as uow:
            method = await uow.payment_methods.create(method)
        logger.info(
            "payment_method_added",
            user_id=user.id,
            payment_method_id=payment_method_id,
            is_default=is_default,
        )
        return method

    async def list_payment_methods(self, user_id: str) -> List[PaymentMethod]:
        user_id = require_identifier(user_id, "user_id")
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_methods.list_by_user(user_id)

    async def set_default_payment_method(self, user_id: str, payment_method_id: str) -> PaymentMethod:
        """设为默认支付方式（只能操作属于该用户的支付方式）"""
        payment_method_id = require_identifier(payment_method_id, "payment_method_id")
        user = await self._require_customer(user_id)
        method = await self._owned_method(user.id, payment_method_id)

        await self._call(
            "set_default_payment_method",
            self.gateway.set_default_payment_method,
            user.customer_id,
            payment_method_id,
        )
        async with self._uow_factory() as uow:
            updated = await uow.payment_methods.set_default(user.id, method.id)
        logger.info("payment_method_default_set", user_id=user.id, payment_method_id=payment_method_id)
        return updated

    async def remove_payment_method(self, user_id: str, payment_method_id: str) -> bool:
        payment_method_id = require_identifier(payment_method_id, "payment_method_id")
        user = await self._get_user(user_id)
        method = await self._owned_method(user.id, payment_method_id)

        await self._call("detach_payment_method", self.gateway.detach_payment_method, payment_method_id)
        async with self._uow_factory() as uow:
            deleted = await uow.payment_methods.delete(method.id)
        logger.info("payment_method_removed", user_id=user.id, payment_method_id=payment_method_id)
        return deleted

    async def _owned_method(self, user_id: str, payment_method_id: str) -> PaymentMethod:
        async with self._uow_factory(readonly=True) as uow:
            method = await uow.payment_methods.get_by_provider_method_id(user_id, payment_method_id)
        if method is None:
            raise PaymentMethodNotFoundException(payment_method_id)
        return method

"""
组合根 - 装配支付渠道、Unit of Work 与应用服务

默认使用 SQLAlchemy 账本；传入 store 时改用进程内存账本（测试、本地演示）。
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.customer_service import CustomerService
from application.services.payment_service import PaymentEngine
from application.services.webhook_service import PaymentWebhookService
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.memory import InMemoryStore, memory_uow_factory
from infrastructure.unit_of_work import sqlalchemy_uow_factory


def build_uow_factory(
    *,
    store: Optional[InMemoryStore] = None,
    session_factory: Optional[Callable[[], Any]] = None,
) -> Callable[..., Any]:
    if store is not None:
        return memory_uow_factory(store)
    return sqlalchemy_uow_factory(session_factory)


def build_payment_engine(
    *,
    gateway: Optional[PaymentGateway] = None,
    provider: Optional[str] = None,
    store: Optional[InMemoryStore] = None,
    session_factory: Optional[Callable[[], Any]] = None,
    notifier: Optional[PaymentNotifier] = None,
    settings: Optional[PaymentSettings] = None,
) -> PaymentEngine:
    settings = settings or payment_settings
    return PaymentEngine(
        gateway or get_payment_gateway(provider, settings),
        build_uow_factory(store=store, session_factory=session_factory),
        notifier=notifier,
        settings=settings,
    )


def build_customer_service(
    *,
    gateway: Optional[PaymentGateway] = None,
    provider: Optional[str] = None,
    store: Optional[InMemoryStore] = None,
    session_factory: Optional[Callable[[], Any]] = None,
    settings: Optional[PaymentSettings] = None,
) -> CustomerService:
    settings = settings or payment_settings
    return CustomerService(
        gateway or get_payment_gateway(provider, settings),
        build_uow_factory(store=store, session_factory=session_factory),
        settings=settings,
    )


def build_webhook_service(
    *,
    gateway: Optional[PaymentGateway] = None,
    provider: Optional[str] = None,
    store: Optional[InMemoryStore] = None,
    session_factory: Optional[Callable[[], Any]] = None,
    notifier: Optional[PaymentNotifier] = None,
    settings: Optional[PaymentSettings] = None,
) -> PaymentWebhookService:
    settings = settings or payment_settings
    return PaymentWebhookService(
        gateway or get_payment_gateway(provider, settings),
        build_uow_factory(store=store, session_factory=session_factory),
        notifier=notifier,
    )

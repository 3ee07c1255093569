"""
Base payment client implementing shared concerns: retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.exceptions import PaymentRecoverableError
from domain.payment.money import from_minor, to_minor
from shared.codes.payment_codes import PROVIDER_EVENT_TO_KIND, PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        """
        Retry recoverable provider failures.

        Every attempt re-sends the same request, idempotency key included, so a
        retried mutation cannot be applied twice by the provider.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._log("payment_provider_retry", attempt=attempt.retry_state.attempt_number)
                return await fn()

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        # unknown provider states are treated as not yet settled
        return mapping.get(provider_status, "pending")

    def _map_event_kind(self, event_type: str) -> str:
        mapping = PROVIDER_EVENT_TO_KIND.get(self.provider, {})
        return mapping.get(event_type, "other")

    @staticmethod
    def _to_minor(amount: Decimal, currency: str) -> int:
        # Providers expect amounts in the smallest currency unit
        return to_minor(amount, currency)

    @staticmethod
    def _from_minor(amount: int, currency: str) -> Decimal:
        return from_minor(amount, currency)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

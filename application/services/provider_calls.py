"""
Bounded provider calls shared by the application services.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

import anyio

from core.logging_config import get_logger
from domain.payment.exceptions import PaymentProviderTimeoutError


logger = get_logger(__name__)


async def call_provider(
    provider: str,
    operation: str,
    timeout: float,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
) -> Any:
    """
    Run one provider call under `anyio.fail_after`.

    Expiry raises PaymentProviderTimeoutError: the outcome of the call is unknown,
    so callers must not record it as a failure.
    """
    try:
        with anyio.fail_after(timeout):
            return await func(*args)
    except TimeoutError as exc:
        logger.error(
            "payment_provider_timeout",
            provider=provider,
            provider_operation=operation,
            timeout=timeout,
        )
        raise PaymentProviderTimeoutError(
            f"Provider call '{operation}' timed out after {timeout}s; outcome unknown",
            provider=provider,
            details={"operation": operation, "timeout": timeout},
        ) from exc

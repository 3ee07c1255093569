"""
Shared business codes used across layers (Domain/Application/Infrastructure).

This package exposes BusinessCode at `shared.codes` and keeps
payment-specific codes under `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    USER_NOT_FOUND = 20001
    NOT_FOUND = 20006  # Generic resource not found
    PRECONDITION_FAILED = 20007

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000


__all__ = ["BusinessCode"]

"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Ledger / lifecycle errors (201xx)
    PAYMENT_NOT_FOUND = 20100
    PRECONDITION_FAILED = 20101
    OPERATION_IN_FLIGHT = 20102
    PAYOUT_ACCOUNT_MISSING = 20103
    AUTHORIZATION_PENDING = 20104
    REQUEST_NOT_FOUND = 20105
    PAYMENT_METHOD_NOT_FOUND = 20106
    CUSTOMER_MISSING = 20107
    STATE_CONFLICT = 20108
    PAYMENT_ALREADY_EXISTS = 20109

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider intent status -> provider-neutral intent status.
# requires_capture is the only state in which a manual-capture intent holds funds.
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "requires_payment_method",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "pending",
        "requires_capture": "requires_capture",
        "succeeded": "succeeded",
        "canceled": "canceled",
    },
}

# Provider webhook event type -> normalized webhook kind
PROVIDER_EVENT_TO_KIND = {
    "stripe": {
        "payment_intent.amount_capturable_updated": "authorization.succeeded",
        "payment_intent.succeeded": "authorization.succeeded",
        "payment_intent.payment_failed": "authorization.failed",
        "payment_intent.canceled": "authorization.canceled",
        "charge.refunded": "charge.refunded",
    },
}

# The in-memory provider speaks Stripe's vocabulary
PROVIDER_STATUS_TO_INTERNAL["fake"] = PROVIDER_STATUS_TO_INTERNAL["stripe"]
PROVIDER_EVENT_TO_KIND["fake"] = PROVIDER_EVENT_TO_KIND["stripe"]

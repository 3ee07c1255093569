"""
Payment domain exceptions.

Four families, each with its own business code range:

- validation:   DomainValidationException (domain.common.exceptions)
- precondition: PaymentPreconditionException and subclasses, raised before any
                provider call when a payment is not in the required state
- provider:     PaymentProviderError and subclasses, raised by gateway adapters
- not found:    PaymentNotFoundException, DeliveryRequestNotFoundException, ...
"""
from __future__ import annotations

from typing import Iterable, Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentNotFoundException(BusinessException):
    """支付记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
            details={"payment": identifier},
        )


class DeliveryRequestNotFoundException(BusinessException):
    def __init__(self, request_id: str):
        super().__init__(
            code=PaymentCode.REQUEST_NOT_FOUND,
            message=f"Delivery request not found: {request_id}",
            error_type="DeliveryRequestNotFound",
            details={"request_id": request_id},
        )


class PaymentMethodNotFoundException(BusinessException):
    def __init__(self, payment_method_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_METHOD_NOT_FOUND,
            message=f"Payment method not found: {payment_method_id}",
            error_type="PaymentMethodNotFound",
            details={"payment_method_id": payment_method_id},
        )


class PaymentPreconditionException(BusinessException):
    """Operation invoked against a payment that is not in a required state."""

    def __init__(
        self,
        message: str,
        *,
        payment_id: Optional[str] = None,
        status: Optional[str] = None,
        operation: Optional[str] = None,
        required: Optional[Iterable[str]] = None,
        code: int = PaymentCode.PRECONDITION_FAILED,
        error_type: str = "PaymentPreconditionFailed",
    ):
        details = {
            "payment_id": payment_id,
            "status": status,
            "operation": operation,
        }
        if required is not None:
            details["required"] = sorted(required)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
        )
        self.payment_id = payment_id
        self.status = status
        self.operation = operation


class PaymentOperationInFlightException(PaymentPreconditionException):
    """Another provider call for the same payment has not finished (or its outcome is unknown)."""

    def __init__(self, payment_id: str, pending_operation: Optional[str], operation: str):
        super().__init__(
            f"Payment {payment_id} has an unfinished '{pending_operation}' operation",
            payment_id=payment_id,
            operation=operation,
            code=PaymentCode.OPERATION_IN_FLIGHT,
            error_type="PaymentOperationInFlight",
        )
        self.details["pending_operation"] = pending_operation
        self.pending_operation = pending_operation


class PayoutAccountMissingException(PaymentPreconditionException):
    def __init__(self, traveler_id: str, payment_id: Optional[str] = None):
        super().__init__(
            f"Traveler {traveler_id} does not have a payout account",
            payment_id=payment_id,
            operation="transfer",
            code=PaymentCode.PAYOUT_ACCOUNT_MISSING,
            error_type="PayoutAccountMissing",
        )
        self.details["traveler_id"] = traveler_id


class CustomerMissingException(PaymentPreconditionException):
    def __init__(self, user_id: str):
        super().__init__(
            f"User {user_id} does not have a payment customer id",
            code=PaymentCode.CUSTOMER_MISSING,
            error_type="CustomerMissing",
        )
        self.details["user_id"] = user_id


class PaymentAuthorizationPendingException(PaymentPreconditionException):
    """Provider has not confirmed the authorization yet; the row stays PENDING."""

    def __init__(self, payment_id: str, provider_status: str):
        super().__init__(
            f"Authorization for payment {payment_id} is not confirmed (provider status: {provider_status})",
            payment_id=payment_id,
            status="pending",
            operation="confirm_authorization",
            code=PaymentCode.AUTHORIZATION_PENDING,
            error_type="PaymentAuthorizationPending",
        )
        self.details["provider_status"] = provider_status


class PaymentStateConflictException(BusinessException):
    """The guarded ledger write found the row in an unexpected state."""

    def __init__(self, payment_id: str, operation: str, status: Optional[str]):
        super().__init__(
            code=PaymentCode.STATE_CONFLICT,
            message=f"Payment {payment_id} changed state during '{operation}' (now {status})",
            error_type="PaymentStateConflict",
            details={"payment_id": payment_id, "operation": operation, "status": status},
        )


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )
        self.provider = provider


class PaymentRecoverableError(PaymentProviderError):
    """Transient provider failure; safe to retry with the same idempotency key."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: PaymentCode = PaymentCode.PROVIDER_RECOVERABLE,
    ):
        super().__init__(message, provider=provider, provider_code=provider_code, details=details)
        self.code = code
        self.error_type = "PaymentRecoverableError"


class PaymentProviderTimeoutError(PaymentProviderError):
    """The provider call did not finish in time: its outcome is unknown."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=details)
        self.code = PaymentCode.TIMEOUT
        self.error_type = "PaymentProviderTimeout"


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )


class PaymentAlreadyExistsException(BusinessException):
    """A ledger row with the same provider handle already exists."""

    def __init__(self, provider_intent_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_ALREADY_EXISTS,
            message=f"Payment already recorded for provider handle {provider_intent_id}",
            error_type="PaymentAlreadyExists",
            details={"provider_intent_id": provider_intent_id},
        )

"""Custom exception hierarchy and handlers."""

from __future__ import annotations

import logging
from enum import StrEnum

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    status_code = 400
    code = "app_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundException(AppException):
    """Raised when entity is not found."""

    status_code = 404
    code = "not_found"


class ConflictException(AppException):
    """Raised when entity conflicts with current state."""

    status_code = 409
    code = "conflict"


class UnauthorizedException(AppException):
    """Raised when user has no rights for operation."""

    status_code = 403
    code = "forbidden"


class BusinessRuleException(AppException):
    """Raised when business rule validation fails."""

    status_code = 422
    code = "business_rule_violation"


class ValidationException(AppException):
    """Raised when stored input (times, windows, amounts) is malformed."""

    status_code = 422
    code = "validation_error"


class RateLimitException(AppException):
    """Raised when a caller exceeds an allowed request rate."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int = 1) -> None:
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))


class PaymentSetupErrorKind(StrEnum):
    """Failure categories of payment intent creation."""

    NETWORK = "network"
    DECLINED = "declined"
    ACCOUNT_NOT_READY = "account_not_ready"
    PROCESSOR = "processor"


_PAYMENT_SETUP_STATUS = {
    PaymentSetupErrorKind.NETWORK: 502,
    PaymentSetupErrorKind.DECLINED: 402,
    PaymentSetupErrorKind.ACCOUNT_NOT_READY: 409,
    PaymentSetupErrorKind.PROCESSOR: 502,
}


class PaymentSetupException(AppException):
    """Raised when the payment processor cannot set up a charge."""

    code = "payment_setup_failed"

    def __init__(self, message: str, *, kind: PaymentSetupErrorKind) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = _PAYMENT_SETUP_STATUS[kind]
        self.code = f"payment_{kind.value}"


class TransferErrorKind(StrEnum):
    """Failure categories of deferred payouts."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    PAYEE_NOT_READY = "payee_not_ready"
    PROCESSOR_ERROR = "processor_error"


class TransferException(AppException):
    """Raised inside the reconciler when a payout cannot be made."""

    status_code = 502
    code = "transfer_failed"

    def __init__(self, message: str, *, kind: TransferErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


class PersistenceException(AppException):
    """Raised when the store rejects a write for reasons other than conflicts."""

    status_code = 500
    code = "persistence_error"


async def app_exception_handler(_: Request, exc: AppException) -> JSONResponse:
    """Handle custom domain exceptions."""
    headers = None
    if isinstance(exc, RateLimitException):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
        headers=headers,
    )


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions in unified shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
    )


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error"}},
    )


def register_exception_handlers(app) -> None:
    """Register global exception handlers."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

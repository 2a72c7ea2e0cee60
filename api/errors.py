"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import RateLimitedError
from clients.email_client import EmailGatewayError
from core.exceptions import (
    AlreadyPaidError,
    BillingError,
    DocumentImmutableError,
    DocumentValidationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    PlanRestrictionError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
_BILLING_STATUS = [
    (NotFoundError, 404),
    (DocumentValidationError, 400),
    (QuotaExceededError, 402),
    (PlanRestrictionError, 403),
    (InvalidTransitionError, 409),
    (DocumentImmutableError, 409),
    (AlreadyPaidError, 409),
    (PaymentConfigurationError, 400),
    (PaymentProviderUnavailableError, 503),
    (PaymentProviderError, 502),
]


def billing_error_status(exc: BillingError) -> int:
    for exc_type, status_code in _BILLING_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def billing_error_details(exc: BillingError) -> dict | None:
    """Fields the client needs to act on the error."""
    if isinstance(exc, QuotaExceededError):
        return {
            "upgrade_required": True,
            "current_plan": exc.current_plan,
            "resource": exc.resource,
            "limit": exc.limit,
        }
    if isinstance(exc, PlanRestrictionError):
        return {"upgrade_required": True, "current_plan": exc.current_plan}
    if isinstance(exc, AlreadyPaidError):
        return {"already_paid": True}
    if isinstance(exc, PaymentProviderError):
        return {"retryable": exc.retryable}
    if isinstance(exc, InvalidTransitionError):
        return {"from_status": exc.from_status, "to_status": exc.to_status}
    return None


def _safe_errors(exc) -> dict:
    # Location and message only; echoing "input" could leak a submitted secret key
    return {
        "errors": [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
    }


def _json(status_code: int, code: str, message: str, details: dict | None = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, details).model_dump(mode="json"),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status_code = billing_error_status(exc)
        if status_code >= 500:
            logger.warning("Payment provider failure on %s: %s", request.url.path, exc.message)
        return _json(status_code, exc.code, exc.message, billing_error_details(exc))

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        return _json(
            429,
            ErrorCodes.RATE_LIMITED,
            "Too many attempts. Please wait before retrying.",
            {"retry_after_seconds": exc.retry_after_seconds},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(EmailGatewayError)
    async def email_error_handler(request: Request, exc: EmailGatewayError):
        logger.error("Email delivery failed on %s: %s", request.url.path, exc)
        return _json(502, ErrorCodes.EMAIL_DELIVERY_FAILED, "The email could not be delivered. Please try again.")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _json(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json(422, ErrorCodes.VALIDATION_ERROR, "Request validation failed", _safe_errors(exc))

    @app.exception_handler(ValidationError)
    async def model_validation_error_handler(request: Request, exc: ValidationError):
        return _json(422, ErrorCodes.VALIDATION_ERROR, "Request validation failed", _safe_errors(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")

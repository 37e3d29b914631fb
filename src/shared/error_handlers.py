"""FastAPI exception handlers for the checkout error taxonomy.

Every error leaves the API as ``{"error": "<message>"}`` with a status code
chosen by its class. Upstream bodies never reach the client beyond the short
preview already embedded in the message.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError

from shared.errors import (
    CheckoutError,
    ConfigurationError,
    ConflictError,
    PaymentCapturedOrderFailed,
    PreconditionError,
    StorageError,
    UpstreamError,
)

logger = structlog.get_logger(__name__)

# Checked in order; the first matching class decides the status
_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (PaymentCapturedOrderFailed, 409),
    (PreconditionError, 409),
    (ConflictError, 409),
    (UpstreamError, 502),
    (ConfigurationError, 500),
    (StorageError, 500),
]


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def validation_message(exc: ValidationError) -> str:
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        return "; ".join(f"{field}: {', '.join(map(str, errors))}" for field, errors in messages.items())
    return str(messages or exc)


async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return error_response(400, validation_message(exc), details=getattr(exc, "messages", None))


async def handle_not_found(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return error_response(404, str(getattr(exc, "messages", None) or "Not found"))


async def handle_checkout_error(request: Request, exc: CheckoutError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)

    if isinstance(exc, PaymentCapturedOrderFailed):
        return error_response(
            status_code,
            str(exc),
            requires_reconciliation=True,
            session_id=exc.session_id,
            payment_reference=exc.payment_reference,
        )
    if isinstance(exc, UpstreamError) and exc.retryable:
        return error_response(status_code, str(exc), retryable=True)
    return error_response(status_code, str(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, handle_validation_error)
    app.add_exception_handler(ObjectNotFoundError, handle_not_found)
    app.add_exception_handler(CheckoutError, handle_checkout_error)

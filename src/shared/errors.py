"""Error taxonomy shared by the checkout, commerce and proxy packages.

Caller-input problems are reported with Protean's ``ValidationError`` and
missing records with Protean's ``ObjectNotFoundError``, the same exceptions
the domain model and repositories already raise. Everything else that can go
wrong while orchestrating a checkout derives from ``CheckoutError``.
"""

PREVIEW_LENGTH = 200


def preview(text: str | None, length: int = PREVIEW_LENGTH) -> str:
    """Return a short, single-line preview of a raw upstream body."""
    if not text:
        return ""
    flattened = " ".join(text.split())
    if len(flattened) <= length:
        return flattened
    return flattened[:length] + "..."


class CheckoutError(Exception):
    """Base class for all orchestration errors."""


class ConfigurationError(CheckoutError):
    """Required configuration (credentials, endpoints) is missing or invalid."""


class PreconditionError(CheckoutError):
    """A checkout step was attempted out of order."""


class ConflictError(CheckoutError):
    """Another transition persisted the same session first."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int) -> None:
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Checkout session {session_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class StorageError(CheckoutError):
    """The persistence layer failed. The original exception is chained as ``__cause__``."""


class UpstreamError(CheckoutError):
    """Base class for failures talking to the commerce API."""

    retryable = False
    status_code: int | None = None


class UpstreamProtocolError(UpstreamError):
    """The upstream body was empty, not JSON, or could not be parsed."""

    def __init__(self, message: str, status_code: int | None = None, body_preview: str = "") -> None:
        self.status_code = status_code
        self.body_preview = body_preview
        detail = f"{message} ({status_code})" if status_code else message
        if body_preview:
            detail = f"{detail}: {body_preview}"
        super().__init__(detail)


class UpstreamAPIError(UpstreamError):
    """The upstream API answered with a non-success status."""

    RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code in self.RETRYABLE_STATUSES


class UpstreamUnavailableError(UpstreamError):
    """Timeout or transport failure; safe to retry the same step."""

    retryable = True


class PaymentCapturedOrderFailed(CheckoutError):
    """Payment was accepted upstream but the order could not be created.

    The session is left ``failed`` and flagged for manual reconciliation.
    Retrying payment would charge the shopper twice, so every later attempt
    raises this again until someone reconciles the session.
    """

    def __init__(self, session_id: str, payment_reference: str | None, reason: str) -> None:
        self.session_id = session_id
        self.payment_reference = payment_reference
        self.reason = reason
        super().__init__(
            f"Payment {payment_reference or '(unknown)'} was captured for checkout session "
            f"{session_id} but order creation failed: {reason}"
        )

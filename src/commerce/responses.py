"""Validation of raw upstream responses.

Every commerce API response goes through ``read_json``: the body is read as
text first and only then parsed, so an HTML error page from a proxy or a
rate limiter never reaches callers disguised as data.

Upstream error bodies come in a few shapes. ``UpstreamErrorBody`` models them
as a tagged variant and tries ``ERROR_MESSAGE_FIELDS`` in order; the first
non-empty field wins.
"""

import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from shared.errors import UpstreamAPIError, UpstreamProtocolError, preview

logger = structlog.get_logger(__name__)

ERROR_MESSAGE_FIELDS = ("title", "detail", "message", "error")
LOG_PREVIEW_LENGTH = 500


@dataclass(frozen=True)
class UpstreamErrorBody:
    kind: str  # "rest", "graphql" or "unknown"
    message: str | None

    @classmethod
    def from_payload(cls, payload: Any) -> "UpstreamErrorBody":
        if isinstance(payload, dict):
            for field in ERROR_MESSAGE_FIELDS:
                value = payload.get(field)
                if isinstance(value, str) and value.strip():
                    return cls(kind="rest", message=value)
                if isinstance(value, dict) and isinstance(value.get("message"), str):
                    return cls(kind="rest", message=value["message"])

            errors = payload.get("errors")
            if isinstance(errors, list):
                messages = [e["message"] for e in errors if isinstance(e, dict) and e.get("message")]
                if messages:
                    return cls(kind="graphql", message="; ".join(messages))
        return cls(kind="unknown", message=None)

    def message_or(self, default: str) -> str:
        return self.message or default


def parse_json_text(text: str, status_code: int | None = None) -> Any:
    """Parse an already-read body, rejecting empty and malformed payloads."""
    if not text or not text.strip():
        raise UpstreamProtocolError("Empty response from BigCommerce API", status_code)
    try:
        return json.loads(text)
    except ValueError as exc:
        raise UpstreamProtocolError(
            "Invalid JSON response from BigCommerce API", status_code, preview(text)
        ) from exc


def read_json(response: httpx.Response, default_error: str = "API request failed") -> Any:
    """Return the parsed JSON body of a successful response.

    Raises ``UpstreamProtocolError`` for empty, non-JSON or unparseable bodies
    and ``UpstreamAPIError`` when the status is outside the 2xx range.
    """
    text = response.text
    content_type = response.headers.get("content-type", "")

    if "json" not in content_type.lower():
        logger.error(
            "Non-JSON response from commerce API",
            status=response.status_code,
            content_type=content_type,
            body=text[:LOG_PREVIEW_LENGTH],
        )
        raise UpstreamProtocolError(
            "BigCommerce returned non-JSON response", response.status_code, preview(text)
        )

    payload = parse_json_text(text, response.status_code)

    if not response.is_success:
        body = UpstreamErrorBody.from_payload(payload)
        logger.error(
            "Commerce API error",
            status=response.status_code,
            kind=body.kind,
            message=body.message,
        )
        raise UpstreamAPIError(body.message_or(default_error), response.status_code)

    return payload

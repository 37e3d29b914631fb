"""Storefront GraphQL proxy.

Relays ``{query, variables}`` to the storefront GraphQL endpoint and the
upstream status and body back. Anything that is not a well-formed JSON object
turns into a GraphQL-style ``{"errors": [{"message": ...}]}`` envelope.
"""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from commerce import get_storefront_client
from shared.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger(__name__)

graphql_router = APIRouter(tags=["proxy"])

CACHE_HEADERS = {"Cache-Control": "public, max-age=60"}


def error_envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"errors": [{"message": message}]})


@graphql_router.post("/graphql")
async def graphql_proxy(request: Request) -> JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return error_envelope(400, "Invalid JSON in request body")
    if not isinstance(body, dict) or not isinstance(body.get("query"), str):
        return error_envelope(400, "Request body must contain a GraphQL query")

    try:
        client = get_storefront_client()
        result = await client.graphql(body["query"], body.get("variables"))
    except ConfigurationError as exc:
        logger.error("GraphQL proxy misconfigured", error=str(exc))
        return error_envelope(500, str(exc))
    except UpstreamError as exc:
        logger.error("GraphQL upstream failure", error=str(exc), status_code=exc.status_code)
        return error_envelope(500, str(exc))
    except Exception as exc:
        logger.error("GraphQL proxy failed", error=str(exc), error_type=type(exc).__name__)
        return error_envelope(500, "Internal server error")

    return JSONResponse(status_code=result.status_code, content=result.payload, headers=CACHE_HEADERS)

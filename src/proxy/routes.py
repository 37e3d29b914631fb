"""Cart gateway: one POST endpoint dispatching named actions to the commerce client.

Request body is ``{"action": "<name>", "data": {...}}``. The browser never sees
upstream credentials; every failure leaves as ``{"error": "<message>"}``.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from commerce import get_client
from commerce.port import CommerceAPI
from shared.errors import ConfigurationError

logger = structlog.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

CHECKOUT_ACTIONS = frozenset({"createCheckout", "updateCheckout", "getCheckout", "checkoutAction"})

gateway_router = APIRouter(tags=["proxy"])


def _reply(status_code: int, content: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


async def _create_cart(client: CommerceAPI, data: dict) -> dict:
    cart = await client.create_cart(data.get("line_items") or [])
    return {
        "cartId": cart.cart_id,
        "redirectUrl": cart.checkout_url,
        "redirectUrls": cart.redirect_urls,
    }


async def _get_cart(client: CommerceAPI, data: dict) -> dict:
    return await client.get_cart(data["cartId"])


async def _get_product_costs(client: CommerceAPI, data: dict) -> dict:
    return await client.get_product_costs(data.get("productIds") or [])


async def _checkout_request(client: CommerceAPI, data: dict) -> dict:
    return await client.checkout_request(data["endpoint"], data.get("method") or "GET", data.get("body"))


_HANDLERS = {
    "createCart": _create_cart,
    "getCart": _get_cart,
    "getProductCosts": _get_product_costs,
    **{action: _checkout_request for action in CHECKOUT_ACTIONS},
}


async def dispatch(client: CommerceAPI, action: str, data: dict) -> Any:
    """Run one gateway action against ``client``."""
    return await _HANDLERS[action](client, data)


@gateway_router.api_route("/bigcommerce-cart", methods=["POST", "OPTIONS", "GET", "PUT", "PATCH", "DELETE"])
async def bigcommerce_cart(request: Request) -> JSONResponse:
    if request.method == "OPTIONS":
        return _reply(200, {})
    if request.method != "POST":
        return _reply(405, {"error": "Method not allowed"})

    try:
        client = get_client()
    except ConfigurationError as exc:
        logger.error("Gateway misconfigured", error=str(exc))
        return _reply(500, {"error": str(exc)})

    try:
        payload = await request.json()
    except ValueError:
        return _reply(400, {"error": "Invalid JSON in request body"})

    if not isinstance(payload, dict):
        return _reply(400, {"error": "Invalid action"})
    action = payload.get("action")
    data = payload.get("data") or {}
    if action not in _HANDLERS:
        return _reply(400, {"error": "Invalid action"})

    try:
        result = await dispatch(client, action, data)
    except Exception as exc:
        logger.error("Gateway action failed", action=action, error=str(exc), error_type=type(exc).__name__)
        return _reply(500, {"error": str(exc) or type(exc).__name__})

    return _reply(200, result)

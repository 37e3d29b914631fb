"""BigCommerce adapter for the commerce port.

The single choke point for network calls to BigCommerce: the REST v3
management API (carts, checkouts, catalog) authenticated with an
``X-Auth-Token``, and the storefront GraphQL API authenticated with a
bearer token. Every response is validated by ``commerce.responses`` before
any field is read.

The client never retries. Timeouts and transport failures surface as
``UpstreamUnavailableError`` so the orchestrator (or the caller) can decide
whether to try again.
"""

import asyncio
from typing import Any

import httpx
import structlog

from commerce.config import CommerceConfig
from commerce.port import (
    CartResult,
    CheckoutResult,
    CommerceAPI,
    GraphQLResult,
    OrderResult,
    PaymentResult,
    ShippingSelection,
)
from commerce.responses import parse_json_text, read_json
from shared.errors import (
    UpstreamAPIError,
    UpstreamError,
    UpstreamProtocolError,
    UpstreamUnavailableError,
    preview,
)

logger = structlog.get_logger(__name__)


def normalize_endpoint(endpoint: str) -> str:
    """Prefix a checkout API endpoint with ``/v3`` unless it already has it."""
    if endpoint.startswith("/v3/"):
        return endpoint
    if endpoint.startswith("/checkouts"):
        return f"/v3{endpoint}"
    return f"/v3{'' if endpoint.startswith('/') else '/'}{endpoint}"


def chunked(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _data(payload: Any, what: str) -> Any:
    if not isinstance(payload, dict) or payload.get("data") is None:
        raise UpstreamProtocolError(f"Malformed {what} response from BigCommerce API")
    return payload["data"]


def _positive_cost(value: Any) -> float | None:
    """Cost as a number when it is a positive amount, else ``None``."""
    if isinstance(value, bool):
        return None
    try:
        cost = float(value)
    except (TypeError, ValueError):
        return None
    return cost if cost > 0 else None


class BigCommerceClient(CommerceAPI):
    """Async BigCommerce client backed by ``httpx.AsyncClient``."""

    def __init__(
        self,
        config: CommerceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        storefront_only: bool = False,
    ) -> None:
        if storefront_only:
            config.validate_storefront()
        else:
            config.validate()
        self.config = config
        self._http = httpx.AsyncClient(
            timeout=config.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "BigCommerceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Commerce API request timed out", method=method, url=url)
            raise UpstreamUnavailableError(f"BigCommerce request timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            logger.warning("Commerce API transport error", method=method, url=url, error=str(exc))
            raise UpstreamUnavailableError(f"BigCommerce request failed: {exc}") from exc

    async def _rest(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict | None = None,
        default_error: str = "API request failed",
    ) -> Any:
        self.config.validate()
        url = f"{self.config.rest_base_url}{path}"
        logger.debug("Commerce API request", method=method, path=path)
        response = await self._send(
            method,
            url,
            params=params,
            json=body,
            headers={"X-Auth-Token": self.config.access_token, "Content-Type": "application/json"},
        )
        return read_json(response, default_error)

    # -------------------------------------------------------------------
    # Carts
    # -------------------------------------------------------------------
    async def create_cart(self, line_items: list[dict]) -> CartResult:
        payload = await self._rest(
            "POST",
            "/v3/carts",
            body={"line_items": line_items, "channel_id": self.config.channel_id},
            default_error="Failed to create cart",
        )
        data = _data(payload, "cart")
        cart_id = data.get("id")
        if not cart_id:
            raise UpstreamProtocolError("Cart response did not include a cart id")

        redirect_urls = data.get("redirect_urls") or {}
        checkout_url = (
            redirect_urls.get("checkout_url")
            or redirect_urls.get("embedded_checkout_url")
            or redirect_urls.get("cart_url")
            or f"{self.config.storefront_checkout_url}{cart_id}"
        )
        logger.info("External cart created", cart_id=cart_id, items=len(line_items))
        return CartResult(cart_id=str(cart_id), checkout_url=checkout_url, redirect_urls=redirect_urls)

    async def get_cart(self, cart_id: str) -> dict:
        payload = await self._rest("GET", f"/v3/carts/{cart_id}", default_error="Failed to get cart")
        return _data(payload, "cart")

    # -------------------------------------------------------------------
    # Checkouts
    # -------------------------------------------------------------------
    async def create_checkout(self, cart_id: str, billing: dict, shipping: dict) -> CheckoutResult:
        # In BigCommerce the checkout id is the cart id
        cart = await self.get_cart(cart_id)
        physical_items = (cart.get("line_items") or {}).get("physical_items") or []
        if not physical_items:
            raise UpstreamAPIError("Cart has no physical items")

        await self._rest(
            "POST",
            f"/v3/checkouts/{cart_id}/billing-address",
            body=billing,
            default_error="Failed to add billing address",
        )

        consignments = [
            {
                "address": shipping,
                "line_items": [{"item_id": item["id"], "quantity": item["quantity"]} for item in physical_items],
            }
        ]
        payload = await self._rest(
            "POST",
            f"/v3/checkouts/{cart_id}/consignments",
            body=consignments,
            params={"include": "consignments.available_shipping_options"},
            default_error="Failed to add shipping consignment",
        )
        data = _data(payload, "checkout")
        logger.info("External checkout created", checkout_id=cart_id)
        return CheckoutResult(checkout_id=str(cart_id), consignments=data.get("consignments") or [])

    async def get_checkout(self, checkout_id: str) -> dict:
        payload = await self._rest("GET", f"/v3/checkouts/{checkout_id}", default_error="Failed to get checkout")
        return _data(payload, "checkout")

    async def get_shipping_options(self, checkout_id: str, consignment_id: str) -> list[dict]:
        payload = await self._rest(
            "GET",
            f"/v3/checkouts/{checkout_id}/consignments/{consignment_id}/shipping-options",
        )
        data = _data(payload, "shipping options")
        if isinstance(data, dict):
            return data.get("shipping_options") or []
        return data

    async def select_shipping_option(
        self,
        checkout_id: str,
        consignment_id: str,
        option_id: str,
    ) -> ShippingSelection:
        payload = await self._rest(
            "PUT",
            f"/v3/checkouts/{checkout_id}/consignments/{consignment_id}",
            body={"shipping_option_id": option_id},
            default_error="Failed to select shipping option",
        )
        data = _data(payload, "checkout")

        shipping_cost = None
        for consignment in data.get("consignments") or []:
            if str(consignment.get("id")) == str(consignment_id):
                selected = consignment.get("selected_shipping_option") or {}
                shipping_cost = selected.get("cost")
                break
        if shipping_cost is None:
            shipping_cost = data.get("shipping_cost_total_ex_tax") or 0

        tax = data.get("tax_total")
        return ShippingSelection(
            shipping_cost=float(shipping_cost),
            tax=float(tax) if tax is not None else None,
        )

    async def submit_payment(self, checkout_id: str, payment: dict) -> PaymentResult:
        payload = await self._rest(
            "POST",
            f"/v3/checkouts/{checkout_id}/payments",
            body={"payment": payment},
            default_error="Payment failed",
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        data = data or {}
        reference = data.get("id") or data.get("transaction_id")
        return PaymentResult(reference=str(reference) if reference else None, status=data.get("status"))

    async def create_order(self, checkout_id: str) -> OrderResult:
        payload = await self._rest(
            "POST",
            f"/v3/checkouts/{checkout_id}/orders",
            body={},
            default_error="Failed to create order",
        )
        data = _data(payload, "order")
        order_id = data.get("id")
        if not order_id:
            raise UpstreamProtocolError("Order response did not include an order id")
        logger.info("External order created", checkout_id=checkout_id, order_id=order_id)
        return OrderResult(order_id=str(order_id))

    async def checkout_request(self, endpoint: str, method: str = "GET", body: Any = None) -> dict:
        return await self._rest(method or "GET", normalize_endpoint(endpoint), body=body)

    # -------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------
    async def _fetch_product_chunk(self, chunk: list[int]) -> list[dict]:
        try:
            payload = await self._rest(
                "GET",
                "/v3/catalog/products",
                params={
                    "id:in": ",".join(str(product_id) for product_id in chunk),
                    "include": "variants",
                    "limit": self.config.batch_size,
                },
            )
        except UpstreamError as exc:
            logger.warning("Product chunk lookup failed", size=len(chunk), error=str(exc))
            return []
        if not isinstance(payload, dict):
            return []
        return payload.get("data") or []

    async def _fetch_brand_names(self, brand_ids: list[int]) -> dict[int, str]:
        try:
            payload = await self._rest(
                "GET",
                "/v3/catalog/brands",
                params={"id:in": ",".join(str(brand_id) for brand_id in brand_ids), "limit": 250},
            )
        except UpstreamError as exc:
            logger.warning("Brand lookup failed", brands=len(brand_ids), error=str(exc))
            return {}
        brands = payload.get("data") if isinstance(payload, dict) else None
        return {brand["id"]: brand.get("name") for brand in brands or [] if isinstance(brand, dict) and "id" in brand}

    async def get_product_costs(self, product_ids: list[int]) -> dict[str, dict]:
        chunks = chunked(list(product_ids), self.config.batch_size)
        results = await asyncio.gather(*(self._fetch_product_chunk(chunk) for chunk in chunks))

        costs: dict[str, dict] = {}
        for product in (p for chunk in results for p in chunk):
            if not isinstance(product, dict) or product.get("id") is None:
                logger.warning("Skipping catalog entry without an id", entry=repr(product)[:200])
                continue
            cost_price = _positive_cost(product.get("cost_price"))
            variants = product.get("variants") or []
            if variants and isinstance(variants[0], dict) and variants[0].get("cost_price") is not None:
                cost_price = _positive_cost(variants[0]["cost_price"])

            costs[str(product["id"])] = {
                "id": product["id"],
                "name": product.get("name"),
                "sku": product.get("sku") or None,
                "cost_price": cost_price,
                "price": product.get("price") or 0,
                "brand_id": product.get("brand_id") or None,
                "brand_name": None,
            }

        brand_ids = sorted({p["brand_id"] for p in costs.values() if p["brand_id"] is not None})
        if brand_ids:
            brand_names = await self._fetch_brand_names(brand_ids)
            for product in costs.values():
                if product["brand_id"] in brand_names:
                    product["brand_name"] = brand_names[product["brand_id"]]

        logger.info("Product costs fetched", requested=len(product_ids), found=len(costs), chunks=len(chunks))
        return costs

    # -------------------------------------------------------------------
    # Storefront GraphQL
    # -------------------------------------------------------------------
    async def graphql(self, query: str, variables: dict | None = None) -> GraphQLResult:
        self.config.validate_storefront()
        response = await self._send(
            "POST",
            self.config.graphql_url,
            json={"query": query, "variables": variables or {}},
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.storefront_token}",
            },
        )
        text = response.text
        content_type = response.headers.get("content-type", "")
        if "html" in content_type.lower():
            raise UpstreamProtocolError(
                "BigCommerce returned non-JSON response", response.status_code, preview(text)
            )
        payload = parse_json_text(text, response.status_code)
        if not isinstance(payload, dict):
            raise UpstreamProtocolError("GraphQL response is not an object", response.status_code, preview(text))
        return GraphQLResult(status_code=response.status_code, payload=payload)

"""Configurable fake commerce adapter for development and testing.

Simulates BigCommerce without any network calls. Any operation can be told
to fail with a chosen exception, which makes every orchestrator failure path
reachable from tests and from manual API testing.
"""

from typing import Any
from uuid import uuid4

from commerce.port import (
    CartResult,
    CheckoutResult,
    CommerceAPI,
    GraphQLResult,
    OrderResult,
    PaymentResult,
    ShippingSelection,
)
from shared.errors import UpstreamAPIError


class FakeCommerce(CommerceAPI):
    """In-memory commerce adapter that records every call."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.failures: dict[str, Exception] = {}
        self.shipping_costs: dict[str, float] = {"standard": 9.99, "express": 24.99}
        self.products: dict[int, dict] = {}
        self.carts: dict[str, list[dict]] = {}

    def fail(self, operation: str, error: Exception | None = None) -> None:
        """Make ``operation`` raise ``error`` until ``succeed`` is called."""
        self.failures[operation] = error or UpstreamAPIError(f"{operation} failed", 422)

    def succeed(self, operation: str | None = None) -> None:
        if operation is None:
            self.failures.clear()
        else:
            self.failures.pop(operation, None)

    def calls_to(self, operation: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == operation]

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if method in self.failures:
            raise self.failures[method]

    async def create_cart(self, line_items: list[dict]) -> CartResult:
        self._record("create_cart", line_items=line_items)
        cart_id = f"fake_cart_{uuid4().hex[:12]}"
        self.carts[cart_id] = [
            {"id": f"item_{index}", "product_id": item["product_id"], "quantity": item["quantity"]}
            for index, item in enumerate(line_items)
        ]
        return CartResult(cart_id=cart_id, checkout_url=f"https://fake.store/checkout/{cart_id}")

    async def get_cart(self, cart_id: str) -> dict:
        self._record("get_cart", cart_id=cart_id)
        return {"id": cart_id, "line_items": {"physical_items": self.carts.get(cart_id, [])}}

    async def create_checkout(self, cart_id: str, billing: dict, shipping: dict) -> CheckoutResult:
        self._record("create_checkout", cart_id=cart_id, billing=billing, shipping=shipping)
        options = [{"id": option_id, "cost": cost} for option_id, cost in self.shipping_costs.items()]
        return CheckoutResult(
            checkout_id=cart_id,
            consignments=[{"id": f"cons_{cart_id}", "available_shipping_options": options}],
        )

    async def get_checkout(self, checkout_id: str) -> dict:
        self._record("get_checkout", checkout_id=checkout_id)
        return {"id": checkout_id}

    async def get_shipping_options(self, checkout_id: str, consignment_id: str) -> list[dict]:
        self._record("get_shipping_options", checkout_id=checkout_id, consignment_id=consignment_id)
        return [{"id": option_id, "cost": cost} for option_id, cost in self.shipping_costs.items()]

    async def select_shipping_option(
        self,
        checkout_id: str,
        consignment_id: str,
        option_id: str,
    ) -> ShippingSelection:
        self._record(
            "select_shipping_option",
            checkout_id=checkout_id,
            consignment_id=consignment_id,
            option_id=option_id,
        )
        if option_id not in self.shipping_costs:
            raise UpstreamAPIError(f"Shipping option {option_id} is not available", 422)
        return ShippingSelection(shipping_cost=self.shipping_costs[option_id])

    async def submit_payment(self, checkout_id: str, payment: dict) -> PaymentResult:
        self._record("submit_payment", checkout_id=checkout_id)
        return PaymentResult(reference=f"fake_pay_{uuid4().hex[:12]}", status="success")

    async def create_order(self, checkout_id: str) -> OrderResult:
        self._record("create_order", checkout_id=checkout_id)
        return OrderResult(order_id=str(100 + len(self.calls_to("create_order"))))

    async def checkout_request(self, endpoint: str, method: str = "GET", body: Any = None) -> dict:
        self._record("checkout_request", endpoint=endpoint, http_method=method, body=body)
        return {"data": {"endpoint": endpoint, "method": method}}

    async def get_product_costs(self, product_ids: list[int]) -> dict[str, dict]:
        self._record("get_product_costs", product_ids=list(product_ids))
        return {str(pid): self.products[pid] for pid in product_ids if pid in self.products}

    async def graphql(self, query: str, variables: dict | None = None) -> GraphQLResult:
        self._record("graphql", query=query, variables=variables)
        return GraphQLResult(status_code=200, payload={"data": {}})

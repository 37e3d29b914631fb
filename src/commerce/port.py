"""Commerce API port (abstract interface).

Defines the contract every commerce adapter implements. The orchestrator and
the proxy routes only ever talk to this interface, so the BigCommerce adapter
can be swapped for ``FakeCommerce`` in development and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CartResult:
    """An external cart created upstream."""

    cart_id: str
    checkout_url: str | None = None
    redirect_urls: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutResult:
    """An external checkout with addresses attached."""

    checkout_id: str
    consignments: list = field(default_factory=list)

    @property
    def consignment_id(self) -> str | None:
        if self.consignments:
            return self.consignments[0].get("id")
        return None


@dataclass(frozen=True)
class ShippingSelection:
    """Amounts reported by the checkout after a shipping option was chosen."""

    shipping_cost: float
    tax: float | None = None


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a payment submission accepted by the processor."""

    reference: str | None
    status: str | None = None


@dataclass(frozen=True)
class OrderResult:
    order_id: str


@dataclass(frozen=True)
class GraphQLResult:
    """A well-formed GraphQL response, relayed with its upstream status."""

    status_code: int
    payload: dict


class CommerceAPI(ABC):
    """Abstract commerce API interface."""

    @abstractmethod
    async def create_cart(self, line_items: list[dict]) -> CartResult:
        """Create an external cart from ``{product_id, quantity[, variant_id]}`` items."""
        ...

    @abstractmethod
    async def get_cart(self, cart_id: str) -> dict:
        ...

    @abstractmethod
    async def create_checkout(self, cart_id: str, billing: dict, shipping: dict) -> CheckoutResult:
        """Attach billing and shipping addresses, turning the cart into a checkout."""
        ...

    @abstractmethod
    async def get_checkout(self, checkout_id: str) -> dict:
        ...

    @abstractmethod
    async def get_shipping_options(self, checkout_id: str, consignment_id: str) -> list[dict]:
        ...

    @abstractmethod
    async def select_shipping_option(
        self,
        checkout_id: str,
        consignment_id: str,
        option_id: str,
    ) -> ShippingSelection:
        ...

    @abstractmethod
    async def submit_payment(self, checkout_id: str, payment: dict) -> PaymentResult:
        ...

    @abstractmethod
    async def create_order(self, checkout_id: str) -> OrderResult:
        ...

    @abstractmethod
    async def checkout_request(self, endpoint: str, method: str = "GET", body: Any = None) -> dict:
        """Raw request against the checkout API, used by the proxy gateway."""
        ...

    @abstractmethod
    async def get_product_costs(self, product_ids: list[int]) -> dict[str, dict]:
        ...

    @abstractmethod
    async def graphql(self, query: str, variables: dict | None = None) -> GraphQLResult:
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Release network resources. Adapters without any may keep the default."""

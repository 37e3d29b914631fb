"""Commerce API configuration.

Credentials are read once into an explicit, immutable ``CommerceConfig`` that
is handed to the client and the proxy routes. Nothing reads the process
environment at import time.
"""

import os
from dataclasses import dataclass

from shared.errors import ConfigurationError

DEFAULT_API_BASE = "https://api.bigcommerce.com"
DEFAULT_TIMEOUT = 15.0
DEFAULT_BATCH_SIZE = 250


@dataclass(frozen=True)
class CommerceConfig:
    store_hash: str | None
    access_token: str | None
    storefront_token: str | None = None
    api_base: str = DEFAULT_API_BASE
    channel_id: int = 1
    timeout: float = DEFAULT_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_env(cls, environ=None) -> "CommerceConfig":
        env = os.environ if environ is None else environ
        return cls(
            store_hash=env.get("BC_STORE_HASH") or None,
            access_token=env.get("BC_ACCESS_TOKEN") or None,
            storefront_token=env.get("BC_STOREFRONT_TOKEN") or None,
            api_base=(env.get("BC_API_BASE") or DEFAULT_API_BASE).rstrip("/"),
            channel_id=int(env.get("BC_CHANNEL_ID") or 1),
            timeout=float(env.get("BC_TIMEOUT") or DEFAULT_TIMEOUT),
        )

    def validate(self) -> None:
        """Raise ``ConfigurationError`` unless the REST credentials are present."""
        missing = [
            name
            for name, value in (("BC_STORE_HASH", self.store_hash), ("BC_ACCESS_TOKEN", self.access_token))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Server configuration error: Missing BigCommerce credentials ({', '.join(missing)})"
            )
        if self.batch_size < 1:
            raise ConfigurationError("Server configuration error: batch size must be positive")

    def validate_storefront(self) -> None:
        """Raise ``ConfigurationError`` unless the GraphQL storefront credentials are usable."""
        if not self.store_hash:
            raise ConfigurationError("BC_STORE_HASH environment variable is missing")
        if not self.storefront_token:
            raise ConfigurationError("BC_STOREFRONT_TOKEN environment variable is missing")
        # Storefront tokens are JWTs
        if not self.storefront_token.startswith("eyJ"):
            raise ConfigurationError("BC_STOREFRONT_TOKEN is not a valid JWT token")

    @property
    def rest_base_url(self) -> str:
        return f"{self.api_base}/stores/{self.store_hash}"

    @property
    def graphql_url(self) -> str:
        return f"https://store-{self.store_hash}.mybigcommerce.com/graphql"

    @property
    def storefront_checkout_url(self) -> str:
        return f"https://store-{self.store_hash}.mybigcommerce.com/cart.php?action=loadInCheckout&id="

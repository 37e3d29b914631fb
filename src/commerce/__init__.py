"""Commerce API client factory.

Provides get_client() / set_client() to swap implementations:
- BigCommerceClient for production, built from environment configuration
- FakeCommerce for development and testing

The GraphQL proxy only holds storefront credentials, so it asks for
get_storefront_client(), which falls back to a storefront-only client when
no client has been set.
"""

from commerce.bigcommerce import BigCommerceClient
from commerce.config import CommerceConfig
from commerce.port import CommerceAPI

_current_client: CommerceAPI | None = None
_storefront_client: CommerceAPI | None = None


def get_client() -> CommerceAPI:
    """Return the current commerce client, building a BigCommerceClient on first use.

    Raises ConfigurationError when the BigCommerce credentials are missing.
    """
    global _current_client
    if _current_client is None:
        _current_client = BigCommerceClient(CommerceConfig.from_env())
    return _current_client


def get_storefront_client() -> CommerceAPI:
    """Return a client able to run storefront GraphQL queries."""
    global _storefront_client
    if _current_client is not None:
        return _current_client
    if _storefront_client is None:
        _storefront_client = BigCommerceClient(CommerceConfig.from_env(), storefront_only=True)
    return _storefront_client


def set_client(client: CommerceAPI) -> None:
    """Override the active commerce client (useful for tests)."""
    global _current_client
    _current_client = client


def reset_client() -> None:
    """Forget the active clients; the next call rebuilds them from the environment."""
    global _current_client, _storefront_client
    _current_client = None
    _storefront_client = None

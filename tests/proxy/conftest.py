import httpx
import pytest
from commerce.bigcommerce import BigCommerceClient
from commerce.config import CommerceConfig
from fastapi import FastAPI
from fastapi.testclient import TestClient
from proxy import gateway_router, graphql_router


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(gateway_router)
    app.include_router(graphql_router)
    return TestClient(app)


@pytest.fixture()
def upstream():
    """Build a BigCommerceClient whose HTTP traffic is answered by ``handler``."""

    def build(handler):
        config = CommerceConfig(
            store_hash="abc123",
            access_token="token-xyz",
            storefront_token="eyJhbGciOiJIUzI1NiJ9.payload.sig",
        )
        return BigCommerceClient(config, transport=httpx.MockTransport(handler))

    return build

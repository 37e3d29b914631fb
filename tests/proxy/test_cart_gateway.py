"""Integration tests for the /bigcommerce-cart action gateway."""

import httpx
import pytest
from commerce import set_client
from commerce.fake_adapter import FakeCommerce
from shared.errors import UpstreamAPIError

CORS = {
    "access-control-allow-origin": "*",
    "access-control-allow-headers": "Content-Type",
    "access-control-allow-methods": "POST, OPTIONS",
}


@pytest.fixture()
def fake():
    fake = FakeCommerce()
    set_client(fake)
    return fake


def _assert_cors(response):
    for header, value in CORS.items():
        assert response.headers[header] == value


class TestMethods:
    def test_options_preflight(self, client):
        response = client.options("/bigcommerce-cart")
        assert response.status_code == 200
        _assert_cors(response)

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_other_methods_are_not_allowed(self, client, method):
        response = getattr(client, method)("/bigcommerce-cart")
        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
        _assert_cors(response)


class TestConfiguration:
    def test_missing_credentials_return_500_before_any_call(self, client, no_bc_env):
        response = client.post("/bigcommerce-cart", json={"action": "createCart", "data": {"line_items": []}})
        assert response.status_code == 500
        assert "Missing BigCommerce credentials" in response.json()["error"]


class TestActions:
    def test_create_cart(self, client, fake):
        response = client.post(
            "/bigcommerce-cart",
            json={"action": "createCart", "data": {"line_items": [{"product_id": 112, "quantity": 2}]}},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["cartId"].startswith("fake_cart_")
        assert body["redirectUrl"] == f"https://fake.store/checkout/{body['cartId']}"
        assert body["redirectUrls"] == {}
        _assert_cors(response)

    def test_get_cart(self, client, fake):
        response = client.post("/bigcommerce-cart", json={"action": "getCart", "data": {"cartId": "cart-1"}})
        assert response.status_code == 200
        assert response.json()["id"] == "cart-1"

    def test_get_product_costs(self, client, fake):
        fake.products[112] = {"id": 112, "name": "Gloves", "cost_price": 4.5}
        response = client.post(
            "/bigcommerce-cart",
            json={"action": "getProductCosts", "data": {"productIds": [112, 999]}},
        )
        assert response.json() == {"112": {"id": 112, "name": "Gloves", "cost_price": 4.5}}

    @pytest.mark.parametrize("action", ["createCheckout", "updateCheckout", "getCheckout", "checkoutAction"])
    def test_checkout_actions_forward_raw_request(self, client, fake, action):
        response = client.post(
            "/bigcommerce-cart",
            json={
                "action": action,
                "data": {"endpoint": "/checkouts/chk-1/coupons", "method": "POST", "body": {"coupon_code": "X"}},
            },
        )
        assert response.status_code == 200
        [call] = fake.calls_to("checkout_request")
        assert call["endpoint"] == "/checkouts/chk-1/coupons"
        assert call["http_method"] == "POST"
        assert call["body"] == {"coupon_code": "X"}

    def test_unknown_action(self, client, fake):
        response = client.post("/bigcommerce-cart", json={"action": "dropTables", "data": {}})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}
        assert fake.calls == []

    def test_invalid_json(self, client, fake):
        response = client.post(
            "/bigcommerce-cart", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_upstream_error_returns_500_with_message(self, client, fake):
        fake.fail("create_cart", UpstreamAPIError("Product 112 is out of stock", 422))
        response = client.post("/bigcommerce-cart", json={"action": "createCart", "data": {"line_items": []}})
        assert response.status_code == 500
        assert response.json() == {"error": "Product 112 is out of stock"}

    def test_missing_action_data_returns_500(self, client, fake):
        response = client.post("/bigcommerce-cart", json={"action": "getCart", "data": {}})
        assert response.status_code == 500
        assert "error" in response.json()


class TestUpstreamBodies:
    def test_html_from_upstream_never_passes_as_data(self, client, upstream):
        def handler(request):
            return httpx.Response(
                503,
                text="<html><body><h1>Service Unavailable</h1></body></html>",
                headers={"content-type": "text/html"},
            )

        set_client(upstream(handler))
        response = client.post("/bigcommerce-cart", json={"action": "getCart", "data": {"cartId": "cart-1"}})

        assert response.status_code == 500
        assert response.json()["error"].startswith("BigCommerce returned non-JSON response")

    def test_create_cart_through_real_client(self, client, upstream):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": "cart-77",
                        "redirect_urls": {
                            "cart_url": "https://store.example/cart",
                            "checkout_url": "https://store.example/checkout",
                        },
                    }
                },
            )

        set_client(upstream(handler))
        response = client.post("/bigcommerce-cart", json={"action": "createCart", "data": {"line_items": []}})

        assert response.json() == {
            "cartId": "cart-77",
            "redirectUrl": "https://store.example/checkout",
            "redirectUrls": {
                "cart_url": "https://store.example/cart",
                "checkout_url": "https://store.example/checkout",
            },
        }

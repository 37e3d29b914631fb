import pytest
from commerce import reset_client, set_client
from commerce.fake_adapter import FakeCommerce


@pytest.fixture(scope="session")
def _checkout_domain():
    """The checkout domain, initialized once in pytest_sessionstart."""
    from checkout.domain import checkout

    return checkout


@pytest.fixture(autouse=True)
def _ctx(_checkout_domain):
    with _checkout_domain.domain_context():
        yield


@pytest.fixture()
def commerce():
    """A FakeCommerce installed as the active commerce client."""
    fake = FakeCommerce()
    set_client(fake)
    yield fake
    reset_client()


@pytest.fixture()
def billing():
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "address1": "12 Analytical Way",
        "city": "London",
        "postal_code": "N1 9GU",
        "country_code": "GB",
    }


@pytest.fixture()
def shipping(billing):
    return {**billing, "address1": "7 Engine Street"}


@pytest.fixture()
def cart_items():
    return [
        {"product_id": 112, "name": "Nitrile gloves", "quantity": 2, "unit_price": 24.50},
        {"product_id": 208, "variant_id": 31, "name": "Face masks", "quantity": 1, "unit_price": 10.00},
    ]

import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Fetch and activate the domain by pushing the associated domain_context. The activated domain can then be referred to elsewhere as `current_domain`
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env

    from checkout.domain import checkout

    checkout.init()
    checkout.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path or "/proxy/" in test_path:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Fixture to automatically cleanup infrastructure and the commerce client after every test"""
    yield

    from commerce import reset_client
    from protean import current_domain

    reset_client()

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    current_domain.event_store.store._data_reset()


@pytest.fixture()
def bc_env(monkeypatch):
    """BigCommerce credentials in the environment, as a deployed function would see them."""
    monkeypatch.setenv("BC_STORE_HASH", "abc123")
    monkeypatch.setenv("BC_ACCESS_TOKEN", "token-xyz")
    monkeypatch.setenv("BC_STOREFRONT_TOKEN", "eyJhbGciOiJIUzI1NiJ9.payload.sig")


@pytest.fixture()
def no_bc_env(monkeypatch):
    for name in ("BC_STORE_HASH", "BC_ACCESS_TOKEN", "BC_STOREFRONT_TOKEN"):
        monkeypatch.delenv(name, raising=False)

"""Shared BDD fixtures and step definitions for the Checkout domain."""

import pytest
from checkout.session.orchestrator import CheckoutOrchestrator
from checkout.session.session import Pricing
from checkout.store import SessionStore
from pytest_bdd import given, parsers, then, when
from shared.errors import PaymentCapturedOrderFailed, UpstreamError


@pytest.fixture()
def outcome():
    """What the last When step produced: the session or the error it raised."""
    return {"error": None}


def _stored(session_id):
    return SessionStore().get_session(session_id)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse("a checkout session for {quantity:d} units at {price:f} with tax {tax:f}"),
    target_fixture="session_id",
)
def _new_session(commerce, quantity, price, tax):
    session = CheckoutOrchestrator().create_checkout_session(
        "user-bdd-001",
        [{"product_id": 112, "quantity": quantity, "unit_price": price}],
        pricing=Pricing(tax=tax),
    )
    return session.id


@given(parsers.cfparse('the commerce API rejects "{operation}"'))
def _upstream_rejects(commerce, operation):
    commerce.fail(operation)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the commerce API recovers")
def _upstream_recovers(commerce):
    commerce.succeed()


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then("the step fails")
def _step_failed(outcome):
    assert isinstance(outcome["error"], UpstreamError)


@then(parsers.cfparse('the session is "{status}"'))
def _session_status(session_id, status):
    assert _stored(session_id).status == status


@then("the order id is recorded")
def _order_recorded(session_id):
    assert _stored(session_id).order_id is not None


@then(parsers.cfparse("the total is {total:f}"))
def _session_total(session_id, total):
    assert _stored(session_id).total == pytest.approx(total)


@then("the session has no cart")
def _no_cart(session_id):
    assert _stored(session_id).cart_id is None


@then("the session keeps its cart and checkout")
def _keeps_references(session_id):
    session = _stored(session_id)
    assert session.cart_id is not None
    assert session.checkout_id == session.cart_id


@then("the payment is flagged for reconciliation")
def _needs_reconciliation(session_id, outcome):
    assert isinstance(outcome["error"], PaymentCapturedOrderFailed)
    session = _stored(session_id)
    assert session.requires_reconciliation is True
    assert session.payment_captured is True


@then(parsers.cfparse('"{operation}" was called {count:d} times'))
def _call_count(commerce, operation, count):
    assert len(commerce.calls_to(operation)) == count

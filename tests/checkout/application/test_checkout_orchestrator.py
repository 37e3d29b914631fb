"""Tests for the CheckoutOrchestrator step by step, against FakeCommerce."""

import asyncio

import pytest
from checkout.session.orchestrator import CheckoutOrchestrator, describe_error
from checkout.session.session import CheckoutSession, CheckoutStatus, Pricing
from commerce import set_client
from commerce.fake_adapter import FakeCommerce
from protean.exceptions import ObjectNotFoundError, ValidationError
from shared.errors import (
    ConflictError,
    PaymentCapturedOrderFailed,
    PreconditionError,
    UpstreamAPIError,
    UpstreamProtocolError,
    UpstreamUnavailableError,
)


@pytest.fixture()
def orchestrator(commerce):
    return CheckoutOrchestrator(client=commerce)


@pytest.fixture()
def session(orchestrator, cart_items):
    return orchestrator.create_checkout_session("user-001", cart_items, pricing=Pricing(tax=4.72))


def _through_addresses(orchestrator, session, billing, shipping):
    session = asyncio.run(orchestrator.create_cart(session.id))
    return asyncio.run(orchestrator.add_addresses(session.id, session.cart_id, billing, shipping))


def _through_shipping(orchestrator, session, billing, shipping, option="standard"):
    session = _through_addresses(orchestrator, session, billing, shipping)
    return asyncio.run(orchestrator.select_shipping(session.id, session.checkout_id, None, option))


class TestDescribeError:
    def test_upstream_status_is_appended(self):
        assert describe_error(UpstreamAPIError("Cart not found", 404)) == "Cart not found (HTTP 404)"

    def test_plain_error(self):
        assert describe_error(RuntimeError("boom")) == "boom"

    def test_empty_message_uses_class_name(self):
        assert describe_error(RuntimeError()) == "RuntimeError"


class TestCreateCheckoutSession:
    def test_session_is_persisted(self, orchestrator, session):
        loaded = orchestrator.get_session(session.id)
        assert loaded.status == CheckoutStatus.PENDING.value
        assert loaded.total == 63.72

    def test_no_upstream_call_is_made(self, commerce, session):
        assert commerce.calls == []

    def test_invalid_quantity(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.create_checkout_session("user-001", [{"product_id": 1, "quantity": 0}])

    def test_pricing_as_dict(self, orchestrator, cart_items):
        session = orchestrator.create_checkout_session("user-001", cart_items, pricing={"tax": 1.0, "shipping": 2.0})
        assert session.total == 62.00

    def test_unknown_session(self, orchestrator):
        with pytest.raises(ObjectNotFoundError):
            orchestrator.get_session("does-not-exist")


class TestCreateCart:
    def test_records_cart(self, orchestrator, commerce, session):
        session = asyncio.run(orchestrator.create_cart(session.id))
        assert session.cart_id.startswith("fake_cart_")
        assert orchestrator.get_session(session.id).cart_id == session.cart_id
        assert commerce.calls_to("create_cart")[0]["line_items"] == [
            {"product_id": 112, "quantity": 2},
            {"product_id": 208, "variant_id": 31, "quantity": 1},
        ]

    def test_is_idempotent(self, orchestrator, commerce, session):
        first = asyncio.run(orchestrator.create_cart(session.id))
        second = asyncio.run(orchestrator.create_cart(session.id))
        assert first.cart_id == second.cart_id
        assert len(commerce.calls_to("create_cart")) == 1

    def test_failure_marks_session_failed(self, orchestrator, commerce, session):
        commerce.fail("create_cart")
        with pytest.raises(UpstreamAPIError):
            asyncio.run(orchestrator.create_cart(session.id))

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.last_error == "create_cart failed (HTTP 422)"
        assert failed.retry_count == 1
        assert failed.error_history[0]["retryable"] is False

    def test_timeouts_are_recorded_as_retryable(self, orchestrator, commerce, session):
        commerce.fail("create_cart", UpstreamUnavailableError("BigCommerce request timed out"))
        with pytest.raises(UpstreamUnavailableError):
            asyncio.run(orchestrator.create_cart(session.id))
        assert orchestrator.get_session(session.id).error_history[-1]["retryable"] is True

    def test_retry_after_failure(self, orchestrator, commerce, session):
        commerce.fail("create_cart")
        with pytest.raises(UpstreamAPIError):
            asyncio.run(orchestrator.create_cart(session.id))
        commerce.succeed()

        session = asyncio.run(orchestrator.create_cart(session.id))
        assert session.status == CheckoutStatus.PENDING.value
        assert session.cart_id is not None
        assert session.last_error is None


class TestAddAddresses:
    def test_requires_cart(self, orchestrator, commerce, session, billing, shipping):
        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.add_addresses(session.id, None, billing, shipping))

        untouched = orchestrator.get_session(session.id)
        assert untouched.status == CheckoutStatus.PENDING.value
        assert untouched.retry_count == 0
        assert commerce.calls == []

    def test_creates_checkout(self, orchestrator, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        assert session.status == CheckoutStatus.ADDRESS_ENTERED.value
        assert session.checkout_id == session.cart_id
        assert session.consignment_id == f"cons_{session.cart_id}"
        assert session.billing_address.email == "ada@example.com"

    def test_rejects_foreign_cart(self, orchestrator, session, billing, shipping):
        session = asyncio.run(orchestrator.create_cart(session.id))
        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.add_addresses(session.id, "someone-elses-cart", billing, shipping))

    def test_invalid_address(self, orchestrator, session, billing, shipping):
        session = asyncio.run(orchestrator.create_cart(session.id))
        del billing["city"]
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.add_addresses(session.id, session.cart_id, billing, shipping))

    def test_second_call_is_noop(self, orchestrator, commerce, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        asyncio.run(orchestrator.add_addresses(session.id, session.cart_id, billing, shipping))
        assert len(commerce.calls_to("create_checkout")) == 1

    def test_upstream_protocol_failure(self, orchestrator, commerce, session, billing, shipping):
        commerce.fail("create_checkout", UpstreamProtocolError("BigCommerce returned non-JSON response", 502))
        with pytest.raises(UpstreamProtocolError):
            _through_addresses(orchestrator, session, billing, shipping)

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.cart_id is not None
        assert failed.checkout_id is None


class TestSelectShipping:
    def test_recomputes_total(self, orchestrator, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        assert session.shipping == 9.99
        assert session.total == 73.71
        assert session.shipping_option_id == "standard"

    def test_requires_checkout(self, orchestrator, session):
        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.select_shipping(session.id, None, None, "standard"))

    def test_can_change_option(self, orchestrator, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        session = asyncio.run(orchestrator.select_shipping(session.id, None, None, "express"))
        assert session.shipping == 24.99
        assert session.total == 88.71

    def test_same_option_is_noop(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        asyncio.run(orchestrator.select_shipping(session.id, None, None, "standard"))
        assert len(commerce.calls_to("select_shipping_option")) == 1

    def test_unavailable_option_fails_session(self, orchestrator, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        with pytest.raises(UpstreamAPIError):
            asyncio.run(orchestrator.select_shipping(session.id, None, None, "overnight"))

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.checkout_id == session.checkout_id
        assert failed.total == 63.72

    def test_refused_upstream_result_fails_session(self, orchestrator, commerce, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        commerce.shipping_costs["misconfigured"] = -5.0

        with pytest.raises(UpstreamProtocolError) as exc:
            asyncio.run(orchestrator.select_shipping(session.id, None, None, "misconfigured"))
        assert isinstance(exc.value.__cause__, ValidationError)

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.shipping == 0.0
        assert failed.shipping_option_id is None
        assert failed.total == 63.72
        assert "unusable select_shipping result" in failed.last_error
        assert failed.error_history[-1]["step"] == "select_shipping"
        assert len(commerce.calls_to("select_shipping_option")) == 1

    def test_retry_after_refused_result(self, orchestrator, commerce, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        commerce.shipping_costs["misconfigured"] = -5.0
        with pytest.raises(UpstreamProtocolError):
            asyncio.run(orchestrator.select_shipping(session.id, None, None, "misconfigured"))

        session = asyncio.run(orchestrator.select_shipping(session.id, None, None, "standard"))
        assert session.status == CheckoutStatus.ADDRESS_ENTERED.value
        assert session.total == 73.71


class TestProcessPayment:
    def test_completes_checkout(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        session = asyncio.run(orchestrator.process_payment(session.id, None, {"instrument": {"token": "tok"}}))

        assert session.status == CheckoutStatus.COMPLETED.value
        assert session.order_id == "101"
        assert session.payment_captured is True
        assert session.payment_reference.startswith("fake_pay_")
        assert [call["method"] for call in commerce.calls][-2:] == ["submit_payment", "create_order"]

    def test_requires_shipping_option(self, orchestrator, commerce, session, billing, shipping):
        session = _through_addresses(orchestrator, session, billing, shipping)
        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert commerce.calls_to("submit_payment") == []

    def test_declined_payment_can_be_retried(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        commerce.fail("submit_payment", UpstreamAPIError("Card declined", 400))
        with pytest.raises(UpstreamAPIError):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.last_error == "Card declined (HTTP 400)"
        assert failed.payment_captured is False

        commerce.succeed()
        session = asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert session.status == CheckoutStatus.COMPLETED.value

    def test_order_failure_after_capture_requires_reconciliation(
        self, orchestrator, commerce, session, billing, shipping
    ):
        session = _through_shipping(orchestrator, session, billing, shipping)
        commerce.fail("create_order", UpstreamAPIError("Order service unavailable", 503))

        with pytest.raises(PaymentCapturedOrderFailed) as exc:
            asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert exc.value.session_id == str(session.id)
        assert exc.value.payment_reference.startswith("fake_pay_")

        failed = orchestrator.get_session(session.id)
        assert failed.status == CheckoutStatus.FAILED.value
        assert failed.payment_captured is True
        assert failed.requires_reconciliation is True
        assert failed.order_id is None

    def test_reconciliation_blocks_further_payments(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        commerce.fail("create_order")
        with pytest.raises(PaymentCapturedOrderFailed):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))

        commerce.succeed()
        with pytest.raises(PaymentCapturedOrderFailed):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert len(commerce.calls_to("submit_payment")) == 1

    def test_payment_in_flight_is_refused(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        session.start_payment()
        orchestrator.store.save_session(session)

        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert commerce.calls_to("submit_payment") == []

    def test_completed_session_is_refused(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        asyncio.run(orchestrator.process_payment(session.id, None, {}))

        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert len(commerce.calls_to("submit_payment")) == 1


class TestReferencesAreMonotonic:
    def test_failures_never_clear_references(self, orchestrator, commerce, session, billing, shipping):
        session = _through_shipping(orchestrator, session, billing, shipping)
        cart_id, checkout_id = session.cart_id, session.checkout_id

        commerce.fail("submit_payment")
        with pytest.raises(UpstreamAPIError):
            asyncio.run(orchestrator.process_payment(session.id, None, {}))

        failed = orchestrator.get_session(session.id)
        assert (failed.cart_id, failed.checkout_id) == (cart_id, checkout_id)
        assert failed.shipping_option_id == "standard"

    def test_totals_hold_after_every_step(self, orchestrator, session, billing, shipping):
        session = asyncio.run(orchestrator.create_cart(session.id))
        assert session.total == round(session.subtotal + session.tax + session.shipping, 2)
        session = asyncio.run(orchestrator.add_addresses(session.id, session.cart_id, billing, shipping))
        assert session.total == round(session.subtotal + session.tax + session.shipping, 2)
        session = asyncio.run(orchestrator.select_shipping(session.id, None, None, "express"))
        assert session.total == round(session.subtotal + session.tax + session.shipping, 2)
        session = asyncio.run(orchestrator.process_payment(session.id, None, {}))
        assert session.total == round(session.subtotal + session.tax + session.shipping, 2)


class TestSessionsForUser:
    def test_active_sessions_exclude_completed(self, orchestrator, cart_items, billing, shipping):
        done = orchestrator.create_checkout_session("user-002", cart_items)
        open_ = orchestrator.create_checkout_session("user-002", cart_items)
        orchestrator.create_checkout_session("someone-else", cart_items)

        _through_shipping(orchestrator, done, billing, shipping)
        asyncio.run(orchestrator.process_payment(done.id, None, {}))

        active = orchestrator.sessions_for_user("user-002")
        assert [s.id for s in active] == [open_.id]
        assert len(orchestrator.sessions_for_user("user-002", active_only=False)) == 2


class YieldingCommerce(FakeCommerce):
    """Hands control back to the event loop before every cart is created."""

    async def create_cart(self, line_items):
        await asyncio.sleep(0)
        return await super().create_cart(line_items)


class TestConcurrentTransitions:
    def test_racing_cart_creation_has_one_winner(self, session):
        set_client(YieldingCommerce())
        orchestrator = CheckoutOrchestrator()

        async def race():
            return await asyncio.gather(
                orchestrator.create_cart(session.id),
                orchestrator.create_cart(session.id),
                return_exceptions=True,
            )

        results = asyncio.run(race())
        winners = [result for result in results if isinstance(result, CheckoutSession)]
        losers = [result for result in results if isinstance(result, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].expected_version == 0
        assert losers[0].actual_version == 1

        stored = orchestrator.get_session(session.id)
        assert stored.cart_id == winners[0].cart_id
        assert stored.status == CheckoutStatus.PENDING.value
        assert stored.lock_version == 1

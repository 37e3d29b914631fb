"""Checkout Orchestrator: drives a CheckoutSession through the commerce API.

Each step makes exactly one upstream call (payment makes two dependent
calls) and persists the outcome immediately afterwards:

    create_cart      → external cart id                 (status stays pending)
    add_addresses    → external checkout id             → address_entered
    select_shipping  → shipping cost, recomputed total  (status stays address_entered)
    process_payment  → payment, then order id           → payment_pending → completed

Any failure while talking upstream marks the session ``failed`` and is
re-raised to the caller. References acquired earlier are kept, so a retry,
or a single ``resume()`` call, continues from the first missing reference
without re-issuing calls that already succeeded.

Out-of-order steps raise ``PreconditionError`` before any upstream call and
leave the session untouched.

The orchestrator keeps no state between calls. Every durable fact lives in
the Session Store, which refuses stale writes with ``ConflictError``.
"""

import json

import structlog
from protean.utils.globals import current_domain

from checkout.session.initiation import StartCheckoutSession
from checkout.session.session import (
    Address,
    CheckoutSession,
    CheckoutStatus,
    CheckoutStep,
    Pricing,
)
from checkout.store import SessionStore
from commerce import get_client
from commerce.port import CommerceAPI
from shared.errors import (
    PaymentCapturedOrderFailed,
    PreconditionError,
    UpstreamAPIError,
    UpstreamError,
    UpstreamProtocolError,
)

logger = structlog.get_logger(__name__)


def describe_error(exc: Exception) -> str:
    """Human-readable failure message, with the upstream status when there is one."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, UpstreamAPIError) and exc.status_code:
        return f"{message} (HTTP {exc.status_code})"
    return message


def _as_address(value) -> Address:
    if isinstance(value, Address):
        return value
    return Address(**value)


class CheckoutOrchestrator:
    def __init__(self, client: CommerceAPI | None = None, store: SessionStore | None = None) -> None:
        self._client = client
        self.store = store or SessionStore()

    @property
    def client(self) -> CommerceAPI:
        # Resolved lazily so that local-only operations work without credentials
        return self._client or get_client()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_session(self, session_id: str) -> CheckoutSession:
        return self.store.get_session(session_id)

    def sessions_for_user(self, user_id: str, active_only: bool = True) -> list[CheckoutSession]:
        return self.store.sessions_for_user(user_id, active_only=active_only)

    # -------------------------------------------------------------------
    # Failure bookkeeping
    # -------------------------------------------------------------------
    def _record_failure(self, session: CheckoutSession, step: CheckoutStep, exc: Exception) -> None:
        retryable = isinstance(exc, UpstreamError) and exc.retryable
        message = describe_error(exc)
        session.fail(step, message, retryable=retryable)
        self.store.save_session(session)
        logger.warning(
            "Checkout step failed",
            session_id=str(session.id),
            step=step.value,
            error=message,
            retryable=retryable,
            retry_count=session.retry_count,
        )

    def _apply_result(self, session: CheckoutSession, step: CheckoutStep, transition) -> CheckoutSession:
        """Record an upstream result on the session through ``transition``.

        A result the session refuses counts as an upstream protocol failure.
        The refused values are discarded by reloading the session before it is
        marked failed.
        """
        try:
            transition(session)
        except Exception as exc:
            error = UpstreamProtocolError(f"Commerce API returned an unusable {step.value} result: {exc}")
            self._record_failure(self.store.get_session(str(session.id)), step, error)
            raise error from exc
        return session

    def _fail_for_reconciliation(self, session_id: str, payment_reference: str | None, reason: str):
        """Flag a session whose payment went through but whose order was not recorded."""
        session = self.store.get_session(session_id)
        error = PaymentCapturedOrderFailed(str(session.id), payment_reference, reason)
        session.fail(CheckoutStep.PROCESS_PAYMENT, str(error), requires_reconciliation=True)
        self.store.save_session(session)
        logger.critical(
            "Payment captured but order creation failed",
            session_id=session_id,
            payment_reference=payment_reference,
            error=reason,
        )
        return error

    @staticmethod
    def _ensure_not_completed(session: CheckoutSession) -> None:
        if session.status == CheckoutStatus.COMPLETED.value:
            raise PreconditionError(f"Checkout session {session.id} is already completed")

    @staticmethod
    def _ensure_reconciled(session: CheckoutSession) -> None:
        if session.requires_reconciliation:
            raise PaymentCapturedOrderFailed(
                str(session.id),
                session.payment_reference,
                session.last_error or "order creation failed after payment",
            )

    @staticmethod
    def _ensure_matches(session: CheckoutSession, name: str, value) -> None:
        current = getattr(session, name)
        if value is not None and current and str(value) != str(current):
            raise PreconditionError(f"Checkout session {session.id} has {name} {current}, not {value}")

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    def create_checkout_session(
        self,
        user_id: str,
        cart_items: list[dict],
        pricing: Pricing | dict | None = None,
        organization_id: str | None = None,
        location_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        """Start a ``pending`` session from a cart snapshot. No upstream call is made."""
        if isinstance(pricing, dict):
            pricing = Pricing(**pricing)
        pricing = pricing or Pricing()

        command = StartCheckoutSession(
            user_id=user_id,
            organization_id=organization_id,
            location_id=location_id,
            items=json.dumps(cart_items),
            tax=pricing.tax,
            shipping=pricing.shipping,
            currency=pricing.currency,
            idempotency_key=idempotency_key,
        )
        session_id = current_domain.process(command, asynchronous=False)
        session = self.store.get_session(session_id)
        logger.info(
            "Checkout session started",
            session_id=str(session.id),
            user_id=str(user_id),
            items=len(cart_items),
            total=session.total,
        )
        return session

    async def create_cart(self, session_id: str, line_items: list[dict] | None = None) -> CheckoutSession:
        """Create the external cart. Defaults to the session's own cart snapshot."""
        session = self.store.get_session(session_id)
        if session.cart_id:
            logger.info("External cart already exists", session_id=session_id, cart_id=session.cart_id)
            return session
        self._ensure_not_completed(session)

        try:
            result = await self.client.create_cart(line_items or session.cart_items())
        except Exception as exc:
            self._record_failure(session, CheckoutStep.CREATE_CART, exc)
            raise

        self._apply_result(session, CheckoutStep.CREATE_CART, lambda s: s.record_cart(result.cart_id))
        self.store.save_session(session)
        logger.info("Checkout cart created", session_id=session_id, cart_id=result.cart_id)
        return session

    async def add_addresses(self, session_id: str, cart_id: str | None, billing, shipping) -> CheckoutSession:
        """Attach addresses, creating the external checkout."""
        session = self.store.get_session(session_id)
        self._ensure_not_completed(session)
        if not session.cart_id:
            raise PreconditionError(f"Checkout session {session_id} has no cart yet")
        self._ensure_matches(session, "cart_id", cart_id)
        if session.checkout_id:
            logger.info("External checkout already exists", session_id=session_id, checkout_id=session.checkout_id)
            return session

        billing_address = _as_address(billing)
        shipping_address = _as_address(shipping)

        try:
            result = await self.client.create_checkout(
                session.cart_id,
                billing_address.as_payload(),
                shipping_address.as_payload(),
            )
        except Exception as exc:
            self._record_failure(session, CheckoutStep.ADD_ADDRESSES, exc)
            raise

        self._apply_result(
            session,
            CheckoutStep.ADD_ADDRESSES,
            lambda s: s.enter_addresses(
                result.checkout_id,
                billing_address,
                shipping_address,
                consignment_id=result.consignment_id,
            ),
        )
        self.store.save_session(session)
        logger.info("Checkout addresses entered", session_id=session_id, checkout_id=result.checkout_id)
        return session

    async def select_shipping(
        self,
        session_id: str,
        checkout_id: str | None,
        consignment_id: str | None,
        option_id: str,
    ) -> CheckoutSession:
        """Choose a shipping option. Re-selecting the current option is a no-op."""
        session = self.store.get_session(session_id)
        self._ensure_not_completed(session)
        if not session.checkout_id:
            raise PreconditionError(f"Checkout session {session_id} has no checkout yet")
        self._ensure_matches(session, "checkout_id", checkout_id)
        self._ensure_matches(session, "consignment_id", consignment_id)
        if session.status == CheckoutStatus.PAYMENT_PENDING.value:
            raise PreconditionError(f"Checkout session {session_id} is awaiting payment")
        if session.shipping_option_id == str(option_id):
            return session

        consignment_id = consignment_id or session.consignment_id
        if not consignment_id:
            raise PreconditionError(f"Checkout session {session_id} has no consignment to ship")

        try:
            selection = await self.client.select_shipping_option(session.checkout_id, consignment_id, str(option_id))
        except Exception as exc:
            self._record_failure(session, CheckoutStep.SELECT_SHIPPING, exc)
            raise

        self._apply_result(
            session,
            CheckoutStep.SELECT_SHIPPING,
            lambda s: s.select_shipping(option_id, selection.shipping_cost, selection.tax, consignment_id=consignment_id),
        )
        self.store.save_session(session)
        logger.info(
            "Shipping option selected",
            session_id=session_id,
            option_id=str(option_id),
            shipping=session.shipping,
            total=session.total,
        )
        return session

    async def process_payment(self, session_id: str, checkout_id: str | None, payment_data: dict) -> CheckoutSession:
        """Submit payment, then create the order.

        If the payment is accepted but the order cannot be created, the session
        is flagged for reconciliation and ``PaymentCapturedOrderFailed`` is
        raised, now and on every later attempt.
        """
        session = self.store.get_session(session_id)
        self._ensure_reconciled(session)
        self._ensure_not_completed(session)
        if session.status == CheckoutStatus.PAYMENT_PENDING.value:
            # An earlier attempt never recorded its outcome; the payment may have gone through
            raise PreconditionError(
                f"Checkout session {session_id} has a payment in flight; reconcile it before retrying"
            )
        if not session.checkout_id:
            raise PreconditionError(f"Checkout session {session_id} has no checkout yet")
        self._ensure_matches(session, "checkout_id", checkout_id)
        if not session.shipping_option_id:
            raise PreconditionError(f"Checkout session {session_id} has no shipping option selected")

        session.start_payment()
        self.store.save_session(session)

        try:
            payment = await self.client.submit_payment(session.checkout_id, payment_data)
        except Exception as exc:
            self._record_failure(session, CheckoutStep.PROCESS_PAYMENT, exc)
            raise

        try:
            session.record_payment(payment.reference)
        except Exception as exc:
            raise self._fail_for_reconciliation(
                session_id, payment.reference, f"Payment accepted but could not be recorded: {exc}"
            ) from exc
        self.store.save_session(session)

        try:
            order = await self.client.create_order(session.checkout_id)
        except Exception as exc:
            raise self._fail_for_reconciliation(session_id, payment.reference, describe_error(exc)) from exc

        try:
            session.complete(order.order_id)
        except Exception as exc:
            raise self._fail_for_reconciliation(
                session_id, payment.reference, f"Order {order.order_id} was created but could not be recorded: {exc}"
            ) from exc
        self.store.save_session(session)
        logger.info("Checkout completed", session_id=session_id, order_id=order.order_id, total=session.total)
        return session

    # -------------------------------------------------------------------
    # Resume
    # -------------------------------------------------------------------
    async def resume(
        self,
        session_id: str,
        *,
        billing=None,
        shipping=None,
        shipping_option_id: str | None = None,
        consignment_id: str | None = None,
        payment: dict | None = None,
    ) -> CheckoutSession:
        """Continue a session from the first step whose external reference is missing.

        Steps run in order for as long as the inputs they need were given.
        The session is returned as soon as a step lacks its input or the
        checkout completes; failures are raised as from the individual steps.
        """
        session = self.store.get_session(session_id)
        self._ensure_reconciled(session)

        step = session.next_step()
        while step is not None:
            logger.info("Resuming checkout", session_id=session_id, step=step.value, status=session.status)

            if step is CheckoutStep.CREATE_CART:
                session = await self.create_cart(session_id)
            elif step is CheckoutStep.ADD_ADDRESSES:
                if billing is None or shipping is None:
                    break
                session = await self.add_addresses(session_id, session.cart_id, billing, shipping)
            elif step is CheckoutStep.SELECT_SHIPPING:
                if shipping_option_id is None:
                    break
                session = await self.select_shipping(
                    session_id, session.checkout_id, consignment_id, shipping_option_id
                )
            else:
                if payment is None:
                    break
                session = await self.process_payment(session_id, session.checkout_id, payment)

            step = session.next_step()

        return session

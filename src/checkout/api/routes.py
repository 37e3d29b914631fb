"""FastAPI routes for the Checkout domain: sessions, recurring orders, scheduled sweep."""

import json

from fastapi import APIRouter
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from checkout.api.schemas import (
    AddAddressesRequest,
    CheckoutSessionResponse,
    CreateCheckoutSessionRequest,
    CreateRecurringOrderRequest,
    ProcessPaymentRequest,
    ProcessRecurringOrdersResponse,
    RecurringOrderHistoryResponse,
    RecurringOrderResponse,
    ResumeCheckoutRequest,
    SelectShippingRequest,
    ShippingOptionsResponse,
    UpdateRecurringOrderRequest,
)
from checkout.recurring.management import (
    CancelRecurringOrder,
    CreateRecurringOrder,
    PauseRecurringOrder,
    ResumeRecurringOrder,
    UpdateRecurringOrder,
)
from checkout.recurring.recurring_order import RecurringOrder
from checkout.recurring.schedule import RecurringScheduleRunner, describe_frequency
from checkout.session.orchestrator import CheckoutOrchestrator
from checkout.session.session import Pricing
from checkout.store import SessionStore
from shared.errors import PreconditionError


def _orchestrator() -> CheckoutOrchestrator:
    return CheckoutOrchestrator()


def _session_response(session) -> CheckoutSessionResponse:
    return CheckoutSessionResponse.from_session(session)


# ---------------------------------------------------------------------------
# Checkout Session Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout-sessions", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutSessionResponse)
async def create_checkout_session(body: CreateCheckoutSessionRequest) -> CheckoutSessionResponse:
    """Start a checkout session from a cart snapshot."""
    session = _orchestrator().create_checkout_session(
        user_id=body.user_id,
        cart_items=[item.model_dump() for item in body.items],
        pricing=Pricing(tax=body.tax, shipping=body.shipping, currency=body.currency),
        organization_id=body.organization_id,
        location_id=body.location_id,
        idempotency_key=body.idempotency_key,
    )
    return _session_response(session)


@checkout_router.get("", response_model=list[CheckoutSessionResponse])
async def list_checkout_sessions(user_id: str, active_only: bool = True) -> list[CheckoutSessionResponse]:
    sessions = _orchestrator().sessions_for_user(user_id, active_only=active_only)
    return [_session_response(session) for session in sessions]


@checkout_router.get("/{session_id}", response_model=CheckoutSessionResponse)
async def get_checkout_session(session_id: str) -> CheckoutSessionResponse:
    return _session_response(_orchestrator().get_session(session_id))


@checkout_router.post("/{session_id}/cart", response_model=CheckoutSessionResponse)
async def create_cart(session_id: str) -> CheckoutSessionResponse:
    """Create the external cart from the session's cart snapshot."""
    session = await _orchestrator().create_cart(session_id)
    return _session_response(session)


@checkout_router.post("/{session_id}/addresses", response_model=CheckoutSessionResponse)
async def add_addresses(session_id: str, body: AddAddressesRequest) -> CheckoutSessionResponse:
    session = await _orchestrator().add_addresses(
        session_id,
        body.cart_id,
        body.billing.model_dump(exclude_none=True),
        body.shipping.model_dump(exclude_none=True),
    )
    return _session_response(session)


@checkout_router.get("/{session_id}/shipping-options", response_model=ShippingOptionsResponse)
async def get_shipping_options(session_id: str) -> ShippingOptionsResponse:
    orchestrator = _orchestrator()
    session = orchestrator.get_session(session_id)
    if not (session.checkout_id and session.consignment_id):
        raise PreconditionError(f"Checkout session {session_id} has no consignment yet")

    options = await orchestrator.client.get_shipping_options(session.checkout_id, session.consignment_id)
    return ShippingOptionsResponse(
        session_id=session_id,
        consignment_id=session.consignment_id,
        shipping_options=options,
    )


@checkout_router.post("/{session_id}/shipping", response_model=CheckoutSessionResponse)
async def select_shipping(session_id: str, body: SelectShippingRequest) -> CheckoutSessionResponse:
    session = await _orchestrator().select_shipping(
        session_id,
        body.checkout_id,
        body.consignment_id,
        body.option_id,
    )
    return _session_response(session)


@checkout_router.post("/{session_id}/payment", response_model=CheckoutSessionResponse)
async def process_payment(session_id: str, body: ProcessPaymentRequest) -> CheckoutSessionResponse:
    """Submit payment and create the order."""
    session = await _orchestrator().process_payment(session_id, body.checkout_id, body.payment)
    return _session_response(session)


@checkout_router.post("/{session_id}/resume", response_model=CheckoutSessionResponse)
async def resume_checkout(session_id: str, body: ResumeCheckoutRequest) -> CheckoutSessionResponse:
    """Continue from the first step that has not succeeded yet."""
    session = await _orchestrator().resume(
        session_id,
        billing=body.billing.model_dump(exclude_none=True) if body.billing else None,
        shipping=body.shipping.model_dump(exclude_none=True) if body.shipping else None,
        shipping_option_id=body.shipping_option_id,
        consignment_id=body.consignment_id,
        payment=body.payment,
    )
    return _session_response(session)


# ---------------------------------------------------------------------------
# Recurring Order Router
# ---------------------------------------------------------------------------
recurring_router = APIRouter(prefix="/recurring-orders", tags=["recurring-orders"])


def _recurring_response(recurring_order: RecurringOrder) -> RecurringOrderResponse:
    return RecurringOrderResponse(
        id=str(recurring_order.id),
        user_id=str(recurring_order.user_id),
        product_id=recurring_order.product_id,
        variant_id=recurring_order.variant_id,
        quantity=recurring_order.quantity,
        unit_price=recurring_order.unit_price,
        discount_percentage=recurring_order.discount_percentage,
        order_amount=recurring_order.order_amount(),
        frequency=recurring_order.frequency,
        frequency_interval=recurring_order.frequency_interval,
        frequency_display=describe_frequency(recurring_order.frequency, recurring_order.frequency_interval),
        status=recurring_order.status,
        start_date=recurring_order.start_date,
        end_date=recurring_order.end_date,
        next_order_date=recurring_order.next_order_date,
        last_order_date=recurring_order.last_order_date,
        total_orders=recurring_order.total_orders,
        notes=recurring_order.notes,
    )


@recurring_router.post("", status_code=201, response_model=RecurringOrderResponse)
async def create_recurring_order(body: CreateRecurringOrderRequest) -> RecurringOrderResponse:
    command = CreateRecurringOrder(**body.model_dump())
    recurring_order_id = current_domain.process(command, asynchronous=False)
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.get("", response_model=list[RecurringOrderResponse])
async def list_recurring_orders(user_id: str) -> list[RecurringOrderResponse]:
    return [_recurring_response(o) for o in SessionStore().recurring_orders_for_user(user_id)]


@recurring_router.get("/{recurring_order_id}", response_model=RecurringOrderResponse)
async def get_recurring_order(recurring_order_id: str) -> RecurringOrderResponse:
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.patch("/{recurring_order_id}", response_model=RecurringOrderResponse)
async def update_recurring_order(recurring_order_id: str, body: UpdateRecurringOrderRequest) -> RecurringOrderResponse:
    changes = body.model_dump(mode="json", exclude_unset=True)
    if not changes:
        raise ValidationError({"body": ["No fields to update"]})
    command = UpdateRecurringOrder(recurring_order_id=recurring_order_id, changes=json.dumps(changes))
    current_domain.process(command, asynchronous=False)
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.post("/{recurring_order_id}/pause", response_model=RecurringOrderResponse)
async def pause_recurring_order(recurring_order_id: str) -> RecurringOrderResponse:
    current_domain.process(PauseRecurringOrder(recurring_order_id=recurring_order_id), asynchronous=False)
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.post("/{recurring_order_id}/resume", response_model=RecurringOrderResponse)
async def resume_recurring_order(recurring_order_id: str) -> RecurringOrderResponse:
    current_domain.process(ResumeRecurringOrder(recurring_order_id=recurring_order_id), asynchronous=False)
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.post("/{recurring_order_id}/cancel", response_model=RecurringOrderResponse)
async def cancel_recurring_order(recurring_order_id: str) -> RecurringOrderResponse:
    current_domain.process(CancelRecurringOrder(recurring_order_id=recurring_order_id), asynchronous=False)
    return _recurring_response(SessionStore().get_recurring_order(recurring_order_id))


@recurring_router.get("/{recurring_order_id}/history", response_model=list[RecurringOrderHistoryResponse])
async def recurring_order_history(recurring_order_id: str) -> list[RecurringOrderHistoryResponse]:
    store = SessionStore()
    store.get_recurring_order(recurring_order_id)
    return [
        RecurringOrderHistoryResponse(
            id=str(row.id),
            recurring_order_id=str(row.recurring_order_id),
            checkout_session_id=str(row.checkout_session_id) if row.checkout_session_id else None,
            scheduled_date=row.scheduled_date,
            status=row.status,
            amount=row.amount,
            error_message=row.error_message,
            created_at=row.created_at,
        )
        for row in store.history_for(recurring_order_id)
    ]


# ---------------------------------------------------------------------------
# Scheduled sweep
# ---------------------------------------------------------------------------
schedule_router = APIRouter(tags=["recurring-orders"])


@schedule_router.post("/process-recurring-orders", response_model=ProcessRecurringOrdersResponse)
async def process_recurring_orders() -> ProcessRecurringOrdersResponse:
    """Run one sweep of the recurring schedule."""
    summary = await RecurringScheduleRunner().run()
    return ProcessRecurringOrdersResponse(**summary)

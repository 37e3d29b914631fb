"""Checkout session initiation: command and handler.

Creates a ``pending`` CheckoutSession from a cart snapshot. Nothing is sent
upstream; the external cart is created by the orchestrator's next step.
"""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text

from checkout.domain import checkout
from checkout.session.session import CheckoutSession, Pricing
from checkout.store import SessionStore


@checkout.command(part_of="CheckoutSession")
class StartCheckoutSession:
    """Start a checkout for a shopper's cart."""

    user_id = Identifier(required=True)
    organization_id = Identifier()
    location_id = Identifier()
    items = Text(required=True)  # JSON: list of {product_id, variant_id, name, quantity, unit_price}
    tax = Float(default=0.0)
    shipping = Float(default=0.0)
    currency = String(max_length=3, default="USD")
    idempotency_key = String(max_length=255)


@checkout.command_handler(part_of=CheckoutSession)
class StartCheckoutSessionHandler:
    @handle(StartCheckoutSession)
    def start_checkout_session(self, command):
        items = json.loads(command.items) if isinstance(command.items, str) else command.items
        session = CheckoutSession.create(
            user_id=command.user_id,
            items=items,
            pricing=Pricing(
                tax=command.tax or 0.0,
                shipping=command.shipping or 0.0,
                currency=command.currency or "USD",
            ),
            organization_id=command.organization_id,
            location_id=command.location_id,
            idempotency_key=command.idempotency_key,
        )
        SessionStore().insert_session(session)
        return str(session.id)

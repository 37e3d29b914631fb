"""Domain events for the CheckoutSession aggregate.

One event per transition of the checkout state machine. Events are raised by
the aggregate and written to the event store when the session is persisted,
giving an audit trail of every step, including failed attempts.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from checkout.domain import checkout


@checkout.event(part_of="CheckoutSession")
class CheckoutSessionStarted:
    """A shopper started a checkout from a cart snapshot."""

    __version__ = "v1"

    session_id = Identifier(required=True)
    user_id = Identifier(required=True)
    organization_id = Identifier()
    item_count = Integer(required=True)
    subtotal = Float(required=True)
    total = Float(required=True)
    currency = String(required=True)
    started_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class ExternalCartCreated:
    """The cart snapshot now exists upstream."""

    __version__ = "v1"

    session_id = Identifier(required=True)
    cart_id = String(required=True)
    created_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutAddressesEntered:
    """Billing and shipping addresses were attached, creating the upstream checkout."""

    __version__ = "v1"

    session_id = Identifier(required=True)
    cart_id = String(required=True)
    checkout_id = String(required=True)
    consignment_id = String()
    entered_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class ShippingOptionSelected:
    __version__ = "v1"

    session_id = Identifier(required=True)
    checkout_id = String(required=True)
    shipping_option_id = String(required=True)
    shipping = Float(required=True)
    tax = Float(required=True)
    total = Float(required=True)
    selected_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class PaymentSubmissionStarted:
    __version__ = "v1"

    session_id = Identifier(required=True)
    checkout_id = String(required=True)
    total = Float(required=True)
    started_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class PaymentCaptured:
    """The payment processor accepted the payment. The order may not exist yet."""

    __version__ = "v1"

    session_id = Identifier(required=True)
    checkout_id = String(required=True)
    payment_reference = String()
    amount = Float(required=True)
    captured_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutCompleted:
    __version__ = "v1"

    session_id = Identifier(required=True)
    user_id = Identifier(required=True)
    order_id = String(required=True)
    total = Float(required=True)
    currency = String(required=True)
    completed_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutFailed:
    """A checkout step failed. External references acquired so far are kept."""

    __version__ = "v1"

    session_id = Identifier(required=True)
    step = String(required=True)
    error = String(required=True, max_length=1000)
    retryable = Boolean(required=True)
    requires_reconciliation = Boolean(default=False)
    failed_at = DateTime(required=True)

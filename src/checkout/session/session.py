"""CheckoutSession aggregate (CQRS): the core of the checkout domain.

A session tracks one shopper's progress through the headless checkout flow.
Every step is one call to the commerce API followed by one write, so the
aggregate only ever records what the upstream system has already accepted.

State Machine:
    PENDING → ADDRESS_ENTERED → PAYMENT_PENDING → COMPLETED
    any non-terminal → FAILED
    FAILED → PENDING | ADDRESS_ENTERED | PAYMENT_PENDING (retry from the
             first step whose external reference is still missing)

External references (cart, checkout and order ids) are monotonic: once set
they are never cleared or replaced, not even when the session fails.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from checkout.domain import checkout
from checkout.session.events import (
    CheckoutAddressesEntered,
    CheckoutCompleted,
    CheckoutFailed,
    CheckoutSessionStarted,
    ExternalCartCreated,
    PaymentCaptured,
    PaymentSubmissionStarted,
    ShippingOptionSelected,
)
from shared.errors import PreconditionError

SESSION_TTL = timedelta(hours=24)
MAX_ERROR_LENGTH = 1000

_CENT = Decimal("0.01")


def to_cents(value) -> float:
    """Round a money amount to cents, half up."""
    return float(Decimal(str(value or 0)).quantize(_CENT, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class CheckoutStatus(Enum):
    PENDING = "pending"
    ADDRESS_ENTERED = "address_entered"
    PAYMENT_PENDING = "payment_pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckoutStep(Enum):
    CREATE_CART = "create_cart"
    ADD_ADDRESSES = "add_addresses"
    SELECT_SHIPPING = "select_shipping"
    PROCESS_PAYMENT = "process_payment"


_VALID_TRANSITIONS = {
    CheckoutStatus.PENDING: {CheckoutStatus.PENDING, CheckoutStatus.ADDRESS_ENTERED, CheckoutStatus.FAILED},
    CheckoutStatus.ADDRESS_ENTERED: {
        CheckoutStatus.ADDRESS_ENTERED,  # shipping re-selected
        CheckoutStatus.PAYMENT_PENDING,
        CheckoutStatus.FAILED,
    },
    CheckoutStatus.PAYMENT_PENDING: {CheckoutStatus.COMPLETED, CheckoutStatus.FAILED},
    CheckoutStatus.FAILED: {
        CheckoutStatus.PENDING,
        CheckoutStatus.ADDRESS_ENTERED,
        CheckoutStatus.PAYMENT_PENDING,
        CheckoutStatus.FAILED,
    },
    CheckoutStatus.COMPLETED: set(),  # Terminal
}

# Statuses that can only be reached once the upstream checkout exists
_STATUSES_REQUIRING_CHECKOUT = {
    CheckoutStatus.ADDRESS_ENTERED.value,
    CheckoutStatus.PAYMENT_PENDING.value,
    CheckoutStatus.COMPLETED.value,
}


@dataclass(frozen=True)
class Pricing:
    """Tax and shipping known when the session starts; both default to zero."""

    tax: float = 0.0
    shipping: float = 0.0
    currency: str = "USD"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@checkout.value_object(part_of="CheckoutSession")
class Address:
    """A postal and contact record, in the shape the commerce API expects."""

    first_name = String(max_length=100)
    last_name = String(max_length=100)
    email = String(max_length=255)
    company = String(max_length=255)
    address1 = String(required=True, max_length=255)
    address2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state_or_province = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country_code = String(required=True, max_length=2)
    phone = String(max_length=50)

    def as_payload(self) -> dict:
        return {key: value for key, value in self.to_dict().items() if value not in (None, "")}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@checkout.entity(part_of="CheckoutSession")
class LineItem:
    """A cart line captured when the session started. Never changed afterwards."""

    product_id = Integer(required=True)
    variant_id = Integer()
    name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)

    def as_cart_item(self) -> dict:
        item = {"product_id": self.product_id, "quantity": self.quantity}
        if self.variant_id:
            item["variant_id"] = self.variant_id
        return item


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@checkout.aggregate
class CheckoutSession:
    # Owner. Organization and location scope contract pricing only.
    user_id = Identifier(required=True)
    organization_id = Identifier()
    location_id = Identifier()

    line_items = HasMany(LineItem)

    # External references
    cart_id = String(max_length=255)
    checkout_id = String(max_length=255)
    order_id = String(max_length=255)
    consignment_id = String(max_length=255)
    shipping_option_id = String(max_length=255)

    billing_address = ValueObject(Address)
    shipping_address = ValueObject(Address)

    subtotal = Float(default=0.0)
    tax = Float(default=0.0)
    shipping = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="USD")

    status = String(choices=CheckoutStatus, default=CheckoutStatus.PENDING.value)
    last_error = String(max_length=MAX_ERROR_LENGTH)
    error_log = Text()  # JSON list of {timestamp, step, error, retryable}
    retry_count = Integer(default=0)

    payment_reference = String(max_length=255)
    payment_captured = Boolean(default=False)
    requires_reconciliation = Boolean(default=False)

    idempotency_key = String(max_length=255)
    lock_version = Integer(default=0)

    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()
    expires_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def money_fields_cannot_be_negative(self):
        for name in ("subtotal", "tax", "shipping", "total"):
            if (getattr(self, name) or 0.0) < 0:
                raise ValidationError({name: ["Amount cannot be negative"]})

    @invariant.post
    def total_must_equal_sum_of_components(self):
        expected = to_cents((self.subtotal or 0.0) + (self.tax or 0.0) + (self.shipping or 0.0))
        if abs((self.total or 0.0) - expected) > 0.001:
            raise ValidationError(
                {"total": [f"Total {self.total} does not equal subtotal + tax + shipping ({expected})"]}
            )

    @invariant.post
    def checkout_references_required_past_pending(self):
        if self.status in _STATUSES_REQUIRING_CHECKOUT and not (self.cart_id and self.checkout_id):
            raise ValidationError({"status": [f"Status {self.status} requires a cart and a checkout"]})

    @invariant.post
    def order_id_only_when_completed(self):
        if bool(self.order_id) != (self.status == CheckoutStatus.COMPLETED.value):
            raise ValidationError({"order_id": ["An order id is recorded if and only if the checkout is completed"]})

    @invariant.post
    def last_error_only_when_failed(self):
        if self.last_error and self.status != CheckoutStatus.FAILED.value:
            raise ValidationError({"last_error": ["Only failed checkouts carry an error"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        user_id,
        items,
        pricing=None,
        organization_id=None,
        location_id=None,
        idempotency_key=None,
    ):
        """Start a checkout from a cart snapshot.

        Args:
            user_id: The shopper.
            items: List of dicts with product_id, quantity, unit_price and
                optionally variant_id and name.
            pricing: ``Pricing`` with tax and shipping known up front.
        """
        if not items:
            raise ValidationError({"line_items": ["Cart must contain at least one item"]})
        for item in items:
            if (item.get("quantity") or 0) <= 0:
                raise ValidationError({"quantity": [f"Quantity for product {item.get('product_id')} must be positive"]})

        pricing = pricing or Pricing()
        now = datetime.now(UTC)
        subtotal = to_cents(sum(Decimal(str(i.get("unit_price") or 0)) * i["quantity"] for i in items))
        tax = to_cents(pricing.tax)
        shipping = to_cents(pricing.shipping)

        session = cls(
            user_id=user_id,
            organization_id=organization_id,
            location_id=location_id,
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=to_cents(subtotal + tax + shipping),
            currency=pricing.currency,
            status=CheckoutStatus.PENDING.value,
            error_log=json.dumps([]),
            retry_count=0,
            idempotency_key=idempotency_key,
            lock_version=0,
            created_at=now,
            updated_at=now,
            expires_at=now + SESSION_TTL,
        )
        for item in items:
            session.add_line_items(
                LineItem(
                    product_id=item["product_id"],
                    variant_id=item.get("variant_id"),
                    name=item.get("name"),
                    quantity=item["quantity"],
                    unit_price=item.get("unit_price") or 0.0,
                )
            )

        session.raise_(
            CheckoutSessionStarted(
                session_id=str(session.id),
                user_id=str(user_id),
                organization_id=str(organization_id) if organization_id else None,
                item_count=len(items),
                subtotal=session.subtotal,
                total=session.total,
                currency=session.currency,
                started_at=now,
            )
        )
        return session

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: CheckoutStatus) -> None:
        current = CheckoutStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise PreconditionError(
                f"Checkout session {self.id} cannot move from {current.value} to {target_status.value}"
            )

    def _assign_reference(self, name: str, value) -> None:
        """Set an external reference. Set references are never replaced."""
        current = getattr(self, name)
        if current and str(current) != str(value):
            raise PreconditionError(f"Checkout session {self.id} already has {name} {current}, refusing {value}")
        setattr(self, name, str(value))

    def _enter(self, target_status: CheckoutStatus, now: datetime) -> None:
        """Record a successful transition. Call inside ``atomic_change``."""
        self.status = target_status.value
        self.last_error = None
        self.updated_at = now

    def _recalculate_total(self) -> None:
        self.total = to_cents(self.subtotal + self.tax + self.shipping)

    @property
    def error_history(self) -> list[dict]:
        return json.loads(self.error_log) if self.error_log else []

    def cart_items(self) -> list[dict]:
        return [item.as_cart_item() for item in self.line_items]

    def next_step(self) -> CheckoutStep | None:
        """The first step whose external reference is still missing."""
        if self.status == CheckoutStatus.COMPLETED.value:
            return None
        if not self.cart_id:
            return CheckoutStep.CREATE_CART
        if not self.checkout_id:
            return CheckoutStep.ADD_ADDRESSES
        if not self.shipping_option_id:
            return CheckoutStep.SELECT_SHIPPING
        return CheckoutStep.PROCESS_PAYMENT

    def is_expired(self, as_of: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        as_of = as_of or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None and as_of.tzinfo is not None:
            expires_at = expires_at.replace(tzinfo=as_of.tzinfo)
        elif expires_at.tzinfo is not None and as_of.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=None)
        return expires_at <= as_of

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def record_cart(self, cart_id: str) -> None:
        """Record the external cart. Re-recording the same cart is a no-op."""
        if self.cart_id and str(self.cart_id) == str(cart_id):
            return
        self._assert_can_transition(CheckoutStatus.PENDING)

        now = datetime.now(UTC)
        with atomic_change(self):
            self._assign_reference("cart_id", cart_id)
            self._enter(CheckoutStatus.PENDING, now)

        self.raise_(ExternalCartCreated(session_id=str(self.id), cart_id=str(cart_id), created_at=now))

    def enter_addresses(self, checkout_id: str, billing: Address, shipping: Address, consignment_id=None) -> None:
        if not self.cart_id:
            raise PreconditionError(f"Checkout session {self.id} has no cart yet")
        self._assert_can_transition(CheckoutStatus.ADDRESS_ENTERED)

        now = datetime.now(UTC)
        with atomic_change(self):
            self._assign_reference("checkout_id", checkout_id)
            if consignment_id:
                self._assign_reference("consignment_id", consignment_id)
            self.billing_address = billing
            self.shipping_address = shipping
            self._enter(CheckoutStatus.ADDRESS_ENTERED, now)

        self.raise_(
            CheckoutAddressesEntered(
                session_id=str(self.id),
                cart_id=self.cart_id,
                checkout_id=self.checkout_id,
                consignment_id=self.consignment_id,
                entered_at=now,
            )
        )

    def select_shipping(self, option_id: str, shipping_cost: float, tax: float | None = None, consignment_id=None):
        """Record the chosen shipping option and recompute the total."""
        if not self.checkout_id:
            raise PreconditionError(f"Checkout session {self.id} has no checkout yet")
        self._assert_can_transition(CheckoutStatus.ADDRESS_ENTERED)

        now = datetime.now(UTC)
        with atomic_change(self):
            if consignment_id:
                self._assign_reference("consignment_id", consignment_id)
            self.shipping_option_id = str(option_id)
            self.shipping = to_cents(shipping_cost)
            if tax is not None:
                self.tax = to_cents(tax)
            self._recalculate_total()
            self._enter(CheckoutStatus.ADDRESS_ENTERED, now)

        self.raise_(
            ShippingOptionSelected(
                session_id=str(self.id),
                checkout_id=self.checkout_id,
                shipping_option_id=self.shipping_option_id,
                shipping=self.shipping,
                tax=self.tax,
                total=self.total,
                selected_at=now,
            )
        )

    def start_payment(self) -> None:
        if not self.checkout_id:
            raise PreconditionError(f"Checkout session {self.id} has no checkout yet")
        self._assert_can_transition(CheckoutStatus.PAYMENT_PENDING)

        now = datetime.now(UTC)
        with atomic_change(self):
            self._enter(CheckoutStatus.PAYMENT_PENDING, now)

        self.raise_(
            PaymentSubmissionStarted(
                session_id=str(self.id),
                checkout_id=self.checkout_id,
                total=self.total,
                started_at=now,
            )
        )

    def record_payment(self, reference: str | None) -> None:
        if self.status != CheckoutStatus.PAYMENT_PENDING.value:
            raise PreconditionError(f"Checkout session {self.id} is not awaiting payment")

        now = datetime.now(UTC)
        with atomic_change(self):
            if reference:
                self._assign_reference("payment_reference", reference)
            self.payment_captured = True
            self.updated_at = now

        self.raise_(
            PaymentCaptured(
                session_id=str(self.id),
                checkout_id=self.checkout_id,
                payment_reference=self.payment_reference,
                amount=self.total,
                captured_at=now,
            )
        )

    def complete(self, order_id: str) -> None:
        self._assert_can_transition(CheckoutStatus.COMPLETED)

        now = datetime.now(UTC)
        with atomic_change(self):
            self._assign_reference("order_id", order_id)
            self._enter(CheckoutStatus.COMPLETED, now)
            self.completed_at = now

        self.raise_(
            CheckoutCompleted(
                session_id=str(self.id),
                user_id=str(self.user_id),
                order_id=self.order_id,
                total=self.total,
                currency=self.currency,
                completed_at=now,
            )
        )

    def fail(self, step: CheckoutStep, error: str, retryable: bool = False, requires_reconciliation: bool = False):
        """Mark the session failed. External references are left untouched."""
        self._assert_can_transition(CheckoutStatus.FAILED)

        now = datetime.now(UTC)
        message = (error or "Unknown error")[:MAX_ERROR_LENGTH]
        log = self.error_history
        log.append({"timestamp": now.isoformat(), "step": step.value, "error": message, "retryable": retryable})

        with atomic_change(self):
            self.status = CheckoutStatus.FAILED.value
            self.last_error = message
            self.error_log = json.dumps(log)
            self.retry_count = (self.retry_count or 0) + 1
            if requires_reconciliation:
                self.requires_reconciliation = True
            self.updated_at = now

        self.raise_(
            CheckoutFailed(
                session_id=str(self.id),
                step=step.value,
                error=message,
                retryable=retryable,
                requires_reconciliation=bool(self.requires_reconciliation),
                failed_at=now,
            )
        )

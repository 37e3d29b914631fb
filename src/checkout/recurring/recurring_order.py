"""RecurringOrder aggregate: a standing instruction to re-run checkout on a schedule.

State Machine:
    ACTIVE ⇄ PAUSED
    ACTIVE | PAUSED → CANCELLED (terminal)

Only the schedule runner moves ``next_order_date``, ``last_order_date`` and
``total_orders`` forward, once per attempted run, whether or not the order
that run started eventually goes through.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Date, DateTime, Float, Identifier, Integer, String, Text

from checkout.domain import checkout
from checkout.recurring.events import (
    RecurringOrderAdvanced,
    RecurringOrderCreated,
    RecurringOrderStatusChanged,
)
from checkout.session.session import to_cents


class RecurringFrequency(Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RecurringStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


_VALID_TRANSITIONS = {
    RecurringStatus.ACTIVE: {RecurringStatus.PAUSED, RecurringStatus.CANCELLED},
    RecurringStatus.PAUSED: {RecurringStatus.ACTIVE, RecurringStatus.CANCELLED},
    RecurringStatus.CANCELLED: set(),  # Terminal
}


@checkout.aggregate
class RecurringOrder:
    user_id = Identifier(required=True)
    organization_id = Identifier()
    location_id = Identifier()

    product_id = Integer(required=True)
    variant_id = Integer()
    product_name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(default=0.0, min_value=0.0)
    discount_percentage = Float(default=0.0, min_value=0.0, max_value=100.0)

    frequency = String(choices=RecurringFrequency, required=True)
    frequency_interval = Integer(default=1, min_value=1)
    start_date = Date(required=True)
    end_date = Date()
    next_order_date = Date(required=True)
    last_order_date = Date()
    total_orders = Integer(default=0, min_value=0)

    status = String(choices=RecurringStatus, default=RecurringStatus.ACTIVE.value)
    notes = Text()

    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def end_date_cannot_precede_start_date(self):
        if self.end_date and self.start_date and self.end_date < self.start_date:
            raise ValidationError({"end_date": ["End date cannot be before the start date"]})

    @classmethod
    def create(
        cls,
        user_id,
        product_id,
        quantity,
        frequency,
        frequency_interval=1,
        unit_price=0.0,
        variant_id=None,
        product_name=None,
        organization_id=None,
        location_id=None,
        discount_percentage=0.0,
        start_date=None,
        end_date=None,
        notes=None,
    ):
        """Create an active recurring order. The first run is due on the start date."""
        now = datetime.now(UTC)
        start_date = start_date or now.date()

        recurring_order = cls(
            user_id=user_id,
            organization_id=organization_id,
            location_id=location_id,
            product_id=product_id,
            variant_id=variant_id,
            product_name=product_name,
            quantity=quantity,
            unit_price=unit_price or 0.0,
            discount_percentage=discount_percentage or 0.0,
            frequency=frequency,
            frequency_interval=frequency_interval or 1,
            start_date=start_date,
            end_date=end_date,
            next_order_date=start_date,
            total_orders=0,
            status=RecurringStatus.ACTIVE.value,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        recurring_order.raise_(
            RecurringOrderCreated(
                recurring_order_id=str(recurring_order.id),
                user_id=str(user_id),
                product_id=product_id,
                quantity=quantity,
                frequency=recurring_order.frequency,
                frequency_interval=recurring_order.frequency_interval,
                next_order_date=start_date,
                created_at=now,
            )
        )
        return recurring_order

    def _transition_to(self, target_status: RecurringStatus) -> None:
        current = RecurringStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = target_status.value
            self.updated_at = now

        self.raise_(
            RecurringOrderStatusChanged(
                recurring_order_id=str(self.id),
                previous_status=current.value,
                new_status=target_status.value,
                changed_at=now,
            )
        )

    def pause(self) -> None:
        self._transition_to(RecurringStatus.PAUSED)

    def resume(self) -> None:
        self._transition_to(RecurringStatus.ACTIVE)

    def cancel(self) -> None:
        self._transition_to(RecurringStatus.CANCELLED)

    def is_due(self, on: date) -> bool:
        return self.status == RecurringStatus.ACTIVE.value and self.next_order_date <= on

    def discounted_unit_price(self) -> float:
        discount = Decimal(str(self.discount_percentage or 0))
        return to_cents(Decimal(str(self.unit_price or 0)) * (100 - discount) / 100)

    def order_amount(self) -> float:
        """Price of one run: the discounted unit price times quantity."""
        return to_cents(Decimal(str(self.discounted_unit_price())) * self.quantity)

    def advance(self, run_date: date, next_order_date: date) -> None:
        """Record an attempted run and schedule the next one."""
        now = datetime.now(UTC)
        with atomic_change(self):
            self.last_order_date = run_date
            self.next_order_date = next_order_date
            self.total_orders = (self.total_orders or 0) + 1
            self.updated_at = now

        self.raise_(
            RecurringOrderAdvanced(
                recurring_order_id=str(self.id),
                run_date=run_date,
                next_order_date=next_order_date,
                total_orders=self.total_orders,
                advanced_at=now,
            )
        )

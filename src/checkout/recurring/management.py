"""Recurring order management: commands and handler.

Handles creation, field updates and the pause / resume / cancel lifecycle.
Schedule fields (next and last run dates, run count) are left to the
schedule runner.
"""

import json
from datetime import date

from protean import handle
from protean.fields import Date, Float, Identifier, Integer, String, Text

from checkout.domain import checkout
from checkout.recurring.recurring_order import RecurringOrder
from checkout.store import SessionStore


@checkout.command(part_of="RecurringOrder")
class CreateRecurringOrder:
    """Set up a standing order for one product."""

    user_id = Identifier(required=True)
    organization_id = Identifier()
    location_id = Identifier()
    product_id = Integer(required=True)
    variant_id = Integer()
    product_name = String(max_length=255)
    quantity = Integer(required=True)
    unit_price = Float(default=0.0)
    discount_percentage = Float(default=0.0)
    frequency = String(required=True, max_length=20)
    frequency_interval = Integer(default=1)
    start_date = Date()
    end_date = Date()
    notes = Text()


@checkout.command(part_of="RecurringOrder")
class UpdateRecurringOrder:
    """Change plain fields of a recurring order."""

    recurring_order_id = Identifier(required=True)
    changes = Text(required=True)  # JSON: {field: value}, only the fields being changed


@checkout.command(part_of="RecurringOrder")
class PauseRecurringOrder:
    recurring_order_id = Identifier(required=True)


@checkout.command(part_of="RecurringOrder")
class ResumeRecurringOrder:
    recurring_order_id = Identifier(required=True)


@checkout.command(part_of="RecurringOrder")
class CancelRecurringOrder:
    """Stop a recurring order for good."""

    recurring_order_id = Identifier(required=True)


@checkout.command_handler(part_of=RecurringOrder)
class ManageRecurringOrderHandler:
    @handle(CreateRecurringOrder)
    def create_recurring_order(self, command):
        recurring_order = RecurringOrder.create(
            user_id=command.user_id,
            organization_id=command.organization_id,
            location_id=command.location_id,
            product_id=command.product_id,
            variant_id=command.variant_id,
            product_name=command.product_name,
            quantity=command.quantity,
            unit_price=command.unit_price,
            discount_percentage=command.discount_percentage,
            frequency=command.frequency,
            frequency_interval=command.frequency_interval,
            start_date=command.start_date,
            end_date=command.end_date,
            notes=command.notes,
        )
        SessionStore().insert_recurring_order(recurring_order)
        return str(recurring_order.id)

    @handle(UpdateRecurringOrder)
    def update_recurring_order(self, command):
        changes = json.loads(command.changes) if isinstance(command.changes, str) else dict(command.changes)
        if isinstance(changes.get("end_date"), str):
            changes["end_date"] = date.fromisoformat(changes["end_date"])
        SessionStore().update_recurring_order(command.recurring_order_id, **changes)

    @handle(PauseRecurringOrder)
    def pause_recurring_order(self, command):
        store = SessionStore()
        recurring_order = store.get_recurring_order(command.recurring_order_id)
        recurring_order.pause()
        store.save_recurring_order(recurring_order)

    @handle(ResumeRecurringOrder)
    def resume_recurring_order(self, command):
        store = SessionStore()
        recurring_order = store.get_recurring_order(command.recurring_order_id)
        recurring_order.resume()
        store.save_recurring_order(recurring_order)

    @handle(CancelRecurringOrder)
    def cancel_recurring_order(self, command):
        store = SessionStore()
        recurring_order = store.get_recurring_order(command.recurring_order_id)
        recurring_order.cancel()
        store.save_recurring_order(recurring_order)

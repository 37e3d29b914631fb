"""Domain events for the RecurringOrder aggregate."""

from protean.fields import Date, DateTime, Identifier, Integer, String

from checkout.domain import checkout


@checkout.event(part_of="RecurringOrder")
class RecurringOrderCreated:
    __version__ = "v1"

    recurring_order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    product_id = Integer(required=True)
    quantity = Integer(required=True)
    frequency = String(required=True)
    frequency_interval = Integer(required=True)
    next_order_date = Date(required=True)
    created_at = DateTime(required=True)


@checkout.event(part_of="RecurringOrder")
class RecurringOrderStatusChanged:
    """The order was paused, resumed or cancelled."""

    __version__ = "v1"

    recurring_order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@checkout.event(part_of="RecurringOrder")
class RecurringOrderAdvanced:
    """A scheduled run was attempted and the schedule moved forward."""

    __version__ = "v1"

    recurring_order_id = Identifier(required=True)
    run_date = Date(required=True)
    next_order_date = Date(required=True)
    total_orders = Integer(required=True)
    advanced_at = DateTime(required=True)

"""RecurringOrderHistory: append-only record of every attempted recurring run.

Rows are written only by the schedule runner and never updated. A run that
fails after its ``pending`` row was written gets a second, ``failed`` row,
so the history reads as an audit trail independent of the mutable
RecurringOrder.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import Date, DateTime, Float, Identifier, String

from checkout.domain import checkout


class RunStatus(Enum):
    PENDING = "pending"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@checkout.aggregate
class RecurringOrderHistory:
    recurring_order_id = Identifier(required=True)
    checkout_session_id = Identifier()
    scheduled_date = Date(required=True)
    status = String(choices=RunStatus, required=True)
    amount = Float(default=0.0, min_value=0.0)
    error_message = String(max_length=1000)
    created_at = DateTime()

    @classmethod
    def record(cls, recurring_order_id, scheduled_date, status: RunStatus, amount=0.0, session_id=None, error=None):
        return cls(
            recurring_order_id=recurring_order_id,
            checkout_session_id=session_id,
            scheduled_date=scheduled_date,
            status=status.value,
            amount=amount or 0.0,
            error_message=error[:1000] if error else None,
            created_at=datetime.now(UTC),
        )

"""Recurring Schedule Runner: re-enters the checkout pipeline for due recurring orders.

Invoked once per sweep by the scheduled endpoint or the CLI. Every due
order is processed on its own: a failure is recorded against that order
and the sweep carries on with the next one.

For each due order the runner
    1. starts a checkout session from the recurring order,
    2. appends a ``pending`` history row linked to that session,
    3. moves the schedule forward (next date, last date, run count),
    4. asks the orchestrator to create the external cart.

Any exception in these steps appends a ``failed`` history row. The schedule
is not rolled back once it has moved: the run counts as attempted.
"""

import calendar
from datetime import UTC, date, datetime, timedelta

import structlog

from checkout.recurring.history import RecurringOrderHistory, RunStatus
from checkout.recurring.recurring_order import RecurringOrder
from checkout.session.orchestrator import CheckoutOrchestrator, describe_error
from checkout.store import SessionStore
from shared.errors import StorageError

logger = structlog.get_logger(__name__)

NO_DUE_ORDERS_MESSAGE = "No recurring orders due for processing"


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the end of a shorter month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_order_date(current: date | str, frequency: str, interval: int = 1) -> date:
    """Next run date after ``current``.

    >>> calculate_next_order_date("2024-01-31", "monthly", 1)
    datetime.date(2024, 2, 29)
    >>> calculate_next_order_date("2024-01-01", "weekly", 2)
    datetime.date(2024, 1, 15)
    """
    if isinstance(current, str):
        current = date.fromisoformat(current)
    interval = interval or 1

    if frequency == "weekly":
        return current + timedelta(days=7 * interval)
    if frequency == "biweekly":
        return current + timedelta(days=14 * interval)
    if frequency == "monthly":
        return add_months(current, interval)
    if frequency == "quarterly":
        return add_months(current, 3 * interval)
    if frequency == "yearly":
        return add_months(current, 12 * interval)
    return current + timedelta(days=30 * interval)


def describe_frequency(frequency: str, interval: int = 1) -> str:
    """Shopper-facing wording for a schedule, e.g. "Every 2 weeks"."""
    if interval == 1:
        return {
            "weekly": "Every week",
            "biweekly": "Every 2 weeks",
            "monthly": "Every month",
            "quarterly": "Every 3 months",
            "yearly": "Every year",
        }.get(frequency, frequency)

    return {
        "weekly": f"Every {interval} weeks",
        "biweekly": f"Every {interval * 2} weeks",
        "monthly": f"Every {interval} months",
        "quarterly": f"Every {interval * 3} months",
        "yearly": f"Every {interval} years",
    }.get(frequency, f"{frequency} ({interval}x)")


class RecurringScheduleRunner:
    def __init__(self, orchestrator: CheckoutOrchestrator | None = None, store: SessionStore | None = None) -> None:
        self.store = store or SessionStore()
        self.orchestrator = orchestrator or CheckoutOrchestrator(store=self.store)

    async def run(self, today: date | None = None) -> dict:
        """Process every active recurring order due on or before ``today``."""
        today = today or datetime.now(UTC).date()
        logger.info("Processing recurring orders", date=today.isoformat())

        due = self.store.due_recurring_orders(today)
        if not due:
            return {
                "success": True,
                "processed": 0,
                "failed": 0,
                "errors": [],
                "message": NO_DUE_ORDERS_MESSAGE,
            }

        logger.info("Found due recurring orders", count=len(due))
        processed = 0
        failed = 0
        errors: list[str] = []

        for recurring_order in due:
            scheduled_date = recurring_order.next_order_date
            try:
                await self._process(recurring_order, today)
                processed += 1
            except Exception as exc:
                failed += 1
                message = describe_error(exc)
                errors.append(f"RecurringOrder {recurring_order.id}: {message}")
                logger.error(
                    "Recurring order run failed",
                    recurring_order_id=str(recurring_order.id),
                    scheduled_date=scheduled_date.isoformat(),
                    error=message,
                )
                self._record_failed_run(recurring_order, scheduled_date, message)

        summary = {
            "success": True,
            "processed": processed,
            "failed": failed,
            "errors": errors,
            "message": f"Processed {processed} recurring orders, {failed} failed",
        }
        logger.info("Recurring orders processed", processed=processed, failed=failed)
        return summary

    def _record_failed_run(self, recurring_order: RecurringOrder, scheduled_date: date, message: str) -> None:
        try:
            self.store.insert_history(
                RecurringOrderHistory.record(
                    recurring_order.id,
                    scheduled_date,
                    RunStatus.FAILED,
                    amount=0.0,
                    error=message,
                )
            )
        except StorageError as exc:
            logger.error(
                "Could not record failed recurring run",
                recurring_order_id=str(recurring_order.id),
                error=str(exc),
            )

    async def _process(self, recurring_order: RecurringOrder, today: date) -> None:
        scheduled_date = recurring_order.next_order_date
        next_date = calculate_next_order_date(
            scheduled_date,
            recurring_order.frequency,
            recurring_order.frequency_interval,
        )

        session = self.orchestrator.create_checkout_session(
            user_id=recurring_order.user_id,
            cart_items=[
                {
                    "product_id": recurring_order.product_id,
                    "variant_id": recurring_order.variant_id,
                    "name": recurring_order.product_name,
                    "quantity": recurring_order.quantity,
                    "unit_price": recurring_order.discounted_unit_price(),
                }
            ],
            organization_id=recurring_order.organization_id,
            location_id=recurring_order.location_id,
            idempotency_key=f"recurring-{recurring_order.id}-{scheduled_date.isoformat()}",
        )

        self.store.insert_history(
            RecurringOrderHistory.record(
                recurring_order.id,
                scheduled_date,
                RunStatus.PENDING,
                amount=session.total,
                session_id=session.id,
            )
        )

        recurring_order.advance(today, next_date)
        self.store.save_recurring_order(recurring_order)

        await self.orchestrator.create_cart(str(session.id))
        logger.info(
            "Recurring order run started",
            recurring_order_id=str(recurring_order.id),
            session_id=str(session.id),
            next_order_date=next_date.isoformat(),
        )

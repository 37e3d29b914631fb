"""Session Store: data access for checkout sessions and recurring orders.

Plain reads and writes over Protean repositories. There are no business
rules here and no retries. Missing records surface as Protean's
``ObjectNotFoundError``; any other failure of the persistence layer is
re-raised as ``StorageError`` with the original exception chained.

Sessions are saved with an optimistic version check: the caller's copy must
carry the ``lock_version`` that is currently persisted, otherwise the write
is refused with ``ConflictError`` instead of silently overwriting a
concurrent transition.
"""

from contextlib import contextmanager
from datetime import UTC, date, datetime

import structlog
from protean import atomic_change
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.recurring.history import RecurringOrderHistory
from checkout.recurring.recurring_order import RecurringOrder, RecurringStatus
from checkout.session.session import CheckoutSession, CheckoutStatus
from shared.errors import ConflictError, StorageError

logger = structlog.get_logger(__name__)

# Fields a caller may change on an existing recurring order
UPDATABLE_RECURRING_FIELDS = frozenset(
    {"quantity", "frequency", "frequency_interval", "discount_percentage", "end_date", "notes", "location_id"}
)


@contextmanager
def _storage_errors(action: str):
    try:
        yield
    except (ObjectNotFoundError, ConflictError, ValidationError):
        raise
    except Exception as exc:
        logger.error("Session store failure", action=action, error=str(exc))
        raise StorageError(f"Failed to {action}: {exc}") from exc


class SessionStore:
    # -------------------------------------------------------------------
    # Checkout sessions
    # -------------------------------------------------------------------
    def get_session(self, session_id: str) -> CheckoutSession:
        with _storage_errors(f"load checkout session {session_id}"):
            return current_domain.repository_for(CheckoutSession).get(session_id)

    def insert_session(self, session: CheckoutSession) -> CheckoutSession:
        with _storage_errors("insert checkout session"):
            current_domain.repository_for(CheckoutSession).add(session)
        return session

    def save_session(self, session: CheckoutSession) -> CheckoutSession:
        """Persist a transition, refusing to overwrite a newer version."""
        with _storage_errors(f"save checkout session {session.id}"):
            repo = current_domain.repository_for(CheckoutSession)
            persisted = repo.get(session.id)
            if persisted.lock_version != session.lock_version:
                logger.warning(
                    "Concurrent checkout transition refused",
                    session_id=str(session.id),
                    expected_version=session.lock_version,
                    actual_version=persisted.lock_version,
                )
                raise ConflictError(str(session.id), session.lock_version, persisted.lock_version)

            session.lock_version = session.lock_version + 1
            repo.add(session)
        return session

    def sessions_for_user(self, user_id: str, active_only: bool = True) -> list[CheckoutSession]:
        """Sessions owned by ``user_id``, newest first.

        Active sessions are those not yet completed and not past their expiry.
        """
        with _storage_errors(f"list checkout sessions for user {user_id}"):
            sessions = (
                current_domain.repository_for(CheckoutSession)._dao.query.filter(user_id=str(user_id)).all().items
            )

        if active_only:
            now = datetime.now(UTC)
            sessions = [
                s for s in sessions if s.status != CheckoutStatus.COMPLETED.value and not s.is_expired(now)
            ]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    # -------------------------------------------------------------------
    # Recurring orders
    # -------------------------------------------------------------------
    def get_recurring_order(self, recurring_order_id: str) -> RecurringOrder:
        with _storage_errors(f"load recurring order {recurring_order_id}"):
            return current_domain.repository_for(RecurringOrder).get(recurring_order_id)

    def insert_recurring_order(self, recurring_order: RecurringOrder) -> RecurringOrder:
        with _storage_errors("insert recurring order"):
            current_domain.repository_for(RecurringOrder).add(recurring_order)
        return recurring_order

    def save_recurring_order(self, recurring_order: RecurringOrder) -> RecurringOrder:
        with _storage_errors(f"save recurring order {recurring_order.id}"):
            current_domain.repository_for(RecurringOrder).add(recurring_order)
        return recurring_order

    def update_recurring_order(self, recurring_order_id: str, **fields) -> RecurringOrder:
        """Change plain fields of a recurring order. Status changes go through the aggregate."""
        unknown = set(fields) - UPDATABLE_RECURRING_FIELDS
        if unknown:
            raise ValidationError({field: ["Field cannot be updated"] for field in sorted(unknown)})

        recurring_order = self.get_recurring_order(recurring_order_id)
        with atomic_change(recurring_order):
            for name, value in fields.items():
                setattr(recurring_order, name, value)
            recurring_order.updated_at = datetime.now(UTC)
        return self.save_recurring_order(recurring_order)

    def recurring_orders_for_user(self, user_id: str) -> list[RecurringOrder]:
        with _storage_errors(f"list recurring orders for user {user_id}"):
            orders = current_domain.repository_for(RecurringOrder)._dao.query.filter(user_id=str(user_id)).all().items
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def due_recurring_orders(self, on_or_before: date) -> list[RecurringOrder]:
        """Active recurring orders whose next run is on or before the given date, earliest first."""
        with _storage_errors("list due recurring orders"):
            active = (
                current_domain.repository_for(RecurringOrder)
                ._dao.query.filter(status=RecurringStatus.ACTIVE.value)
                .all()
                .items
            )
        due = [order for order in active if order.is_due(on_or_before)]
        return sorted(due, key=lambda o: o.next_order_date)

    # -------------------------------------------------------------------
    # Recurring order history (append-only)
    # -------------------------------------------------------------------
    def insert_history(self, entry: RecurringOrderHistory) -> RecurringOrderHistory:
        with _storage_errors(f"insert history for recurring order {entry.recurring_order_id}"):
            current_domain.repository_for(RecurringOrderHistory).add(entry)
        return entry

    def history_for(self, recurring_order_id: str) -> list[RecurringOrderHistory]:
        """History rows for one recurring order, most recent schedule first."""
        with _storage_errors(f"list history for recurring order {recurring_order_id}"):
            rows = (
                current_domain.repository_for(RecurringOrderHistory)
                ._dao.query.filter(recurring_order_id=str(recurring_order_id))
                .all()
                .items
            )
        return sorted(rows, key=lambda r: (r.scheduled_date, r.created_at), reverse=True)

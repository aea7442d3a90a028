"""
ORM-level append-only enforcement for the recurring run ledger.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners here reject both for ``RecurringRunModel``:

    session.flush()
         |
         v
    [before_update] --> _check_run_update() --> ImmutabilityViolationError
    [before_delete] --> _check_run_delete() --> ImmutabilityViolationError

Runs are history: a SUCCESS, FAILED or SKIPPED row is never corrected, only
followed by newer rows.

Usage:

    from billing_recurring.models.immutability import register_run_immutability_listeners
    register_run_immutability_listeners()  # once at startup

Tests that need to tamper with a run may call
``unregister_run_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger
from billing_recurring.models.recurring import RecurringRunModel

logger = get_logger("recurring.immutability")


def _reject(target: RecurringRunModel, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "RecurringRun",
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="RecurringRun",
        entity_id=str(target.id),
        reason=reason,
    )


def _check_run_update(mapper, connection, target):
    _reject(target, "UPDATE", "Recurring runs are append-only and cannot be modified")


def _check_run_delete(mapper, connection, target):
    _reject(target, "DELETE", "Recurring runs are append-only and cannot be deleted")


def register_run_immutability_listeners() -> None:
    """Install the listeners.  Safe to call more than once."""
    if not event.contains(RecurringRunModel, "before_update", _check_run_update):
        event.listen(RecurringRunModel, "before_update", _check_run_update)
    if not event.contains(RecurringRunModel, "before_delete", _check_run_delete):
        event.listen(RecurringRunModel, "before_delete", _check_run_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_run_immutability_listeners() -> None:
    """Remove the listeners (tests only)."""
    _safe_remove_listener(RecurringRunModel, "before_update", _check_run_update)
    _safe_remove_listener(RecurringRunModel, "before_delete", _check_run_delete)

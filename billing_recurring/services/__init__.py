"""Recurring engine services: store, ledger, executor, driver, lifecycle."""

from billing_recurring.services.executor import RunExecutor
from billing_recurring.services.profile_service import RecurringProfileService
from billing_recurring.services.profile_store import ProfileStore, clamp_batch_size
from billing_recurring.services.run_ledger import RunLedger, RunSelector
from billing_recurring.services.scheduler import RecurringScheduler

__all__ = [
    "ProfileStore",
    "RecurringProfileService",
    "RecurringScheduler",
    "RunExecutor",
    "RunLedger",
    "RunSelector",
    "clamp_batch_size",
]

"""ORM models for the recurring engine."""

from billing_recurring.models.recurring import RecurringProfileModel, RecurringRunModel

__all__ = ["RecurringProfileModel", "RecurringRunModel"]

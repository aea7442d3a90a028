"""
billing_recurring.domain -- Pure types and interval arithmetic.

ZERO I/O.  All types are frozen dataclasses.
"""

from billing_recurring.domain.interval import add_interval, is_due, normalize_count
from billing_recurring.domain.types import (
    PROFILE_NOT_ACTIVE_MESSAGE,
    UNSET,
    ClaimResult,
    CreateProfileRequest,
    IntervalUnit,
    ProfileStatus,
    RecurringProfile,
    RecurringRun,
    RunOutcome,
    RunStatus,
    TickResult,
    UpdateProfileRequest,
)

__all__ = [
    "PROFILE_NOT_ACTIVE_MESSAGE",
    "UNSET",
    "ClaimResult",
    "CreateProfileRequest",
    "IntervalUnit",
    "ProfileStatus",
    "RecurringProfile",
    "RecurringRun",
    "RunOutcome",
    "RunStatus",
    "TickResult",
    "UpdateProfileRequest",
    "add_interval",
    "is_due",
    "normalize_count",
]

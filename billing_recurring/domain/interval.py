"""
Pure interval arithmetic and due-ness evaluation.

Contract:
    ``add_interval()`` and ``is_due()`` are PURE: no I/O, no clock reads.
    All timestamps come from the caller.

    MONTH and YEAR steps use calendar arithmetic: the day of month is
    clamped to the length of the target month (Jan 31 + 1 month is the
    last day of February; Feb 29 + 1 year is Feb 28).  Wall-clock time and
    tzinfo of the base are preserved.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta

from billing_kernel.exceptions import InvalidIntervalError
from billing_recurring.domain.types import IntervalUnit, ProfileStatus


def normalize_count(count: int | None) -> int:
    """Missing or non-positive counts step by a single unit."""
    if not count or count < 1:
        return 1
    return count


def coerce_unit(unit: IntervalUnit | str) -> IntervalUnit:
    if isinstance(unit, IntervalUnit):
        return unit
    try:
        return IntervalUnit(str(unit).upper())
    except ValueError:
        raise InvalidIntervalError("interval_unit", unit) from None


def add_interval(
    base: datetime,
    unit: IntervalUnit | str,
    count: int | None = 1,
) -> datetime:
    """Return ``base`` advanced by ``count`` units.

    Raises:
        InvalidIntervalError: If ``unit`` is not a known interval unit.
    """
    step = normalize_count(count)
    unit = coerce_unit(unit)

    if unit is IntervalUnit.DAY:
        return base + timedelta(days=step)
    if unit is IntervalUnit.WEEK:
        return base + timedelta(days=7 * step)
    if unit is IntervalUnit.MONTH:
        return base + relativedelta(months=step)
    return base + relativedelta(years=step)


def _comparable(value: datetime, reference: datetime) -> datetime:
    # SQLite returns naive values; compare those against UTC wall time.
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_due(
    next_run_at: datetime | None,
    status: ProfileStatus | str,
    as_of: datetime,
) -> bool:
    """True when an ACTIVE profile's pending occurrence is at or before ``as_of``."""
    if next_run_at is None:
        return False
    if ProfileStatus(status) is not ProfileStatus.ACTIVE:
        return False
    return _comparable(next_run_at, as_of) <= _comparable(as_of, next_run_at)

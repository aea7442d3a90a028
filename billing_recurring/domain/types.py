"""
billing_recurring.domain.types -- Pure frozen dataclasses for the recurring engine.

ZERO I/O.  Enum status fields, frozen DTOs, tuples for immutable collections.

Invariants enforced:
    - Snapshots are immutable: the claim protocol compares a snapshot's
      (next_run_at, version) pair against the live row, so a snapshot must
      never change after it was read.
    - CANCELLED is terminal: ``ProfileStatus.can_transition_to`` never
      allows leaving it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.domain.invoice import InvoiceVariant


# =============================================================================
# Enums
# =============================================================================


class IntervalUnit(str, Enum):
    """Calendar unit of a profile's recurrence interval."""

    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"


class ProfileStatus(str, Enum):
    """Profile lifecycle status.  Declaration order is the listing order."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: ProfileStatus) -> bool:
        if self is ProfileStatus.CANCELLED:
            return target is ProfileStatus.CANCELLED
        return True


class RunStatus(str, Enum):
    """Outcome of one recorded execution attempt."""

    SUCCESS = "SUCCESS"  # Invoice materialized
    FAILED = "FAILED"  # Occurrence consumed, no invoice
    SKIPPED = "SKIPPED"  # Profile not ACTIVE when re-checked


PROFILE_NOT_ACTIVE_MESSAGE = "Profile is not ACTIVE"


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class RecurringProfile:
    """Immutable snapshot of a recurring profile row.

    ``(profile_id, next_run_at, version)`` is the compare-and-swap key used
    by ``ProfileStore.claim``.
    """

    profile_id: UUID
    organization_id: UUID
    created_by_id: UUID
    template_invoice_id: UUID
    interval_unit: IntervalUnit
    start_at: datetime
    next_run_at: datetime
    status: ProfileStatus
    version: int = 0
    client_id: UUID | None = None
    interval_count: int = 1
    due_days: int | None = 7
    auto_send_email: bool = False
    variant: InvoiceVariant = InvoiceVariant.UA
    last_run_at: datetime | None = None
    last_invoice_id: UUID | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RecurringRun:
    """Immutable record of one execution attempt (append-only ledger row)."""

    run_id: UUID
    profile_id: UUID
    run_at: datetime
    status: RunStatus
    invoice_id: UUID | None = None
    error_message: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Engine results
# =============================================================================


@dataclass(frozen=True)
class ClaimResult:
    """Result of a compare-and-swap claim attempt.

    ``claimed=False`` means another driver (or a concurrent edit) won; the
    caller does nothing further for this occurrence.
    """

    profile_id: UUID
    claimed: bool
    run_at: datetime
    next_run_at: datetime | None = None  # Advanced value when claimed
    version: int | None = None  # Incremented value when claimed


@dataclass(frozen=True)
class RunOutcome:
    """What the executor recorded for one claimed (or skipped) occurrence."""

    profile_id: UUID
    run_at: datetime
    status: RunStatus
    run_id: UUID | None = None
    invoice_id: UUID | None = None
    invoice_number: str | None = None
    error_message: str | None = None
    delivered: bool = False


@dataclass(frozen=True)
class TickResult:
    """Summary of one scheduler tick."""

    started_at: datetime
    candidates: int = 0
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    lost: int = 0  # Claims lost to another driver
    errors: int = 0  # Unexpected per-profile exceptions
    outcomes: tuple[RunOutcome, ...] = ()

    @property
    def processed(self) -> int:
        return self.candidates


# =============================================================================
# Management requests
# =============================================================================


class _Unset(Enum):
    UNSET = "UNSET"


UNSET = _Unset.UNSET


@dataclass(frozen=True)
class CreateProfileRequest:
    organization_id: UUID
    template_invoice_id: UUID
    interval_unit: IntervalUnit | str
    start_at: datetime
    client_id: UUID | None = None
    interval_count: int | None = None
    due_days: int | None = None
    auto_send_email: bool = False
    variant: InvoiceVariant | str | None = None


@dataclass(frozen=True)
class UpdateProfileRequest:
    """Partial update.  Fields left as ``UNSET`` are not touched.

    ``client_id=None`` clears the client and ``due_days=None`` drops the due
    date from future invoices; ``next_run_at`` is only changed when
    supplied explicitly.
    """

    client_id: UUID | None | _Unset = UNSET
    template_invoice_id: UUID | _Unset = UNSET
    interval_unit: IntervalUnit | str | _Unset = UNSET
    interval_count: int | _Unset = UNSET
    start_at: datetime | _Unset = UNSET
    next_run_at: datetime | _Unset = UNSET
    due_days: int | None | _Unset = UNSET
    auto_send_email: bool | _Unset = UNSET
    variant: InvoiceVariant | str | _Unset = UNSET
    status: ProfileStatus | str | _Unset = UNSET

    def changes(self) -> dict[str, Any]:
        """Supplied fields only, by name."""
        return {
            name: value
            for name, value in self.__dict__.items()
            if value is not UNSET
        }

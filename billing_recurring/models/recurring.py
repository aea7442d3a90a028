"""
ORM models for recurring invoice profiles and their run ledger.

Contract:
    RecurringProfileModel and RecurringRunModel persist schedule state and
    the append-only history of execution attempts.  Each has ``to_dto()``;
    profiles are created from a CreateProfileRequest in the lifecycle
    service, runs from ``RecurringRunModel.from_dto()``.

Architecture: billing_recurring/models.  Imports from billing_kernel.db.base only.

Invariants enforced:
    - ``version`` starts at 0 and is only ever changed by the claim UPDATE.
    - At most one SUCCESS run per (profile_id, run_at): partial unique index
      ``uq_recurring_runs_success``.
    - Runs are append-only (see models/immutability.py).
    - Profiles are never hard-deleted: cancellation is a status change.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, TrackedBase, UUIDString
from billing_kernel.models import ClientModel, InvoiceModel  # noqa: F401  FK targets

if TYPE_CHECKING:
    from billing_recurring.domain.types import RecurringProfile, RecurringRun


class RecurringProfileModel(TrackedBase):
    """Recurring invoice profile: schedule, behavior, lifecycle, outcome cache."""

    __tablename__ = "recurring_profiles"

    __table_args__ = (
        Index("ix_recurring_profiles_due", "status", "next_run_at"),
        Index("ix_recurring_profiles_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=True,
    )
    template_invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False,
    )

    interval_unit: Mapped[str] = mapped_column(String(10), nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    # NULL means generated invoices carry no due date
    due_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_send_email: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    variant: Mapped[str] = mapped_column(String(20), default="ua", nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    runs: Mapped[list["RecurringRunModel"]] = relationship(
        "RecurringRunModel",
        back_populates="profile",
        order_by="RecurringRunModel.run_at",
        viewonly=True,
    )

    def to_dto(self) -> RecurringProfile:
        from billing_kernel.models.invoice import InvoiceVariant
        from billing_recurring.domain.types import (
            IntervalUnit,
            ProfileStatus,
            RecurringProfile,
        )

        return RecurringProfile(
            profile_id=self.id,
            organization_id=self.organization_id,
            created_by_id=self.created_by_id,
            template_invoice_id=self.template_invoice_id,
            interval_unit=IntervalUnit(self.interval_unit),
            start_at=self.start_at,
            next_run_at=self.next_run_at,
            status=ProfileStatus(self.status),
            version=self.version,
            client_id=self.client_id,
            interval_count=self.interval_count,
            due_days=self.due_days,
            auto_send_email=self.auto_send_email,
            variant=InvoiceVariant(self.variant),
            last_run_at=self.last_run_at,
            last_invoice_id=self.last_invoice_id,
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RecurringRunModel(Base):
    """One execution attempt.  Append-only."""

    __tablename__ = "recurring_runs"

    __table_args__ = (
        Index("ix_recurring_runs_profile_run_at", "profile_id", "run_at"),
        Index(
            "uq_recurring_runs_success",
            "profile_id",
            "run_at",
            unique=True,
            sqlite_where=text("status = 'SUCCESS'"),
            postgresql_where=text("status = 'SUCCESS'"),
        ),
    )

    profile_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_profiles.id"),
        nullable=False,
    )
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    profile: Mapped[RecurringProfileModel] = relationship(
        "RecurringProfileModel", back_populates="runs",
    )

    def to_dto(self) -> RecurringRun:
        from billing_recurring.domain.types import RecurringRun, RunStatus

        return RecurringRun(
            run_id=self.id,
            profile_id=self.profile_id,
            run_at=self.run_at,
            status=RunStatus(self.status),
            invoice_id=self.invoice_id,
            error_message=self.error_message,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: RecurringRun) -> RecurringRunModel:
        return cls(
            id=dto.run_id,
            profile_id=dto.profile_id,
            run_at=dto.run_at,
            status=dto.status.value,
            invoice_id=dto.invoice_id,
            error_message=dto.error_message,
        )

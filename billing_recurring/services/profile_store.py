"""
ProfileStore -- profile persistence and the compare-and-swap claim.

Contract:
    ``claim(snapshot)`` issues exactly one conditional UPDATE:

        UPDATE recurring_profiles
           SET next_run_at = add_interval(:snap_next, unit, count),
               version     = version + 1
         WHERE id = :id
           AND status = 'ACTIVE'
           AND next_run_at = :snap_next
           AND version = :snap_version

    One affected row is an exclusive claim on the occurrence
    ``run_at = snapshot.next_run_at``.  Zero rows means another driver won
    (or the profile was paused, cancelled or rescheduled since the snapshot
    was read); that is not an error.

Architecture: billing_recurring/services.

Invariants enforced:
    - The WHERE clause is the only concurrency control; there are no
      in-process locks, so the protocol holds across processes.
    - ``version`` is changed only here, by exactly +1.
    - The claim is its own statement; the caller commits it before running
      the executor so that other drivers observe the advanced row.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select, update

from billing_kernel.logging_config import get_logger
from billing_kernel.services.base import BaseService
from billing_recurring.domain.interval import add_interval
from billing_recurring.domain.types import ClaimResult, ProfileStatus, RecurringProfile
from billing_recurring.models.recurring import RecurringProfileModel

logger = get_logger("recurring.store")

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100


def clamp_batch_size(limit: int | None, default: int = 25) -> int:
    """Clamp a requested batch size to [1, 100]."""
    if limit is None:
        limit = default
    return min(max(int(limit), MIN_BATCH_SIZE), MAX_BATCH_SIZE)


class ProfileStore(BaseService):
    """Profile reads for the driver, the CAS claim and the outcome cache."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_model(self, profile_id: UUID) -> RecurringProfileModel | None:
        return self._session.get(
            RecurringProfileModel, profile_id, populate_existing=True,
        )

    def get_snapshot(self, profile_id: UUID) -> RecurringProfile | None:
        """Fresh snapshot read from the database, bypassing the identity map."""
        model = self.get_model(profile_id)
        return model.to_dto() if model is not None else None

    def find_due(self, as_of: datetime, limit: int | None = None) -> list[RecurringProfile]:
        """ACTIVE profiles with ``next_run_at <= as_of``, oldest occurrence first."""
        take = clamp_batch_size(limit)
        stmt = (
            select(RecurringProfileModel)
            .where(
                RecurringProfileModel.status == ProfileStatus.ACTIVE.value,
                RecurringProfileModel.next_run_at <= as_of,
            )
            .order_by(RecurringProfileModel.next_run_at.asc(), RecurringProfileModel.id)
            .limit(take)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def list_for_organization(self, organization_id: UUID) -> list[RecurringProfile]:
        """All profiles of an organization: ACTIVE, PAUSED, CANCELLED, then by next_run_at."""
        status_order = case(
            {status.value: index for index, status in enumerate(ProfileStatus)},
            value=RecurringProfileModel.status,
            else_=len(ProfileStatus),
        )
        stmt = (
            select(RecurringProfileModel)
            .where(RecurringProfileModel.organization_id == organization_id)
            .order_by(status_order, RecurringProfileModel.next_run_at.asc())
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Claim
    # -------------------------------------------------------------------------

    def claim(self, snapshot: RecurringProfile) -> ClaimResult:
        """Attempt to claim ``snapshot.next_run_at`` for this driver."""
        run_at = snapshot.next_run_at
        advanced = add_interval(run_at, snapshot.interval_unit, snapshot.interval_count)

        stmt = (
            update(RecurringProfileModel)
            .where(
                RecurringProfileModel.id == snapshot.profile_id,
                RecurringProfileModel.status == ProfileStatus.ACTIVE.value,
                RecurringProfileModel.next_run_at == run_at,
                RecurringProfileModel.version == snapshot.version,
            )
            .values(
                next_run_at=advanced,
                version=RecurringProfileModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)

        if result.rowcount != 1:
            logger.debug(
                "recurring_claim_lost",
                extra={
                    "profile_id": str(snapshot.profile_id),
                    "snapshot_version": snapshot.version,
                },
            )
            return ClaimResult(
                profile_id=snapshot.profile_id, claimed=False, run_at=run_at,
            )

        logger.info(
            "recurring_claim_won",
            extra={
                "profile_id": str(snapshot.profile_id),
                "run_at": run_at,
                "next_run_at": advanced,
                "version": snapshot.version + 1,
            },
        )
        return ClaimResult(
            profile_id=snapshot.profile_id,
            claimed=True,
            run_at=run_at,
            next_run_at=advanced,
            version=snapshot.version + 1,
        )

    # -------------------------------------------------------------------------
    # Outcome cache
    # -------------------------------------------------------------------------

    def record_success(self, profile_id: UUID, run_at: datetime, invoice_id: UUID) -> None:
        self._set_outcome(profile_id, last_run_at=run_at, last_invoice_id=invoice_id, last_error=None)

    def record_failure(self, profile_id: UUID, run_at: datetime, error_message: str) -> None:
        self._set_outcome(profile_id, last_run_at=run_at, last_error=error_message)

    def _set_outcome(self, profile_id: UUID, **values) -> None:
        # Touches only the outcome columns: a concurrent pause or edit of the
        # schedule must survive.
        self._session.execute(
            update(RecurringProfileModel)
            .where(RecurringProfileModel.id == profile_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

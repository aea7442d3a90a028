"""
RunLedger / RunSelector -- the append-only history of execution attempts.

Contract:
    ``RunLedger.append()`` is the only write path for runs: it INSERTs and
    flushes.  There is no update or delete method, and ORM listeners
    (models/immutability.py) reject both if attempted through the session.

    ``RunSelector`` is the read side: newest-first history per profile and
    per-status counts.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select

from billing_kernel.logging_config import get_logger
from billing_kernel.selectors.base import BaseSelector
from billing_kernel.services.base import BaseService
from billing_recurring.domain.types import RecurringRun, RunStatus
from billing_recurring.models.recurring import RecurringRunModel

logger = get_logger("recurring.ledger")

DEFAULT_HISTORY_LIMIT = 50


class RunLedger(BaseService):

    def append(
        self,
        profile_id: UUID,
        run_at: datetime,
        status: RunStatus,
        invoice_id: UUID | None = None,
        error_message: str | None = None,
    ) -> RecurringRun:
        """Append one run row.

        Raises:
            ValueError: SUCCESS without an invoice, or an invoice on a
                non-SUCCESS run.
        """
        if status is RunStatus.SUCCESS and invoice_id is None:
            raise ValueError("A SUCCESS run must reference the created invoice")
        if status is not RunStatus.SUCCESS and invoice_id is not None:
            raise ValueError(f"A {status.value} run cannot reference an invoice")

        dto = RecurringRun(
            run_id=uuid4(),
            profile_id=profile_id,
            run_at=run_at,
            status=status,
            invoice_id=invoice_id,
            error_message=error_message,
        )
        model = RecurringRunModel.from_dto(dto)
        self._session.add(model)
        self._session.flush()

        logger.info(
            "recurring_run_recorded",
            extra={
                "run_id": str(model.id),
                "status": status.value,
                "invoice_id": str(invoice_id) if invoice_id else None,
            },
        )
        return model.to_dto()


class RunSelector(BaseSelector):

    def list_for_profile(
        self, profile_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[RecurringRun]:
        """Newest runs first."""
        stmt = (
            select(RecurringRunModel)
            .where(RecurringRunModel.profile_id == profile_id)
            .order_by(RecurringRunModel.run_at.desc(), RecurringRunModel.created_at.desc())
            .limit(max(limit, 1))
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def count_by_status(self, profile_id: UUID) -> dict[RunStatus, int]:
        rows = self.session.execute(
            select(RecurringRunModel.status, func.count())
            .where(RecurringRunModel.profile_id == profile_id)
            .group_by(RecurringRunModel.status)
        ).all()
        counts = {status: 0 for status in RunStatus}
        for status, count in rows:
            counts[RunStatus(status)] = count
        return counts

    def successes_for_occurrence(self, profile_id: UUID, run_at: datetime) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(RecurringRunModel)
            .where(
                RecurringRunModel.profile_id == profile_id,
                RecurringRunModel.run_at == run_at,
                RecurringRunModel.status == RunStatus.SUCCESS.value,
            )
        ).scalar_one()

"""
RunExecutor -- materializes one claimed occurrence into an invoice.

Contract:
    ``execute(profile, run_at)`` is called only after the caller won the
    claim for ``run_at``.  It always records exactly one run:

        SUCCESS -- invoice created (and e-mailed when ``auto_send_email``);
                   outcome cache gets last_invoice_id, last_error cleared.
        FAILED  -- nothing materialized; message truncated to
                   ``error_message_max_length``; last_error set.

    ``skip(profile, run_at)`` records a SKIPPED run for a profile found
    not ACTIVE when re-checked.

    Template loading and invoice creation run inside a SAVEPOINT so that a
    failure half way through leaves no partial invoice behind.

Architecture: billing_recurring/services.  Consumes the kernel's
    InvoiceService and ActivityService.

Invariants enforced:
    - Skip-and-advance: the claim has already advanced next_run_at; a
      failure here is recorded, never retried.
    - All timestamps come from ``run_at`` (the occurrence), not the clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from billing_kernel.logging_config import get_logger
from billing_kernel.models.activity_log import ActivityEntityType, ActivityEventType
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.invoice_service import InvoiceService, InvoiceSnapshot
from billing_recurring.domain.types import (
    PROFILE_NOT_ACTIVE_MESSAGE,
    RecurringProfile,
    RunOutcome,
    RunStatus,
)
from billing_recurring.services.profile_store import ProfileStore
from billing_recurring.services.run_ledger import RunLedger

logger = get_logger("recurring.executor")

DEFAULT_ERROR_MESSAGE_MAX_LENGTH = 1000


def _error_message(exc: Exception, max_length: int) -> str:
    message = str(exc) or type(exc).__name__
    return message[:max_length]


class RunExecutor:
    """Invoice materialization for a claimed occurrence.

    ``isolate_delivery_failures``: when True, e-mail delivery runs after the
    invoice savepoint is released; a delivery failure is logged and
    recorded as a DELIVERY_FAILED activity event while the run stays
    SUCCESS.  When False, delivery runs inside the savepoint and its
    failure fails the whole run.
    """

    def __init__(
        self,
        session: Session,
        invoice_service: InvoiceService,
        activity_service: ActivityService,
        profile_store: ProfileStore | None = None,
        run_ledger: RunLedger | None = None,
        error_message_max_length: int = DEFAULT_ERROR_MESSAGE_MAX_LENGTH,
        isolate_delivery_failures: bool = True,
    ):
        self._session = session
        self._invoices = invoice_service
        self._activity = activity_service
        self._store = profile_store or ProfileStore(session)
        self._ledger = run_ledger or RunLedger(session)
        self._max_error_length = error_message_max_length
        self._isolate_delivery = isolate_delivery_failures

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute(self, profile: RecurringProfile, run_at: datetime) -> RunOutcome:
        """Materialize the occurrence ``run_at`` of ``profile`` and record the run."""
        delivered = False

        savepoint = self._session.begin_nested()
        try:
            invoice = self._materialize(profile, run_at)
            if profile.auto_send_email and not self._isolate_delivery:
                self._send(profile, invoice)
                delivered = True
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            return self._record_failure(profile, run_at, exc)

        self._activity.record_event_safely(
            organization_id=profile.organization_id,
            actor_user_id=profile.created_by_id,
            entity_type=ActivityEntityType.INVOICE,
            entity_id=invoice.invoice_id,
            event_type=ActivityEventType.CREATED,
            meta={
                "invoice_number": invoice.number,
                "recurring_profile_id": str(profile.profile_id),
                "recurring_run_at": run_at.isoformat(),
            },
        )

        if delivered:
            self._record_sent(profile, invoice)
        elif profile.auto_send_email:
            delivered = self._send_isolated(profile, invoice)

        run = self._ledger.append(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.SUCCESS,
            invoice_id=invoice.invoice_id,
        )
        self._store.record_success(profile.profile_id, run_at, invoice.invoice_id)

        logger.info(
            "recurring_run_succeeded",
            extra={
                "invoice_id": str(invoice.invoice_id),
                "invoice_number": invoice.number,
                "delivered": delivered,
            },
        )

        return RunOutcome(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.SUCCESS,
            run_id=run.run_id,
            invoice_id=invoice.invoice_id,
            invoice_number=invoice.number,
            delivered=delivered,
        )

    def skip(self, profile: RecurringProfile, run_at: datetime) -> RunOutcome:
        """Record a SKIPPED run for a profile that is no longer ACTIVE."""
        run = self._ledger.append(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.SKIPPED,
            error_message=PROFILE_NOT_ACTIVE_MESSAGE,
        )
        logger.info(
            "recurring_run_skipped",
            extra={"profile_status": profile.status.value},
        )
        return RunOutcome(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.SKIPPED,
            run_id=run.run_id,
            error_message=PROFILE_NOT_ACTIVE_MESSAGE,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _materialize(self, profile: RecurringProfile, run_at: datetime) -> InvoiceSnapshot:
        template = self._invoices.load_template(
            profile.organization_id, profile.template_invoice_id,
        )

        due_date = None
        if profile.due_days is not None:
            due_date = run_at + timedelta(days=profile.due_days)

        return self._invoices.create_from_template(
            db_user_id=profile.created_by_id,
            organization_id=profile.organization_id,
            client_id=profile.client_id or template.client_id,
            template_invoice_id=profile.template_invoice_id,
            issue_date=run_at,
            due_date=due_date,
            currency=template.currency,
            notes=template.notes,
            recurring_profile_id=profile.profile_id,
        )

    def _send(self, profile: RecurringProfile, invoice: InvoiceSnapshot) -> None:
        self._invoices.send_invoice_by_email(
            db_user_id=profile.created_by_id,
            invoice_id=invoice.invoice_id,
            variant=profile.variant,
        )

    def _send_isolated(self, profile: RecurringProfile, invoice: InvoiceSnapshot) -> bool:
        savepoint = self._session.begin_nested()
        try:
            self._send(profile, invoice)
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            logger.warning(
                "recurring_delivery_failed",
                extra={
                    "invoice_id": str(invoice.invoice_id),
                    "error": _error_message(exc, self._max_error_length),
                },
            )
            self._activity.record_event_safely(
                organization_id=profile.organization_id,
                actor_user_id=profile.created_by_id,
                entity_type=ActivityEntityType.INVOICE,
                entity_id=invoice.invoice_id,
                event_type=ActivityEventType.DELIVERY_FAILED,
                meta={
                    "invoice_number": invoice.number,
                    "recurring_profile_id": str(profile.profile_id),
                    "error": _error_message(exc, self._max_error_length),
                },
            )
            return False

        self._record_sent(profile, invoice)
        return True

    def _record_sent(self, profile: RecurringProfile, invoice: InvoiceSnapshot) -> None:
        self._activity.record_event_safely(
            organization_id=profile.organization_id,
            actor_user_id=profile.created_by_id,
            entity_type=ActivityEntityType.INVOICE,
            entity_id=invoice.invoice_id,
            event_type=ActivityEventType.SENT,
            meta={
                "invoice_number": invoice.number,
                "recurring_profile_id": str(profile.profile_id),
                "variant": profile.variant.value,
            },
        )

    def _record_failure(
        self, profile: RecurringProfile, run_at: datetime, exc: Exception,
    ) -> RunOutcome:
        message = _error_message(exc, self._max_error_length)

        logger.warning(
            "recurring_run_failed",
            extra={
                "error_type": type(exc).__name__,
                "error_code": getattr(exc, "code", None),
                "error": message,
            },
        )

        run = self._ledger.append(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.FAILED,
            error_message=message,
        )
        self._store.record_failure(profile.profile_id, run_at, message)

        return RunOutcome(
            profile_id=profile.profile_id,
            run_at=run_at,
            status=RunStatus.FAILED,
            run_id=run.run_id,
            error_message=message,
        )

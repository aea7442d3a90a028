"""
Tests for billing_recurring.services.run_ledger and models.immutability.

The run ledger is append-only: rows are inserted through RunLedger.append
and never updated or deleted.  At most one SUCCESS run may exist per
(profile_id, run_at).
"""

from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_recurring.domain.types import RunStatus
from billing_recurring.models.immutability import (
    register_run_immutability_listeners,
    unregister_run_immutability_listeners,
)
from billing_recurring.models.recurring import RecurringRunModel
from billing_recurring.services.run_ledger import RunLedger, RunSelector

from tests.factories import START_AT, create_profile


@pytest.fixture
def profile(db_session, tenant):
    return create_profile(db_session, tenant)


# =============================================================================
# append()
# =============================================================================


class TestAppend:
    def test_success_run(self, db_session, profile):
        invoice_id = uuid4()

        run = RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.SUCCESS, invoice_id=invoice_id,
        )

        assert run.status is RunStatus.SUCCESS
        assert run.invoice_id == invoice_id
        assert run.run_at == START_AT
        assert run.created_at is not None

    def test_success_requires_invoice(self, db_session, profile):
        with pytest.raises(ValueError, match="SUCCESS"):
            RunLedger(db_session).append(profile.profile_id, START_AT, RunStatus.SUCCESS)

    @pytest.mark.parametrize("status", [RunStatus.FAILED, RunStatus.SKIPPED])
    def test_non_success_cannot_reference_invoice(self, db_session, profile, status):
        with pytest.raises(ValueError, match=status.value):
            RunLedger(db_session).append(
                profile.profile_id, START_AT, status, invoice_id=uuid4(),
            )

    def test_logged(self, db_session, profile, captured_logs):
        RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.FAILED, error_message="boom",
        )

        [record] = [r for r in captured_logs() if r["message"] == "recurring_run_recorded"]
        assert record["status"] == "FAILED"
        assert record["invoice_id"] is None


# =============================================================================
# Uniqueness of SUCCESS per occurrence
# =============================================================================


class TestSuccessUniqueness:
    def test_second_success_for_occurrence_rejected(self, db_session, profile):
        ledger = RunLedger(db_session)
        ledger.append(profile.profile_id, START_AT, RunStatus.SUCCESS, invoice_id=uuid4())

        with pytest.raises(IntegrityError):
            ledger.append(profile.profile_id, START_AT, RunStatus.SUCCESS, invoice_id=uuid4())
        db_session.rollback()

    def test_failed_runs_may_repeat(self, db_session, profile):
        ledger = RunLedger(db_session)
        ledger.append(profile.profile_id, START_AT, RunStatus.FAILED, error_message="a")
        ledger.append(profile.profile_id, START_AT, RunStatus.FAILED, error_message="b")
        ledger.append(profile.profile_id, START_AT, RunStatus.SUCCESS, invoice_id=uuid4())
        db_session.commit()

        counts = RunSelector(db_session).count_by_status(profile.profile_id)
        assert counts == {RunStatus.SUCCESS: 1, RunStatus.FAILED: 2, RunStatus.SKIPPED: 0}

    def test_success_for_other_occurrence_allowed(self, db_session, profile):
        ledger = RunLedger(db_session)
        ledger.append(profile.profile_id, START_AT, RunStatus.SUCCESS, invoice_id=uuid4())
        ledger.append(
            profile.profile_id, datetime(2024, 2, 1), RunStatus.SUCCESS, invoice_id=uuid4(),
        )
        db_session.commit()

        selector = RunSelector(db_session)
        assert selector.successes_for_occurrence(profile.profile_id, START_AT) == 1
        assert selector.successes_for_occurrence(profile.profile_id, datetime(2024, 2, 1)) == 1
        assert selector.successes_for_occurrence(profile.profile_id, datetime(2024, 3, 1)) == 0


# =============================================================================
# Immutability
# =============================================================================


class TestImmutability:
    def test_update_rejected(self, db_session, profile):
        run = RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.FAILED, error_message="boom",
        )
        model = db_session.get(RecurringRunModel, run.run_id)
        model.error_message = "rewritten"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            db_session.flush()
        assert exc_info.value.entity_type == "RecurringRun"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"
        db_session.rollback()

    def test_delete_rejected(self, db_session, profile):
        run = RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.SKIPPED,
        )
        db_session.delete(db_session.get(RecurringRunModel, run.run_id))

        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            db_session.flush()
        db_session.rollback()

    def test_violation_logged(self, db_session, profile, captured_logs):
        run = RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.SKIPPED,
        )
        db_session.get(RecurringRunModel, run.run_id).status = RunStatus.SUCCESS.value

        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()
        db_session.rollback()

        [record] = [
            r for r in captured_logs() if r["message"] == "immutability_violation_blocked"
        ]
        assert record["operation"] == "UPDATE"
        assert record["entity_id"] == str(run.run_id)

    def test_unregister_and_register_again(self, db_session, profile):
        run = RunLedger(db_session).append(
            profile.profile_id, START_AT, RunStatus.FAILED, error_message="boom",
        )
        unregister_run_immutability_listeners()
        try:
            db_session.get(RecurringRunModel, run.run_id).error_message = "fixed"
            db_session.flush()
        finally:
            register_run_immutability_listeners()

        db_session.get(RecurringRunModel, run.run_id).error_message = "again"
        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()
        db_session.rollback()

    def test_register_is_idempotent(self):
        register_run_immutability_listeners()
        register_run_immutability_listeners()
        unregister_run_immutability_listeners()
        register_run_immutability_listeners()


# =============================================================================
# RunSelector
# =============================================================================


class TestRunSelector:
    def test_history_limit(self, db_session, profile):
        ledger = RunLedger(db_session)
        for month in range(1, 6):
            ledger.append(
                profile.profile_id, datetime(2024, month, 1), RunStatus.FAILED,
                error_message=f"m{month}",
            )

        runs = RunSelector(db_session).list_for_profile(profile.profile_id, limit=3)

        assert [r.run_at.month for r in runs] == [5, 4, 3]

    def test_other_profile_excluded(self, db_session, tenant, profile):
        other = create_profile(db_session, tenant)
        RunLedger(db_session).append(other.profile_id, START_AT, RunStatus.SKIPPED)

        assert RunSelector(db_session).list_for_profile(profile.profile_id) == []

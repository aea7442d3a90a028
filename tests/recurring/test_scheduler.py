"""
Tests for billing_recurring.services.scheduler -- RecurringScheduler.

Validates tick(): candidate selection, re-check of stale snapshots, the
claim, per-profile error isolation, batch limits, catch-up of overdue
occurrences, structured logging and start/stop lifecycle.
"""

import time
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.invoice_service import InvoiceService
from billing_recurring.domain.types import (
    ClaimResult,
    IntervalUnit,
    ProfileStatus,
    RunStatus,
)
from billing_recurring.services.executor import RunExecutor
from billing_recurring.services.profile_store import ProfileStore
from billing_recurring.services.run_ledger import RunSelector
from billing_recurring.services.scheduler import RecurringScheduler

from tests.factories import (
    START_AT,
    TICK_TIME,
    RecordingMailer,
    create_empty_template,
    create_profile,
    create_tenant,
    fresh_profile,
)


def _runs(session_factory, profile_id):
    with session_factory() as session:
        return RunSelector(session).list_for_profile(profile_id)


def _invoice_count(session_factory, profile_id) -> int:
    with session_factory() as session:
        return len(
            session.scalars(
                select(InvoiceModel.id).where(InvoiceModel.recurring_profile_id == profile_id)
            ).all()
        )


# =============================================================================
# Basic tick
# =============================================================================


class TestTick:
    def test_due_profile_produces_invoice(self, db_session, session_factory, scheduler, tenant):
        profile = create_profile(db_session, tenant)

        result = scheduler.tick()

        assert result.started_at == TICK_TIME
        assert result.candidates == 1
        assert result.claimed == 1
        assert result.succeeded == 1
        assert result.failed == result.skipped == result.lost == result.errors == 0

        [outcome] = result.outcomes
        assert outcome.profile_id == profile.profile_id
        assert outcome.run_at == START_AT
        assert outcome.status is RunStatus.SUCCESS

        with session_factory() as session:
            invoice = session.get(InvoiceModel, outcome.invoice_id)
            assert invoice.issue_date == datetime(2024, 1, 1)
            assert invoice.due_date == datetime(2024, 1, 8)

        stored = fresh_profile(session_factory, profile.profile_id)
        assert stored.next_run_at == datetime(2024, 2, 1)
        assert stored.version == 1
        assert stored.last_invoice_id == outcome.invoice_id

    def test_second_tick_is_idempotent(self, db_session, session_factory, scheduler, tenant):
        profile = create_profile(db_session, tenant)

        scheduler.tick()
        second = scheduler.tick()

        assert second.candidates == 0
        assert second.claimed == 0
        assert _invoice_count(session_factory, profile.profile_id) == 1
        assert len(_runs(session_factory, profile.profile_id)) == 1

    def test_nothing_due(self, db_session, scheduler, tenant):
        create_profile(db_session, tenant, next_run_at=datetime(2024, 1, 2))

        result = scheduler.tick()

        assert result.candidates == 0
        assert result.outcomes == ()

    def test_paused_and_cancelled_not_candidates(self, db_session, session_factory, scheduler, tenant):
        paused = create_profile(db_session, tenant, status=ProfileStatus.PAUSED.value)
        create_profile(db_session, tenant, status=ProfileStatus.CANCELLED.value)

        result = scheduler.tick()

        assert result.candidates == 0
        assert _runs(session_factory, paused.profile_id) == []

    def test_failed_run_still_advances(self, db_session, session_factory, scheduler, tenant):
        template_id = create_empty_template(db_session, tenant)
        profile = create_profile(db_session, tenant, template_invoice_id=template_id)

        result = scheduler.tick()

        assert result.claimed == 1
        assert result.failed == 1
        stored = fresh_profile(session_factory, profile.profile_id)
        assert stored.next_run_at == datetime(2024, 2, 1)
        assert stored.last_error is not None
        [run] = _runs(session_factory, profile.profile_id)
        assert run.status is RunStatus.FAILED

    def test_week_interval(self, db_session, session_factory, scheduler, tenant):
        profile = create_profile(
            db_session, tenant, interval_unit=IntervalUnit.WEEK.value, interval_count=2,
        )

        scheduler.tick()

        assert fresh_profile(session_factory, profile.profile_id).next_run_at == datetime(2024, 1, 15)


# =============================================================================
# Re-check of the candidate snapshot
# =============================================================================


class TestStaleCandidates:
    def test_paused_since_read_is_skipped(
        self, db_session, session_factory, scheduler, tenant, monkeypatch,
    ):
        profile = create_profile(db_session, tenant, status=ProfileStatus.PAUSED.value)
        candidate = replace(profile, status=ProfileStatus.ACTIVE)
        monkeypatch.setattr(scheduler, "_find_candidates", lambda now, limit: [candidate])

        result = scheduler.tick()

        assert result.candidates == 1
        assert result.skipped == 1
        assert result.claimed == 0
        [run] = _runs(session_factory, profile.profile_id)
        assert run.status is RunStatus.SKIPPED
        assert run.run_at == START_AT
        assert run.error_message == "Profile is not ACTIVE"

        stored = fresh_profile(session_factory, profile.profile_id)
        assert stored.next_run_at == START_AT
        assert stored.version == 0

    def test_skipped_run_records_pending_occurrence(
        self, db_session, session_factory, scheduler, tenant, monkeypatch,
    ):
        pending = datetime(2023, 12, 20)
        profile = create_profile(
            db_session, tenant, status=ProfileStatus.PAUSED.value, next_run_at=pending,
        )
        candidate = replace(
            profile, status=ProfileStatus.ACTIVE, next_run_at=datetime(2023, 12, 1),
        )
        monkeypatch.setattr(scheduler, "_find_candidates", lambda now, limit: [candidate])

        scheduler.tick()

        [run] = _runs(session_factory, profile.profile_id)
        assert run.status is RunStatus.SKIPPED
        assert run.run_at == pending
        assert fresh_profile(session_factory, profile.profile_id).next_run_at == pending

    def test_deleted_profile_ignored(self, db_session, scheduler, tenant, monkeypatch):
        profile = create_profile(db_session, tenant)
        ghost = replace(profile, profile_id=uuid4())
        monkeypatch.setattr(scheduler, "_find_candidates", lambda now, limit: [ghost])

        result = scheduler.tick()

        assert result.candidates == 1
        assert result.claimed == 0
        assert result.errors == 0
        assert result.outcomes == ()

    def test_rescheduled_since_read_is_ignored(
        self, db_session, session_factory, scheduler, tenant, monkeypatch,
    ):
        profile = create_profile(db_session, tenant, next_run_at=datetime(2024, 5, 1))
        candidate = replace(profile, next_run_at=START_AT)
        monkeypatch.setattr(scheduler, "_find_candidates", lambda now, limit: [candidate])

        result = scheduler.tick()

        assert result.claimed == 0
        assert result.outcomes == ()
        assert _runs(session_factory, profile.profile_id) == []

    def test_lost_claim_counted(self, db_session, session_factory, scheduler, tenant, monkeypatch):
        profile = create_profile(db_session, tenant)
        monkeypatch.setattr(
            ProfileStore,
            "claim",
            lambda self, snapshot: ClaimResult(
                profile_id=snapshot.profile_id, claimed=False, run_at=snapshot.next_run_at,
            ),
        )

        result = scheduler.tick()

        assert result.lost == 1
        assert result.claimed == 0
        assert _runs(session_factory, profile.profile_id) == []
        assert _invoice_count(session_factory, profile.profile_id) == 0


# =============================================================================
# Isolation and limits
# =============================================================================


class TestIsolation:
    def test_unexpected_error_does_not_stop_batch(
        self, db_session, session_factory, clock, mailer, tenant, captured_logs,
    ):
        broken = create_profile(db_session, tenant, next_run_at=datetime(2023, 12, 1))
        healthy = create_profile(db_session, tenant, next_run_at=datetime(2023, 12, 2))

        class ExplodingExecutor(RunExecutor):
            def execute(self, profile, run_at):
                if profile.profile_id == broken.profile_id:
                    raise RuntimeError("executor crashed")
                return super().execute(profile, run_at)

        def factory(session: Session) -> RunExecutor:
            return ExplodingExecutor(
                session=session,
                invoice_service=InvoiceService(session, clock=clock, mailer=mailer),
                activity_service=ActivityService(session, clock=clock),
            )

        scheduler = RecurringScheduler(session_factory, factory, clock=clock)
        result = scheduler.tick()

        assert result.candidates == 2
        assert result.errors == 1
        assert result.succeeded == 1

        # The claim was committed before the crash: the occurrence is consumed.
        assert fresh_profile(session_factory, broken.profile_id).next_run_at == datetime(2024, 1, 1)
        assert _runs(session_factory, broken.profile_id) == []
        assert _invoice_count(session_factory, healthy.profile_id) == 1

        [record] = [
            r for r in captured_logs()
            if r["message"] == "recurring_profile_processing_failed"
        ]
        assert record["level"] == "ERROR"
        assert record["profile_id"] == str(broken.profile_id)
        assert record["exc_message"] == "executor crashed"

    def test_limit_caps_batch(self, db_session, session_factory, scheduler, tenant):
        profiles = [
            create_profile(db_session, tenant, next_run_at=datetime(2023, 12, day))
            for day in (1, 2, 3)
        ]

        result = scheduler.tick(limit=2)

        assert result.candidates == 2
        assert _runs(session_factory, profiles[2].profile_id) == []

    def test_batch_size_clamped(self, session_factory, executor_factory, clock):
        scheduler = RecurringScheduler(session_factory, executor_factory, clock=clock, batch_size=500)
        assert scheduler.batch_size == 100

    def test_stop_signal_honoured_between_profiles(self, db_session, scheduler, tenant):
        create_profile(db_session, tenant)
        scheduler.stop()

        result = scheduler.tick()

        assert result.candidates == 1
        assert result.claimed == 0


# =============================================================================
# Catch-up and monotonic advance
# =============================================================================


class TestCatchUp:
    def test_one_occurrence_per_tick(self, db_session, session_factory, scheduler, tenant):
        profile = create_profile(db_session, tenant, next_run_at=datetime(2023, 10, 1))

        results = [scheduler.tick() for _ in range(5)]

        assert [r.succeeded for r in results] == [1, 1, 1, 1, 0]
        runs = _runs(session_factory, profile.profile_id)
        assert [r.run_at for r in runs] == [
            datetime(2024, 1, 1),
            datetime(2023, 12, 1),
            datetime(2023, 11, 1),
            datetime(2023, 10, 1),
        ]
        stored = fresh_profile(session_factory, profile.profile_id)
        assert stored.next_run_at == datetime(2024, 2, 1)
        assert stored.version == 4

    def test_advance_is_monotonic(self, db_session, session_factory, executor_factory, tenant):
        clock = DeterministicClock(fixed_time=TICK_TIME)
        scheduler = RecurringScheduler(session_factory, executor_factory, clock=clock)
        profile = create_profile(
            db_session, tenant, interval_unit=IntervalUnit.DAY.value,
        )

        seen = []
        for _ in range(4):
            scheduler.tick()
            stored = fresh_profile(session_factory, profile.profile_id)
            seen.append((stored.next_run_at, stored.version))
            clock.advance(86400)

        assert [v for _, v in seen] == [1, 2, 3, 4]
        next_runs = [n for n, _ in seen]
        assert next_runs == sorted(next_runs)
        assert len(set(next_runs)) == 4


# =============================================================================
# Logging
# =============================================================================


class TestLogging:
    def test_tick_summary(self, db_session, scheduler, tenant, captured_logs):
        create_profile(db_session, tenant)

        scheduler.tick()

        [summary] = [r for r in captured_logs() if r["message"] == "scheduler_tick"]
        assert summary["candidates"] == 1
        assert summary["succeeded"] == 1
        assert "correlation_id" in summary

    def test_context_fields_bound(self, db_session, scheduler, tenant, captured_logs):
        profile = create_profile(db_session, tenant)

        scheduler.tick()

        logs = captured_logs()
        [won] = [r for r in logs if r["message"] == "recurring_claim_won"]
        [succeeded] = [r for r in logs if r["message"] == "recurring_run_succeeded"]
        assert won["profile_id"] == str(profile.profile_id)
        assert won["organization_id"] == str(tenant.organization_id)
        assert succeeded["run_at"] == START_AT.isoformat()
        assert won["correlation_id"] == succeeded["correlation_id"]


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    def test_start_processes_and_stops(self, file_session_factory, clock):
        setup = file_session_factory()
        try:
            tenant = create_tenant(setup, clock)
            profile = create_profile(setup, tenant)
        finally:
            setup.close()

        mailer = RecordingMailer()

        def factory(session: Session) -> RunExecutor:
            return RunExecutor(
                session=session,
                invoice_service=InvoiceService(session, clock=clock, mailer=mailer),
                activity_service=ActivityService(session, clock=clock),
            )

        scheduler = RecurringScheduler(
            file_session_factory, factory, clock=clock, tick_interval_seconds=0.05,
        )
        scheduler.start()
        try:
            assert scheduler.is_running
            deadline = time.monotonic() + 10
            while time.monotonic() < deadline:
                if fresh_profile(file_session_factory, profile.profile_id).version == 1:
                    break
                time.sleep(0.05)
        finally:
            scheduler.stop(timeout=5)

        assert not scheduler.is_running
        stored = fresh_profile(file_session_factory, profile.profile_id)
        assert stored.version == 1
        assert stored.next_run_at == datetime(2024, 2, 1)

    def test_start_twice_keeps_one_thread(self, file_session_factory, executor_factory, clock):
        scheduler = RecurringScheduler(
            file_session_factory, executor_factory, clock=clock, tick_interval_seconds=0.05,
        )
        scheduler.start()
        try:
            first = scheduler._thread
            scheduler.start()
            assert scheduler._thread is first
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_stop_without_start(self, scheduler):
        scheduler.stop()
        assert not scheduler.is_running

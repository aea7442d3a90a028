"""
RecurringScheduler -- in-process polling driver for due recurring profiles.

Contract:
    ``tick()`` reads up to ``batch_size`` ACTIVE profiles whose
    ``next_run_at <= now`` (oldest first) and processes each in its own
    session:

        re-fetch fresh snapshot
          -> missing:          ignore
          -> not ACTIVE:       SKIPPED run
          -> no longer due:    ignore
          -> claim (CAS)       -> lost: ignore
                               -> won:  commit claim, execute, commit

    Several schedulers (threads or processes) may tick concurrently against
    the same database; the claim guarantees at most one execution per
    occurrence.

Architecture: billing_recurring/services.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Per-profile isolation: an unexpected exception is logged, that
      profile's transaction rolled back, and the batch continues.
    - Graceful shutdown: the stop signal is honoured between profiles.
    - Stateless between ticks.
"""

from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import LogContext, get_logger
from billing_recurring.domain.interval import is_due
from billing_recurring.domain.types import (
    ProfileStatus,
    RecurringProfile,
    RunOutcome,
    RunStatus,
    TickResult,
)
from billing_recurring.services.executor import RunExecutor
from billing_recurring.services.profile_store import ProfileStore, clamp_batch_size

logger = get_logger("recurring.scheduler")

DEFAULT_TICK_INTERVAL_SECONDS = 60
DEFAULT_BATCH_SIZE = 25


class _ProfileResult(str, Enum):
    CLAIMED = "claimed"
    LOST = "lost"
    IGNORED = "ignored"


class RecurringScheduler:
    """Polling driver for recurring invoice profiles.

    Contract:
        - ``tick()`` processes one batch of due profiles.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a leader-elected scheduler: every instance polls, the claim
          arbitrates.
        - Does NOT retry failed occurrences.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], RunExecutor],
        clock: Clock | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._clock = clock or SystemClock()
        self._batch_size = clamp_batch_size(batch_size)
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, limit: int | None = None) -> TickResult:
        """Process one batch of due profiles (public for manual triggers and tests)."""
        now = self._clock.now()
        take = clamp_batch_size(limit, default=self._batch_size)
        correlation_id = str(uuid4())

        with LogContext.bind(correlation_id=correlation_id):
            candidates = self._find_candidates(now, take)

            claimed = lost = errors = 0
            outcomes: list[RunOutcome] = []

            for candidate in candidates:
                if self._stop_event.is_set():
                    break

                with LogContext.bind(
                    profile_id=str(candidate.profile_id),
                    organization_id=str(candidate.organization_id),
                ):
                    try:
                        kind, outcome = self._process_profile(candidate, now)
                    except Exception:
                        errors += 1
                        logger.exception("recurring_profile_processing_failed")
                        continue

                if kind is _ProfileResult.CLAIMED:
                    claimed += 1
                elif kind is _ProfileResult.LOST:
                    lost += 1
                if outcome is not None:
                    outcomes.append(outcome)

            result = TickResult(
                started_at=now,
                candidates=len(candidates),
                claimed=claimed,
                succeeded=sum(1 for o in outcomes if o.status is RunStatus.SUCCESS),
                failed=sum(1 for o in outcomes if o.status is RunStatus.FAILED),
                skipped=sum(1 for o in outcomes if o.status is RunStatus.SKIPPED),
                lost=lost,
                errors=errors,
                outcomes=tuple(outcomes),
            )

            logger.info(
                "scheduler_tick",
                extra={
                    "candidates": result.candidates,
                    "claimed": result.claimed,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "lost": result.lost,
                    "errors": result.errors,
                },
            )
            return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="recurring-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current profile to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _find_candidates(self, now: datetime, limit: int) -> list[RecurringProfile]:
        session = self._session_factory()
        try:
            return ProfileStore(session).find_due(now, limit)
        finally:
            session.close()

    def _process_profile(
        self, candidate: RecurringProfile, now: datetime,
    ) -> tuple[_ProfileResult, RunOutcome | None]:
        session = self._session_factory()
        try:
            store = ProfileStore(session)
            fresh = store.get_snapshot(candidate.profile_id)

            if fresh is None:
                session.rollback()
                return _ProfileResult.IGNORED, None

            if fresh.status is not ProfileStatus.ACTIVE:
                outcome = self._executor_factory(session).skip(
                    fresh, fresh.next_run_at,
                )
                session.commit()
                return _ProfileResult.IGNORED, outcome

            if not is_due(fresh.next_run_at, fresh.status, now):
                session.rollback()
                return _ProfileResult.IGNORED, None

            claim = store.claim(fresh)
            if not claim.claimed:
                session.rollback()
                return _ProfileResult.LOST, None
            session.commit()

            with LogContext.bind(run_at=claim.run_at.isoformat()):
                outcome = self._executor_factory(session).execute(fresh, claim.run_at)
                session.commit()
            return _ProfileResult.CLAIMED, outcome
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

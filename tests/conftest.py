"""
Pytest fixtures for the billing test suite.

Provides:
- Structured-logging fixtures (configured once, captured per test)
- In-memory SQLite with the real ORM models
- A deterministic clock (naive datetimes: SQLite strips tzinfo)
- Wired executor / scheduler fixtures and a default tenant
"""

import json
import logging
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.db.base import Base
from billing_kernel.db.engine import build_engine
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.invoice_service import InvoiceService
from billing_recurring.models.immutability import register_run_immutability_listeners
from billing_recurring.services.executor import RunExecutor
from billing_recurring.services.scheduler import RecurringScheduler

from tests.factories import TICK_TIME, RecordingMailer, Tenant, create_tenant


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, scheduler):
            scheduler.tick()
            logs = captured_logs()
            assert any(r["message"] == "scheduler_tick" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _run_immutability():
    """Run ledger listeners are always on, even after a test unregistered them."""
    register_run_immutability_listeners()
    yield
    register_run_immutability_listeners()


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    # Naive datetimes for SQLite compatibility (SQLite strips tzinfo)
    return DeterministicClock(fixed_time=TICK_TIME)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def executor_factory(clock, mailer):
    def _factory(session: Session, **overrides) -> RunExecutor:
        return RunExecutor(
            session=session,
            invoice_service=InvoiceService(session, clock=clock, mailer=mailer),
            activity_service=ActivityService(session, clock=clock),
            **overrides,
        )

    return _factory


@pytest.fixture
def scheduler(session_factory, executor_factory, clock):
    return RecurringScheduler(
        session_factory=session_factory,
        executor_factory=executor_factory,
        clock=clock,
        tick_interval_seconds=0.05,
    )


@pytest.fixture
def tenant(db_session, clock) -> Tenant:
    return create_tenant(db_session, clock)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite shared by several threads (in-memory is per-thread)."""
    eng = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()

"""
RecurringOrchestrator -- DI container for the recurring invoice engine.

Contract:
    Single place where the engine's dependencies are composed: clock,
    mailer, configuration, executor, scheduler and the lifecycle service.

Architecture: billing_recurring (top-level).  Nothing in billing_kernel
    imports from billing_recurring; the wiring lives here.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Configuration is read once (``billing_config``) and passed down.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from billing_config.schema import BillingConfig
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceVariant
from billing_kernel.services.access_service import AccessService
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.invoice_service import InvoiceMailer, InvoiceService, LoggingMailer
from billing_recurring.domain.types import TickResult
from billing_recurring.models.immutability import register_run_immutability_listeners
from billing_recurring.services.executor import RunExecutor
from billing_recurring.services.profile_service import RecurringProfileService
from billing_recurring.services.scheduler import RecurringScheduler

logger = get_logger("recurring.orchestrator")


class RecurringOrchestrator:
    """DI container for the recurring engine.

    Contract:
        - ``create_executor(session)`` returns a wired RunExecutor.
        - ``create_scheduler()`` returns a RecurringScheduler for background use.
        - ``create_profile_service(session)`` returns the management service.
        - ``process_due_profiles(limit)`` runs one tick on demand.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT commit sessions it hands to services.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: BillingConfig | None = None,
        clock: Clock | None = None,
        mailer: InvoiceMailer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or BillingConfig()
        self._clock = clock or SystemClock()
        self._mailer = mailer or LoggingMailer()
        register_run_immutability_listeners()

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_invoice_service(self, session: Session) -> InvoiceService:
        return InvoiceService(session, clock=self._clock, mailer=self._mailer)

    def create_executor(self, session: Session) -> RunExecutor:
        executor_config = self._config.executor
        return RunExecutor(
            session=session,
            invoice_service=self.create_invoice_service(session),
            activity_service=ActivityService(session, clock=self._clock),
            error_message_max_length=executor_config.error_message_max_length,
            isolate_delivery_failures=executor_config.isolate_delivery_failures,
        )

    def create_scheduler(self) -> RecurringScheduler:
        scheduler_config = self._config.scheduler
        return RecurringScheduler(
            session_factory=self._session_factory,
            executor_factory=self.create_executor,
            clock=self._clock,
            batch_size=scheduler_config.batch_size,
            tick_interval_seconds=scheduler_config.tick_interval_seconds,
        )

    def create_profile_service(self, session: Session) -> RecurringProfileService:
        defaults = self._config.profiles
        return RecurringProfileService(
            session=session,
            access_service=AccessService(session),
            invoice_service=self.create_invoice_service(session),
            activity_service=ActivityService(session, clock=self._clock),
            default_due_days=defaults.default_due_days,
            default_variant=InvoiceVariant(defaults.default_variant),
        )

    # -------------------------------------------------------------------------
    # Manual trigger
    # -------------------------------------------------------------------------

    def process_due_profiles(self, limit: int | None = None) -> TickResult:
        """Run one driver tick now.  ``limit`` is clamped to [1, 100]."""
        result = self.create_scheduler().tick(limit=limit)
        logger.info("process_due_profiles", extra={"processed": result.processed})
        return result

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> BillingConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

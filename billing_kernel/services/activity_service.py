"""
ActivityService -- writes the per-organization activity feed.

Responsibility:
    Appends ``ActivityLogModel`` rows for user-visible history: invoices
    created by a recurring profile, profile lifecycle transitions, delivery
    failures.

Architecture position:
    Kernel > Services.

Failure modes:
    - ``record_event`` propagates database errors to the caller.
    - ``record_event_safely`` never raises: the write happens inside a
      SAVEPOINT, and a failure is rolled back to that savepoint and logged.
      Activity history is not allowed to fail a recurring run.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger
from billing_kernel.models.activity_log import (
    ActivityEntityType,
    ActivityEventType,
    ActivityLogModel,
)
from billing_kernel.services.base import BaseService

logger = get_logger("services.activity")


class ActivityService(BaseService):
    """Append-only writer for the activity feed."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record_event(
        self,
        organization_id: UUID,
        actor_user_id: UUID | None,
        entity_type: ActivityEntityType,
        entity_id: UUID,
        event_type: ActivityEventType,
        meta: dict[str, Any] | None = None,
    ) -> UUID:
        """Append one activity row and return its id."""
        entry = ActivityLogModel(
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            event_type=event_type.value,
            meta=meta,
            occurred_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "activity_recorded",
            extra={
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "event_type": event_type.value,
            },
        )
        return entry.id

    def record_event_safely(
        self,
        organization_id: UUID,
        actor_user_id: UUID | None,
        entity_type: ActivityEntityType,
        entity_id: UUID,
        event_type: ActivityEventType,
        meta: dict[str, Any] | None = None,
    ) -> UUID | None:
        """Fire-and-forget variant of ``record_event``.

        Returns the new row id, or None when the write failed.
        """
        savepoint = self._session.begin_nested()
        try:
            entry_id = self.record_event(
                organization_id, actor_user_id, entity_type,
                entity_id, event_type, meta,
            )
            savepoint.commit()
            return entry_id
        except Exception:
            savepoint.rollback()
            logger.exception(
                "activity_record_failed",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                    "event_type": event_type.value,
                },
            )
            return None

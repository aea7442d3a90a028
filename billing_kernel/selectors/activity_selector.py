"""
Module: billing_kernel.selectors.activity_selector
Responsibility: Read access to the activity feed, newest first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from billing_kernel.models.activity_log import (
    ActivityEntityType,
    ActivityEventType,
    ActivityLogModel,
)
from billing_kernel.selectors.base import BaseSelector

DEFAULT_LIMIT = 30
MAX_LIMIT = 100


@dataclass(frozen=True)
class ActivityEvent:
    id: UUID
    organization_id: UUID
    actor_user_id: UUID | None
    entity_type: ActivityEntityType
    entity_id: UUID
    event_type: ActivityEventType
    meta: dict[str, Any] | None
    occurred_at: datetime


class ActivitySelector(BaseSelector):

    def _to_dto(self, model: ActivityLogModel) -> ActivityEvent:
        return ActivityEvent(
            id=model.id,
            organization_id=model.organization_id,
            actor_user_id=model.actor_user_id,
            entity_type=ActivityEntityType(model.entity_type),
            entity_id=model.entity_id,
            event_type=ActivityEventType(model.event_type),
            meta=model.meta,
            occurred_at=model.occurred_at,
        )

    def list_events(
        self,
        organization_id: UUID,
        limit: int = DEFAULT_LIMIT,
        entity_type: ActivityEntityType | None = None,
        event_type: ActivityEventType | None = None,
        entity_id: UUID | None = None,
    ) -> list[ActivityEvent]:
        """Newest-first events for one organization.  ``limit`` is clamped to [1, 100]."""
        take = min(max(limit, 1), MAX_LIMIT)

        stmt = select(ActivityLogModel).where(
            ActivityLogModel.organization_id == organization_id,
        )
        if entity_type is not None:
            stmt = stmt.where(ActivityLogModel.entity_type == entity_type.value)
        if event_type is not None:
            stmt = stmt.where(ActivityLogModel.event_type == event_type.value)
        if entity_id is not None:
            stmt = stmt.where(ActivityLogModel.entity_id == entity_id)

        stmt = stmt.order_by(
            ActivityLogModel.occurred_at.desc(), ActivityLogModel.id.desc(),
        ).limit(take)

        return [self._to_dto(m) for m in self.session.scalars(stmt)]

"""
Module: billing_kernel.models.activity_log
Responsibility: ORM persistence for the per-organization activity feed.
Architecture position: Kernel > Models.  May import from db/base.py only.

The activity feed is a user-facing history ("invoice INV-2024-0003 created
by recurring profile"), not the correctness record of the recurring engine;
that role belongs to the recurring run ledger.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString


class ActivityEntityType(str, Enum):
    INVOICE = "INVOICE"
    RECURRING_PROFILE = "RECURRING_PROFILE"


class ActivityEventType(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SENT = "SENT"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    CANCELLED = "CANCELLED"


class ActivityLogModel(Base):
    __tablename__ = "activity_logs"

    __table_args__ = (
        Index("ix_activity_org_occurred", "organization_id", "occurred_at"),
        Index("ix_activity_entity", "entity_type", "entity_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime]

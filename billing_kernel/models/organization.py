"""
Module: billing_kernel.models.organization
Responsibility: Tenancy and plan tables consulted by the access gate:
    organizations, memberships, clients and per-user subscriptions.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString


class PlanId(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"


class OrganizationModel(TrackedBase):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class OrganizationMemberModel(TrackedBase):
    __tablename__ = "organization_members"

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_org_member"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("organizations.id"), nullable=False,
    )


class SubscriptionModel(TrackedBase):
    """One subscription per user; absence means the FREE plan."""

    __tablename__ = "subscriptions"

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    plan_id: Mapped[str] = mapped_column(String(20), nullable=False)


class ClientModel(TrackedBase):
    __tablename__ = "clients"

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("organizations.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

"""
AccessService -- organization access and plan gate.

Responsibility:
    Decides whether a user may manage recurring invoices for an
    organization: the user must be a member (or the owner) of the
    organization, and the user's subscription must be on the PRO plan.

Architecture position:
    Kernel > Services.  Consulted on management paths only; the scheduler
    driver never calls it.

Failure modes:
    - OrganizationNotFoundError: organization id unknown.
    - OrganizationAccessDeniedError: neither member nor owner.
    - FeatureNotAvailableError: plan does not include the feature.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from billing_kernel.exceptions import (
    FeatureNotAvailableError,
    OrganizationAccessDeniedError,
    OrganizationNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.organization import (
    OrganizationMemberModel,
    OrganizationModel,
    PlanId,
    SubscriptionModel,
)
from billing_kernel.services.base import BaseService

logger = get_logger("services.access")

RECURRING_INVOICES_FEATURE = "recurring_invoices"


class AccessService(BaseService):
    """Read-only authorization checks.  Never writes."""

    def get_plan_id(self, user_id: UUID) -> PlanId:
        """Plan of the user's subscription; FREE when there is none."""
        plan_id = self._session.execute(
            select(SubscriptionModel.plan_id).where(SubscriptionModel.user_id == user_id)
        ).scalar_one_or_none()
        return PlanId(plan_id) if plan_id else PlanId.FREE

    def assert_org_access(self, user_id: UUID, organization_id: UUID) -> None:
        membership = self._session.execute(
            select(OrganizationMemberModel.id).where(
                OrganizationMemberModel.user_id == user_id,
                OrganizationMemberModel.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if membership is not None:
            return

        # Owner fallback
        org = self._session.get(OrganizationModel, organization_id)
        if org is None:
            raise OrganizationNotFoundError(str(organization_id))
        if org.owner_id != user_id:
            logger.warning(
                "organization_access_denied",
                extra={"user_id": str(user_id), "organization_id": str(organization_id)},
            )
            raise OrganizationAccessDeniedError(str(user_id), str(organization_id))

    def assert_feature_enabled(self, user_id: UUID, organization_id: UUID) -> None:
        """Membership check, then the PRO plan requirement for recurring invoices."""
        self.assert_org_access(user_id, organization_id)

        plan = self.get_plan_id(user_id)
        if plan != PlanId.PRO:
            raise FeatureNotAvailableError(RECURRING_INVOICES_FEATURE, plan.value)

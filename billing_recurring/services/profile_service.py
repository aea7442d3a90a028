"""
RecurringProfileService -- management surface for recurring profiles.

Responsibility:
    Create, list, read, update, pause, resume and cancel profiles, and read
    a profile's run history.  Every operation is gated by the access
    service (organization membership + PRO plan) and every state change is
    written to the activity feed.

Architecture position:
    billing_recurring/services.  Management path only: the scheduler driver
    never calls this service and is never gated.

Invariants enforced:
    - New profiles start ACTIVE, ``next_run_at = start_at``, ``version = 0``.
    - CANCELLED is terminal: pause, resume and status updates on a
      cancelled profile raise ProfileCancelledError; cancel is a no-op.
    - Lifecycle changes never touch ``version``; only the claim does.
    - ``update`` changes ``next_run_at`` only when it is supplied.
    - Profiles are never deleted.

Failure modes:
    - InvalidIntervalError / InvalidProfileFieldError on bad input.
    - TemplateInvoiceNotFoundError / CrossTenantTemplateError /
      TemplateHasNoItemsError for an unusable template.
    - ProfileNotFoundError, OrganizationAccessDeniedError,
      FeatureNotAvailableError.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.exceptions import (
    InvalidIntervalError,
    InvalidProfileFieldError,
    ProfileCancelledError,
    ProfileNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.activity_log import ActivityEntityType, ActivityEventType
from billing_kernel.models.invoice import InvoiceVariant
from billing_kernel.services.access_service import AccessService
from billing_kernel.services.activity_service import ActivityService
from billing_kernel.services.base import BaseService
from billing_kernel.services.invoice_service import InvoiceService
from billing_recurring.domain.interval import coerce_unit
from billing_recurring.domain.types import (
    CreateProfileRequest,
    ProfileStatus,
    RecurringProfile,
    RecurringRun,
    UpdateProfileRequest,
)
from billing_recurring.models.recurring import RecurringProfileModel
from billing_recurring.services.profile_store import ProfileStore
from billing_recurring.services.run_ledger import DEFAULT_HISTORY_LIMIT, RunSelector

logger = get_logger("recurring.profiles")

DEFAULT_DUE_DAYS = 7


def _validate_interval_count(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidIntervalError("interval_count", value)
    return value


def _validate_due_days(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidProfileFieldError("due_days", value, "must be an integer >= 0")
    return value


def _validate_variant(value: Any) -> InvoiceVariant:
    try:
        return InvoiceVariant(value)
    except ValueError:
        raise InvalidProfileFieldError(
            "variant", value, "must be one of: ua, international",
        ) from None


def _validate_status(value: Any) -> ProfileStatus:
    try:
        return ProfileStatus(value)
    except ValueError:
        raise InvalidProfileFieldError(
            "status", value, "must be one of: ACTIVE, PAUSED, CANCELLED",
        ) from None


def _validate_datetime(field: str, value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidProfileFieldError(field, value, "must be a datetime")
    return value


class RecurringProfileService(BaseService):
    """Lifecycle operations on recurring profiles."""

    def __init__(
        self,
        session: Session,
        access_service: AccessService,
        invoice_service: InvoiceService,
        activity_service: ActivityService,
        default_due_days: int = DEFAULT_DUE_DAYS,
        default_variant: InvoiceVariant = InvoiceVariant.UA,
    ):
        super().__init__(session)
        self._access = access_service
        self._invoices = invoice_service
        self._activity = activity_service
        self._store = ProfileStore(session)
        self._runs = RunSelector(session)
        self._default_due_days = default_due_days
        self._default_variant = default_variant

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create(self, actor_id: UUID, request: CreateProfileRequest) -> RecurringProfile:
        """Create an ACTIVE profile whose first occurrence is ``start_at``."""
        self._access.assert_feature_enabled(actor_id, request.organization_id)

        unit = coerce_unit(request.interval_unit)
        count = _validate_interval_count(request.interval_count)
        due_days = _validate_due_days(
            self._default_due_days if request.due_days is None else request.due_days
        )
        variant = _validate_variant(
            self._default_variant if request.variant is None else request.variant
        )
        start_at = _validate_datetime("start_at", request.start_at)

        template = self._invoices.load_template(
            request.organization_id, request.template_invoice_id,
        )

        model = RecurringProfileModel(
            organization_id=request.organization_id,
            created_by_id=actor_id,
            client_id=request.client_id or template.client_id,
            template_invoice_id=request.template_invoice_id,
            interval_unit=unit.value,
            interval_count=count,
            start_at=start_at,
            next_run_at=start_at,
            due_days=due_days,
            auto_send_email=bool(request.auto_send_email),
            variant=variant.value,
            status=ProfileStatus.ACTIVE.value,
            version=0,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "recurring_profile_created",
            extra={
                "profile_id": str(model.id),
                "interval_unit": unit.value,
                "interval_count": count,
                "next_run_at": start_at,
            },
        )
        self._record(model, actor_id, ActivityEventType.CREATED, {
            "template_invoice_id": str(request.template_invoice_id),
            "interval_unit": unit.value,
            "interval_count": count,
        })

        return self._reload(model)

    def list(self, actor_id: UUID, organization_id: UUID) -> list[RecurringProfile]:
        self._access.assert_feature_enabled(actor_id, organization_id)
        return self._store.list_for_organization(organization_id)

    def get(self, actor_id: UUID, profile_id: UUID) -> RecurringProfile:
        return self._load_authorized(actor_id, profile_id).to_dto()

    def get_runs(
        self, actor_id: UUID, profile_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[RecurringRun]:
        """Newest-first run history of one profile."""
        self._load_authorized(actor_id, profile_id)
        return self._runs.list_for_profile(profile_id, limit)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def update(
        self, actor_id: UUID, profile_id: UUID, request: UpdateProfileRequest,
    ) -> RecurringProfile:
        """Apply the supplied fields.  Never recomputes the pending occurrence."""
        model = self._load_authorized(actor_id, profile_id)
        changes = request.changes()
        applied: dict[str, Any] = {}

        if "status" in changes:
            target = _validate_status(changes.pop("status"))
            current = ProfileStatus(model.status)
            if not current.can_transition_to(target):
                raise ProfileCancelledError(str(profile_id), "update")
            if target is not current:
                model.status = target.value
                applied["status"] = target.value

        if "interval_unit" in changes:
            unit = coerce_unit(changes.pop("interval_unit"))
            model.interval_unit = applied["interval_unit"] = unit.value
        if "interval_count" in changes:
            model.interval_count = applied["interval_count"] = _validate_interval_count(
                changes.pop("interval_count")
            )
        if "due_days" in changes:
            due_days = changes.pop("due_days")
            model.due_days = applied["due_days"] = (
                None if due_days is None else _validate_due_days(due_days)
            )
        if "variant" in changes:
            variant = _validate_variant(changes.pop("variant"))
            model.variant = applied["variant"] = variant.value
        if "auto_send_email" in changes:
            model.auto_send_email = applied["auto_send_email"] = bool(
                changes.pop("auto_send_email")
            )
        if "start_at" in changes:
            model.start_at = _validate_datetime("start_at", changes.pop("start_at"))
            applied["start_at"] = model.start_at.isoformat()
        if "next_run_at" in changes:
            model.next_run_at = _validate_datetime("next_run_at", changes.pop("next_run_at"))
            applied["next_run_at"] = model.next_run_at.isoformat()
        if "template_invoice_id" in changes:
            template_id = changes.pop("template_invoice_id")
            self._invoices.load_template(model.organization_id, template_id)
            model.template_invoice_id = template_id
            applied["template_invoice_id"] = str(template_id)
        if "client_id" in changes:
            client_id = changes.pop("client_id")
            model.client_id = client_id
            applied["client_id"] = str(client_id) if client_id else None

        self._session.flush()

        if applied:
            logger.info(
                "recurring_profile_updated",
                extra={"profile_id": str(profile_id), "fields": sorted(applied)},
            )
            self._record(model, actor_id, ActivityEventType.UPDATED, {"changes": applied})

        return self._reload(model)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def pause(self, actor_id: UUID, profile_id: UUID) -> RecurringProfile:
        """ACTIVE -> PAUSED.  No-op when already PAUSED."""
        model = self._load_authorized(actor_id, profile_id)
        status = ProfileStatus(model.status)

        if status is ProfileStatus.CANCELLED:
            raise ProfileCancelledError(str(profile_id), "pause")
        if status is ProfileStatus.PAUSED:
            return model.to_dto()

        return self._transition(model, actor_id, ProfileStatus.PAUSED, ActivityEventType.PAUSED)

    def resume(self, actor_id: UUID, profile_id: UUID) -> RecurringProfile:
        """PAUSED -> ACTIVE.  No-op when already ACTIVE.

        The pending occurrence is kept: a profile paused past several
        occurrences catches up one occurrence per tick.
        """
        model = self._load_authorized(actor_id, profile_id)
        status = ProfileStatus(model.status)

        if status is ProfileStatus.CANCELLED:
            raise ProfileCancelledError(str(profile_id), "resume")
        if status is ProfileStatus.ACTIVE:
            return model.to_dto()

        return self._transition(model, actor_id, ProfileStatus.ACTIVE, ActivityEventType.RESUMED)

    def cancel(self, actor_id: UUID, profile_id: UUID) -> RecurringProfile:
        """Soft-cancel.  Terminal; cancelling twice is a no-op."""
        model = self._load_authorized(actor_id, profile_id)

        if ProfileStatus(model.status) is ProfileStatus.CANCELLED:
            return model.to_dto()

        return self._transition(
            model, actor_id, ProfileStatus.CANCELLED, ActivityEventType.CANCELLED,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load_authorized(self, actor_id: UUID, profile_id: UUID) -> RecurringProfileModel:
        model = self._store.get_model(profile_id)
        if model is None:
            raise ProfileNotFoundError(str(profile_id))
        self._access.assert_feature_enabled(actor_id, model.organization_id)
        return model

    def _transition(
        self,
        model: RecurringProfileModel,
        actor_id: UUID,
        target: ProfileStatus,
        event_type: ActivityEventType,
    ) -> RecurringProfile:
        previous = model.status
        model.status = target.value
        self._session.flush()

        logger.info(
            "recurring_profile_status_changed",
            extra={
                "profile_id": str(model.id),
                "from_status": previous,
                "to_status": target.value,
            },
        )
        self._record(model, actor_id, event_type, {
            "from_status": previous,
            "to_status": target.value,
        })
        return self._reload(model)

    def _record(
        self,
        model: RecurringProfileModel,
        actor_id: UUID,
        event_type: ActivityEventType,
        meta: dict[str, Any],
    ) -> None:
        self._activity.record_event_safely(
            organization_id=model.organization_id,
            actor_user_id=actor_id,
            entity_type=ActivityEntityType.RECURRING_PROFILE,
            entity_id=model.id,
            event_type=event_type,
            meta=meta,
        )

    def _reload(self, model: RecurringProfileModel) -> RecurringProfile:
        # created_at / updated_at are server-generated
        self._session.refresh(model)
        return model.to_dto()

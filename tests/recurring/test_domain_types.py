"""
Tests for billing_recurring.domain.types.

Frozen DTOs, status transition rules and partial-update requests.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime
from uuid import uuid4

import pytest

from billing_kernel.models.invoice import InvoiceVariant
from billing_recurring.domain.types import (
    UNSET,
    ClaimResult,
    IntervalUnit,
    ProfileStatus,
    RecurringProfile,
    RunOutcome,
    RunStatus,
    TickResult,
    UpdateProfileRequest,
)


def _profile(**overrides) -> RecurringProfile:
    values = dict(
        profile_id=uuid4(),
        organization_id=uuid4(),
        created_by_id=uuid4(),
        template_invoice_id=uuid4(),
        interval_unit=IntervalUnit.MONTH,
        start_at=datetime(2024, 1, 1),
        next_run_at=datetime(2024, 1, 1),
        status=ProfileStatus.ACTIVE,
    )
    values.update(overrides)
    return RecurringProfile(**values)


# =============================================================================
# Enums
# =============================================================================


class TestProfileStatus:
    @pytest.mark.parametrize("target", list(ProfileStatus))
    def test_active_may_go_anywhere(self, target):
        assert ProfileStatus.ACTIVE.can_transition_to(target)

    @pytest.mark.parametrize("target", list(ProfileStatus))
    def test_paused_may_go_anywhere(self, target):
        assert ProfileStatus.PAUSED.can_transition_to(target)

    def test_cancelled_is_terminal(self):
        assert not ProfileStatus.CANCELLED.can_transition_to(ProfileStatus.ACTIVE)
        assert not ProfileStatus.CANCELLED.can_transition_to(ProfileStatus.PAUSED)
        assert ProfileStatus.CANCELLED.can_transition_to(ProfileStatus.CANCELLED)

    def test_string_values(self):
        assert ProfileStatus("PAUSED") is ProfileStatus.PAUSED
        assert RunStatus.SKIPPED.value == "SKIPPED"
        assert IntervalUnit.WEEK == "WEEK"


# =============================================================================
# Snapshots
# =============================================================================


class TestRecurringProfile:
    def test_frozen(self):
        profile = _profile()
        with pytest.raises(FrozenInstanceError):
            profile.version = 5  # type: ignore[misc]

    def test_defaults(self):
        profile = _profile()
        assert profile.version == 0
        assert profile.interval_count == 1
        assert profile.due_days == 7
        assert profile.auto_send_email is False
        assert profile.variant is InvoiceVariant.UA
        assert profile.last_invoice_id is None


class TestResults:
    def test_lost_claim_has_no_advance(self):
        result = ClaimResult(profile_id=uuid4(), claimed=False, run_at=datetime(2024, 1, 1))
        assert result.next_run_at is None
        assert result.version is None

    def test_tick_result_processed_counts_candidates(self):
        result = TickResult(started_at=datetime(2024, 1, 1), candidates=4, claimed=3, lost=1)
        assert result.processed == 4
        assert result.outcomes == ()

    def test_outcome_defaults(self):
        outcome = RunOutcome(
            profile_id=uuid4(), run_at=datetime(2024, 1, 1), status=RunStatus.FAILED,
        )
        assert outcome.delivered is False
        assert outcome.invoice_id is None


# =============================================================================
# UpdateProfileRequest
# =============================================================================


class TestUpdateProfileRequest:
    def test_empty_request_has_no_changes(self):
        assert UpdateProfileRequest().changes() == {}

    def test_only_supplied_fields(self):
        request = UpdateProfileRequest(due_days=14, auto_send_email=True)
        assert request.changes() == {"due_days": 14, "auto_send_email": True}

    def test_none_is_a_real_value(self):
        request = UpdateProfileRequest(client_id=None)
        assert request.changes() == {"client_id": None}

    def test_unset_sentinel_identity(self):
        assert UpdateProfileRequest().status is UNSET

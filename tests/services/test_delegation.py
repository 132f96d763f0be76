"""
Tests for approval delegation.

Tests cover:
- DelegationService validation and supersession of overlapping windows
- Active delegator / delegate resolution at a point in time
- A delegate decides in the delegator's pinned slot
- Expired or cancelled delegations grant nothing
- pending_for includes work a user can do on someone's behalf
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import Decision, InstanceStatus
from approval_kernel.domain.workflow import ApprovalType
from approval_kernel.exceptions import (
    DelegationNotFoundError,
    DuplicateDecisionError,
    InvalidDelegationError,
    UnauthorizedApproverError,
)
from approval_kernel.services.delegation_service import DelegationService
from tests.factories import T0, role_stage


@pytest.fixture
def delegations(session, deterministic_clock):
    return DelegationService(session, deterministic_clock)


def _delegate(session_factory, clock, delegator, delegate, days=2, start=T0):
    s = session_factory()
    try:
        d = DelegationService(s, clock).create_delegation(
            delegator, delegate, starts_at=start, ends_at=start + timedelta(days=days), reason="leave",
        )
        s.commit()
        return d
    finally:
        s.close()


class TestDelegationService:

    def test_create(self, delegations):
        d = delegations.create_delegation("cfo-1", "deputy-1", T0, T0 + timedelta(days=1))
        assert d.is_active
        assert delegations.get(d.delegation_id) == d

    @pytest.mark.parametrize(
        "delegator,delegate,days",
        [("cfo-1", "cfo-1", 1), ("", "deputy-1", 1), ("cfo-1", "deputy-1", 0)],
    )
    def test_invalid(self, delegations, delegator, delegate, days):
        with pytest.raises(InvalidDelegationError):
            delegations.create_delegation(delegator, delegate, T0, T0 + timedelta(days=days))

    def test_overlapping_window_supersedes_previous(self, delegations):
        first = delegations.create_delegation("cfo-1", "deputy-1", T0, T0 + timedelta(days=3))
        second = delegations.create_delegation("cfo-1", "admin-1", T0 + timedelta(days=1), T0 + timedelta(days=5))

        assert not delegations.get(first.delegation_id).is_active
        assert delegations.get(second.delegation_id).is_active
        assert delegations.resolve_delegate("cfo-1", T0 + timedelta(days=2)) == "admin-1"

    def test_active_delegators_at_point_in_time(self, delegations):
        delegations.create_delegation("cfo-1", "deputy-1", T0, T0 + timedelta(days=1))
        delegations.create_delegation("ceo-1", "deputy-1", T0 + timedelta(days=2), T0 + timedelta(days=3))

        assert delegations.active_delegators_for("deputy-1", T0) == ("cfo-1",)
        assert delegations.active_delegators_for("deputy-1", T0 + timedelta(days=2)) == ("ceo-1",)
        assert delegations.active_delegators_for("deputy-1", T0 + timedelta(days=10)) == ()

    def test_cancel(self, delegations):
        d = delegations.create_delegation("cfo-1", "deputy-1", T0, T0 + timedelta(days=1))
        assert not delegations.cancel_delegation(d.delegation_id).is_active
        assert delegations.active_delegators_for("deputy-1", T0) == ()

    def test_unknown(self, delegations):
        with pytest.raises(DelegationNotFoundError):
            delegations.cancel_delegation(uuid4())

    def test_list_for_user(self, delegations, deterministic_clock):
        delegations.create_delegation("cfo-1", "deputy-1", T0, T0 + timedelta(days=1))
        deterministic_clock.advance(60)
        delegations.create_delegation("deputy-1", "admin-1", T0 + timedelta(days=5), T0 + timedelta(days=6))

        listed = delegations.list_for_user("deputy-1")
        assert [d.delegator_id for d in listed] == ["deputy-1", "cfo-1"]


class TestDelegatedDecisions:

    @pytest.fixture
    def cfo_stage(self, publish_workflow):
        return publish_workflow("CFO only", [role_stage(1, "CFO")])

    def test_delegate_fills_delegators_slot(
        self, approval_engine, cfo_stage, session_factory, deterministic_clock
    ):
        _delegate(session_factory, deterministic_clock, "cfo-1", "deputy-1")
        instance = approval_engine.submit(None, Decimal("1"), "REQ-D")

        result = approval_engine.decide(instance.instance_id, "deputy-1", Decision.APPROVED)

        assert result.status == InstanceStatus.APPROVED
        (recorded,) = approval_engine.get_instance(instance.instance_id).decisions
        assert recorded.approver_id == "cfo-1"
        assert recorded.acted_by == "deputy-1"

    def test_delegator_cannot_decide_again(
        self, approval_engine, publish_workflow, session_factory, deterministic_clock
    ):
        publish_workflow("Committee", [role_stage(1, "COMMITTEE", approval_type=ApprovalType.ALL)])
        _delegate(session_factory, deterministic_clock, "A", "deputy-1")
        instance = approval_engine.submit(None, Decimal("1"), "REQ-D")

        approval_engine.decide(instance.instance_id, "deputy-1", Decision.APPROVED)
        with pytest.raises(DuplicateDecisionError):
            approval_engine.decide(instance.instance_id, "A", Decision.APPROVED)
        with pytest.raises(DuplicateDecisionError):
            approval_engine.decide(instance.instance_id, "deputy-1", Decision.APPROVED)

    def test_expired_delegation_grants_nothing(
        self, approval_engine, cfo_stage, session_factory, deterministic_clock
    ):
        _delegate(session_factory, deterministic_clock, "cfo-1", "deputy-1", days=1)
        instance = approval_engine.submit(None, Decimal("1"), "REQ-D")
        deterministic_clock.advance_hours(25)

        with pytest.raises(UnauthorizedApproverError):
            approval_engine.decide(instance.instance_id, "deputy-1", Decision.APPROVED)

    def test_pending_for_includes_delegated_work(
        self, approval_engine, cfo_stage, session_factory, deterministic_clock
    ):
        _delegate(session_factory, deterministic_clock, "cfo-1", "deputy-1")
        instance = approval_engine.submit(None, Decimal("1"), "REQ-D")

        assert [i.instance_id for i in approval_engine.pending_for("deputy-1")] == [instance.instance_id]
        assert approval_engine.pending_for("admin-1") == []

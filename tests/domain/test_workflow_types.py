"""
Tests for the pure workflow and instance value objects.

Tests cover:
- Approver specification variant: exactly one of role / user
- EscalationRule validation
- Definition stage lookup and last-stage detection
- Snapshot encoding and its hash
- Instance lifecycle transition table
"""

from decimal import Decimal

import pytest

from approval_kernel.domain.approval import (
    INSTANCE_TRANSITIONS,
    TERMINAL_INSTANCE_STATUSES,
    InstanceStatus,
    can_transition,
)
from approval_kernel.domain.workflow import (
    ApprovalType,
    EscalationRule,
    RequisitionType,
    RoleApprover,
    UserApprover,
    approver_from_fields,
    definition_from_snapshot,
    definition_to_snapshot,
    snapshot_hash,
)
from tests.factories import make_definition, role_stage, user_stage


class TestApproverSpecification:

    def test_role_only(self):
        assert approver_from_fields("CFO", None) == RoleApprover("CFO")

    def test_user_only(self):
        assert approver_from_fields(None, "u-1") == UserApprover("u-1")

    def test_both_rejected(self):
        with pytest.raises(ValueError, match="not both"):
            approver_from_fields("CFO", "u-1")

    def test_neither_rejected(self):
        with pytest.raises(ValueError):
            approver_from_fields(None, None)

    def test_empty_role_rejected(self):
        with pytest.raises(ValueError):
            RoleApprover("")

    def test_describe(self):
        assert RoleApprover("CFO").describe() == "role:CFO"
        assert UserApprover("u-1").describe() == "user:u-1"


class TestEscalationRule:

    def test_valid(self):
        rule = EscalationRule(after_hours=24, escalate_to="U9")
        assert rule.after_hours == 24

    @pytest.mark.parametrize("hours", [0, -1])
    def test_non_positive_hours_rejected(self, hours):
        with pytest.raises(ValueError, match="positive"):
            EscalationRule(after_hours=hours, escalate_to="U9")

    def test_fractional_hours_rejected(self):
        with pytest.raises(ValueError, match="integer"):
            EscalationRule(after_hours=1.5, escalate_to="U9")

    def test_bool_is_not_an_hour_count(self):
        with pytest.raises(ValueError):
            EscalationRule(after_hours=True, escalate_to="U9")

    def test_target_required(self):
        with pytest.raises(ValueError):
            EscalationRule(after_hours=4, escalate_to="")


class TestWorkflowDefinition:

    def test_stage_lookup(self):
        d = make_definition(stages=(role_stage(1, "DEPARTMENT_HEAD"), role_stage(2, "CFO")))
        assert d.stage(2).approver == RoleApprover("CFO")
        assert d.stage_count == 2

    def test_unknown_stage_raises(self):
        d = make_definition()
        with pytest.raises(KeyError):
            d.stage(5)

    def test_is_last_stage(self):
        d = make_definition(stages=(role_stage(1, "DEPARTMENT_HEAD"), role_stage(2, "CFO")))
        assert not d.is_last_stage(1)
        assert d.is_last_stage(2)


class TestSnapshot:

    def _definition(self):
        return make_definition(
            name="Capital",
            requisition_type=RequisitionType.CAPITAL_EXPENDITURE,
            min_amount="1000.50",
            max_amount=None,
            stages=(
                role_stage(1, "DEPARTMENT_HEAD"),
                user_stage(
                    2,
                    "cfo-1",
                    approval_type=ApprovalType.MAJORITY,
                    escalation=EscalationRule(48, "ceo-1"),
                ),
            ),
        )

    def test_snapshot_restores_definition(self):
        d = self._definition()
        restored = definition_from_snapshot(definition_to_snapshot(d))
        assert restored == d

    def test_amounts_stored_as_strings(self):
        snap = definition_to_snapshot(self._definition())
        assert snap["applicability"]["min_amount"] == "1000.5"
        assert snap["applicability"]["max_amount"] is None
        assert Decimal(snap["applicability"]["min_amount"]) == Decimal("1000.50")

    def test_hash_is_stable(self):
        snap = definition_to_snapshot(self._definition())
        assert snapshot_hash(snap) == snapshot_hash(dict(snap))

    def test_hash_detects_change(self):
        snap = definition_to_snapshot(self._definition())
        tampered = dict(snap, name="Capital (edited)")
        assert snapshot_hash(snap) != snapshot_hash(tampered)


class TestInstanceLifecycle:

    def test_pending_goes_in_progress(self):
        assert can_transition(InstanceStatus.PENDING, InstanceStatus.IN_PROGRESS)

    @pytest.mark.parametrize(
        "target",
        [InstanceStatus.APPROVED, InstanceStatus.REJECTED, InstanceStatus.CANCELLED],
    )
    def test_in_progress_reaches_terminal(self, target):
        assert can_transition(InstanceStatus.IN_PROGRESS, target)

    def test_pending_cannot_approve_directly(self):
        assert not can_transition(InstanceStatus.PENDING, InstanceStatus.APPROVED)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_INSTANCE_STATUSES:
            assert INSTANCE_TRANSITIONS[status] == frozenset()
            for target in InstanceStatus:
                assert not can_transition(status, target)

"""
Tests for WorkflowSelector against the database.

Tests cover:
- Candidate filtering by requisition type and active flag
- Overlaps are logged; strict mode refuses recency / id ties
- Narrower windows and typed workflows are not ambiguous
- No applicable workflow
"""

from decimal import Decimal

import pytest

from approval_kernel.domain.workflow import RequisitionType
from approval_kernel.exceptions import AmbiguousWorkflowMatchError, NoApplicableWorkflowError
from approval_kernel.selectors.workflow_selector import WorkflowSelector
from tests.factories import role_stage

STOCK = "STOCK_REPLENISHMENT"


def _stages():
    return [role_stage(1, "DEPARTMENT_HEAD")]


class TestCandidates:

    def test_filters_type_and_active(self, session, publish_workflow):
        publish_workflow("any", _stages())
        publish_workflow("stock", _stages(), requisition_type=STOCK)
        publish_workflow("emergency", _stages(), requisition_type="EMERGENCY")
        publish_workflow("inactive", _stages(), is_active=False)

        names = {d.name for d in WorkflowSelector(session).candidates(RequisitionType.STOCK_REPLENISHMENT)}
        assert names == {"any", "stock"}
        assert {d.name for d in WorkflowSelector(session).candidates(None)} == {"any"}


class TestSelect:

    def test_no_match(self, session, publish_workflow):
        publish_workflow("small", _stages(), min_amount="0", max_amount="100")
        with pytest.raises(NoApplicableWorkflowError) as exc_info:
            WorkflowSelector(session).select(STOCK, Decimal("500"))
        assert exc_info.value.code == "NO_APPLICABLE_WORKFLOW"

    def test_string_type_accepted(self, session, publish_workflow):
        publish_workflow("stock", _stages(), requisition_type=STOCK)
        assert WorkflowSelector(session).select(STOCK, Decimal("1")).name == "stock"

    def test_recency_tie_logged_and_resolved(
        self, session, publish_workflow, deterministic_clock, captured_logs
    ):
        publish_workflow("older", _stages(), min_amount="0", max_amount="5000")
        deterministic_clock.advance_hours(1)
        publish_workflow("newer", _stages(), min_amount="0", max_amount="5000")

        selected = WorkflowSelector(session).select(None, Decimal("1200"))

        assert selected.name == "newer"
        (record,) = [r for r in captured_logs() if r["message"] == "workflow_match_ambiguous"]
        assert record["tie_level"] == "recency"
        assert len(record["candidate_ids"]) == 2

    def test_strict_mode_refuses_recency_tie(self, session, publish_workflow, deterministic_clock):
        publish_workflow("older", _stages(), min_amount="0", max_amount="5000")
        deterministic_clock.advance_hours(1)
        publish_workflow("newer", _stages(), min_amount="0", max_amount="5000")

        with pytest.raises(AmbiguousWorkflowMatchError) as exc_info:
            WorkflowSelector(session, strict=True).select(None, Decimal("1200"))
        assert len(exc_info.value.candidate_ids) == 2

    def test_strict_mode_accepts_window_tie_break(self, session, publish_workflow):
        publish_workflow("wide", _stages(), min_amount="0", max_amount="50000")
        publish_workflow("narrow", _stages(), min_amount="0", max_amount="5000")

        assert WorkflowSelector(session, strict=True).select(None, Decimal("5000")).name == "narrow"

    def test_typed_workflow_preferred(self, session, publish_workflow):
        publish_workflow("narrow any", _stages(), min_amount="1000", max_amount="2000")
        publish_workflow("stock", _stages(), requisition_type=STOCK)
        assert WorkflowSelector(session, strict=True).select(STOCK, Decimal("1500")).name == "stock"

    def test_repeated_calls_agree(self, session, publish_workflow):
        publish_workflow("a", _stages())
        publish_workflow("b", _stages())
        selector = WorkflowSelector(session)
        picks = {selector.select(None, Decimal("1")).workflow_id for _ in range(5)}
        assert len(picks) == 1

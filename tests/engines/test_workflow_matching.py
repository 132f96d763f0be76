"""
Tests for pure workflow selection and definition validation.

Tests cover:
- applies_to: type filter, inclusive bounds, open bounds
- select_workflow tie-break: type > window > recency > id
- Determinism under reordering (hypothesis)
- validate_definition structural checks
"""

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.workflow_matching import (
    amount_window,
    applies_to,
    select_workflow,
    validate_definition,
)
from approval_kernel.domain.workflow import Applicability, RequisitionType
from tests.factories import T0, make_definition, role_stage

STOCK = RequisitionType.STOCK_REPLENISHMENT


class TestAppliesTo:

    def test_bounds_inclusive(self):
        app = Applicability(min_amount=Decimal("0"), max_amount=Decimal("5000"))
        assert applies_to(app, None, Decimal("0"))
        assert applies_to(app, None, Decimal("5000"))
        assert not applies_to(app, None, Decimal("5000.01"))

    def test_missing_bound_unbounded(self):
        app = Applicability(min_amount=Decimal("50000"))
        assert applies_to(app, None, Decimal("999999999"))
        assert not applies_to(app, None, Decimal("49999.99"))

    def test_typed_predicate_requires_equal_type(self):
        app = Applicability(requisition_type=STOCK)
        assert applies_to(app, STOCK, Decimal("1"))
        assert not applies_to(app, RequisitionType.EMERGENCY, Decimal("1"))
        assert not applies_to(app, None, Decimal("1"))

    def test_any_type_predicate_matches_everything(self):
        app = Applicability()
        assert applies_to(app, STOCK, Decimal("1"))
        assert applies_to(app, None, Decimal("1"))

    def test_amount_window(self):
        assert amount_window(Applicability(min_amount=Decimal(10), max_amount=Decimal(15))) == 5
        assert amount_window(Applicability(min_amount=Decimal(10))) is None


class TestSelectWorkflow:

    def test_no_match(self):
        d = make_definition(min_amount="0", max_amount="100")
        match = select_workflow([d], None, Decimal("500"))
        assert match.selected is None
        assert not match.overlap

    def test_single_match(self):
        d = make_definition(min_amount="0", max_amount="5000")
        match = select_workflow([d], STOCK, Decimal("1200"))
        assert match.selected == d
        assert not match.overlap

    def test_inactive_ignored(self):
        d = make_definition(is_active=False)
        assert select_workflow([d], None, Decimal("1")).selected is None

    def test_none_amount_treated_as_zero(self):
        low = make_definition(name="low", min_amount="0", max_amount="10")
        high = make_definition(name="high", min_amount="1")
        assert select_workflow([low, high], None, None).selected == low

    def test_typed_beats_any_type(self):
        typed = make_definition(name="typed", requisition_type=STOCK)
        narrow = make_definition(name="narrow", min_amount="1000", max_amount="2000")
        match = select_workflow([narrow, typed], STOCK, Decimal("1200"))
        assert match.selected == typed
        assert match.tie_level == "type"
        assert not match.ambiguous

    def test_narrower_window_wins(self):
        wide = make_definition(name="wide", min_amount="0", max_amount="50000")
        narrow = make_definition(name="narrow", min_amount="0", max_amount="5000")
        match = select_workflow([wide, narrow], None, Decimal("1200"))
        assert match.selected == narrow
        assert match.tie_level == "window"

    def test_open_window_is_widest(self):
        bounded = make_definition(name="bounded", min_amount="5000", max_amount="50000")
        open_ended = make_definition(name="open", min_amount="50000")
        assert select_workflow([open_ended, bounded], None, Decimal("50000")).selected == bounded

    def test_most_recent_wins_and_is_flagged_ambiguous(self):
        old = make_definition(name="old", created_at=T0)
        new = make_definition(name="new", created_at=T0 + timedelta(days=1))
        match = select_workflow([old, new], None, Decimal("1"))
        assert match.selected == new
        assert match.tie_level == "recency"
        assert match.ambiguous

    def test_id_breaks_exact_tie(self):
        a = make_definition(workflow_id=UUID(int=1))
        b = make_definition(workflow_id=UUID(int=2))
        match = select_workflow([b, a], None, Decimal("1"))
        assert match.selected == a
        assert match.tie_level == "id"

    def test_candidates_in_tie_break_order(self):
        wide = make_definition(name="wide", min_amount="0", max_amount="50000")
        narrow = make_definition(name="narrow", min_amount="0", max_amount="5000")
        anything = make_definition(name="any")
        match = select_workflow([anything, wide, narrow], None, Decimal("10"))
        assert [c.name for c in match.candidates] == ["narrow", "wide", "any"]


_definitions = st.lists(
    st.builds(
        lambda rtype, low, width, age, n: make_definition(
            name=f"wf-{n}",
            requisition_type=rtype,
            min_amount=str(low) if low is not None else None,
            max_amount=str(low + width) if low is not None and width is not None else None,
            created_at=T0 + timedelta(hours=age),
        ),
        st.sampled_from([None, STOCK, RequisitionType.EMERGENCY]),
        st.one_of(st.none(), st.integers(min_value=0, max_value=1000)),
        st.one_of(st.none(), st.integers(min_value=0, max_value=1000)),
        st.integers(min_value=0, max_value=3),
        st.integers(min_value=0, max_value=10_000),
    ),
    min_size=1,
    max_size=8,
)


class TestSelectionDeterminism:

    @given(_definitions, st.integers(min_value=0, max_value=2000), st.randoms())
    @settings(max_examples=200, deadline=None)
    def test_same_answer_regardless_of_catalog_order(self, definitions, amount, rnd):
        shuffled = list(definitions)
        rnd.shuffle(shuffled)
        first = select_workflow(definitions, STOCK, Decimal(amount))
        second = select_workflow(shuffled, STOCK, Decimal(amount))
        assert first.selected == second.selected

    @given(_definitions, st.integers(min_value=0, max_value=2000))
    @settings(max_examples=200, deadline=None)
    def test_selected_always_applies(self, definitions, amount):
        match = select_workflow(definitions, STOCK, Decimal(amount))
        if match.selected is not None:
            assert applies_to(match.selected.applicability, STOCK, Decimal(amount))
        else:
            assert not any(applies_to(d.applicability, STOCK, Decimal(amount)) for d in definitions)


class TestValidateDefinition:

    def test_valid(self):
        d = make_definition(stages=(role_stage(1, "DEPARTMENT_HEAD"), role_stage(2, "CFO")))
        assert validate_definition(d) == ()

    def test_empty_stages(self):
        assert "workflow must have at least one stage" in validate_definition(make_definition(stages=()))

    def test_gap_in_stage_numbers(self):
        d = make_definition(stages=(role_stage(1, "DEPARTMENT_HEAD"), role_stage(3, "CFO")))
        assert any("contiguous" in e for e in validate_definition(d))

    def test_not_starting_at_one(self):
        d = make_definition(stages=(role_stage(2, "CFO"),))
        assert any("contiguous" in e for e in validate_definition(d))

    def test_duplicate_stage_numbers(self):
        d = make_definition(stages=(role_stage(1, "DEPARTMENT_HEAD"), role_stage(1, "CFO")))
        assert "duplicate stage_number" in validate_definition(d)

    def test_min_greater_than_max(self):
        d = make_definition(min_amount="100", max_amount="10")
        assert "min_amount cannot be greater than max_amount" in validate_definition(d)

    def test_negative_bound(self):
        d = make_definition(min_amount="-1")
        assert "min_amount cannot be negative" in validate_definition(d)

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name(self, name):
        assert "name must be non-empty" in validate_definition(make_definition(name=name))

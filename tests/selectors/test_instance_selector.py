"""Tests for InstanceSelector read queries."""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import Decision, InstanceStatus
from approval_kernel.domain.workflow import ApprovalType
from approval_kernel.exceptions import InstanceNotFoundError
from approval_kernel.selectors.instance_selector import InstanceSelector
from tests.factories import role_stage


@pytest.fixture
def committee(publish_workflow):
    return publish_workflow(
        "Committee then CFO",
        [role_stage(1, "COMMITTEE", approval_type=ApprovalType.ALL), role_stage(2, "CFO")],
    )


def test_find_missing_returns_none(session):
    assert InstanceSelector(session).find(uuid4()) is None
    with pytest.raises(InstanceNotFoundError):
        InstanceSelector(session).get(uuid4())


def test_pending_excludes_approvers_who_already_decided(session, approval_engine, committee):
    instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
    approval_engine.decide(instance.instance_id, "A", Decision.APPROVED)

    selector = InstanceSelector(session)
    assert selector.pending_for_approver("A") == []
    assert [i.instance_id for i in selector.pending_for_approver("B")] == [instance.instance_id]


def test_pending_follows_current_stage(session, approval_engine, committee):
    instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
    selector = InstanceSelector(session)
    assert selector.pending_for_approver("cfo-1") == []

    for member in ("A", "B", "C"):
        approval_engine.decide(instance.instance_id, member, Decision.APPROVED)
    session.expire_all()

    assert [i.instance_id for i in selector.pending_for_approver("cfo-1")] == [instance.instance_id]
    assert selector.pending_for_approver("C") == []


def test_pending_via_delegators_lists_instance_once(session, approval_engine, committee):
    instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
    pending = InstanceSelector(session).pending_for_approver("deputy-1", delegators=("A", "B"))
    assert [i.instance_id for i in pending] == [instance.instance_id]


def test_open_instance_and_status(session, approval_engine, committee):
    instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
    selector = InstanceSelector(session)
    assert selector.open_instance_for_request("REQ-1") == instance.instance_id

    approval_engine.cancel(instance.instance_id, reason="withdrawn")
    session.expire_all()

    assert selector.open_instance_for_request("REQ-1") is None
    view = selector.status_for_request("REQ-1")
    assert view.status == InstanceStatus.CANCELLED
    assert selector.status_for_request("REQ-404") is None


def test_list_open_ids_oldest_stage_first(session, approval_engine, committee, deterministic_clock):
    first = approval_engine.submit(None, Decimal("1"), "REQ-1")
    deterministic_clock.advance(60)
    second = approval_engine.submit(None, Decimal("1"), "REQ-2")

    selector = InstanceSelector(session)
    assert selector.list_open_ids() == [first.instance_id, second.instance_id]
    assert selector.list_open_ids(limit=1) == [first.instance_id]

"""
Tests for post-commit event delivery.

Tests cover:
- Events reach every sink in production order
- A failing sink is logged and never rolls back engine state
- Nothing is published for a rolled-back operation
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import Decision, InstanceStatus
from approval_kernel.domain.events import InstanceApproved, RecordingEventSink, StageAdvanced
from approval_kernel.exceptions import UnauthorizedApproverError
from approval_kernel.services.event_dispatcher import EventDispatcher
from tests.factories import role_stage


class _ExplodingSink:
    def __init__(self):
        self.calls = 0

    def publish(self, event):
        self.calls += 1
        raise RuntimeError("mail server down")


def _event(cls, **kwargs):
    return cls(
        instance_id=uuid4(),
        request_id="REQ",
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        **kwargs,
    )


class TestEventDispatcher:

    def test_delivers_to_all_sinks_in_order(self):
        first, second = RecordingEventSink(), RecordingEventSink()
        dispatcher = EventDispatcher([first])
        dispatcher.add_sink(second)
        events = [_event(StageAdvanced, new_stage=2), _event(InstanceApproved)]

        assert dispatcher.dispatch(events) == 0
        assert first.events == events
        assert second.events == events

    def test_failures_counted_and_logged(self, captured_logs):
        good = RecordingEventSink()
        dispatcher = EventDispatcher([_ExplodingSink(), good])

        failures = dispatcher.dispatch([_event(InstanceApproved), _event(InstanceApproved)])

        assert failures == 2
        assert len(good.events) == 2
        errors = [r for r in captured_logs() if r["message"] == "event_delivery_failed"]
        assert len(errors) == 2
        assert errors[0]["sink"] == "_ExplodingSink"
        assert errors[0]["exc_type"] == "RuntimeError"


class TestEngineDelivery:

    def test_failing_sink_does_not_roll_back(self, approval_engine, publish_workflow, event_sink):
        publish_workflow("One", [role_stage(1, "CFO")])
        exploding = _ExplodingSink()
        approval_engine.add_sink(exploding)

        instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
        result = approval_engine.decide(instance.instance_id, "cfo-1", Decision.APPROVED)

        assert result.status == InstanceStatus.APPROVED
        assert approval_engine.get_instance(instance.instance_id).status == InstanceStatus.APPROVED
        assert exploding.calls == 2
        assert [e.event_type for e in event_sink.events] == ["InstanceSubmitted", "InstanceApproved"]

    def test_nothing_published_for_failed_operation(self, approval_engine, publish_workflow, event_sink):
        publish_workflow("One", [role_stage(1, "CFO")])
        instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
        event_sink.clear()

        with pytest.raises(UnauthorizedApproverError):
            approval_engine.decide(instance.instance_id, "ceo-1", Decision.APPROVED)
        assert event_sink.events == []

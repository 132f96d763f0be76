"""
Tests for the optimistic version retry in ApprovalEngine._mutate.

Tests cover:
- A version bumped by another writer between load and commit is retried
  and the decision lands once
- Conflicts past max_conflict_retries raise OptimisticLockError and leave
  no trace (no decision, no event)

The conflicting writer runs in its own session right after the engine
loads the row; SQLite's FOR UPDATE is a no-op, so the bump is not blocked.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from approval_kernel.domain.approval import Decision, InstanceStatus
from approval_kernel.domain.events import StageAdvanced
from approval_kernel.exceptions import OptimisticLockError
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.services.approval_engine import ApprovalEngine
from tests.factories import role_stage


@pytest.fixture
def two_stage(publish_workflow):
    return publish_workflow("Two", [role_stage(1, "DEPARTMENT_HEAD"), role_stage(2, "CFO")])


@pytest.fixture
def conflicting_writer(db_engine, session_factory, monkeypatch):
    """Bump an instance's version after the engine loads it, ``times`` times."""
    if db_engine.dialect.name != "sqlite":
        pytest.skip("row locks block the conflicting writer outside SQLite")

    def _install(engine, times):
        original = engine._load_for_update
        remaining = {"count": times}

        def load_then_bump(session, instance_id):
            model = original(session, instance_id)
            if remaining["count"] > 0:
                remaining["count"] -= 1
                other = session_factory()
                try:
                    other.execute(
                        update(ApprovalInstanceModel)
                        .where(ApprovalInstanceModel.id == instance_id)
                        .values(version_id=ApprovalInstanceModel.version_id + 1)
                    )
                    other.commit()
                finally:
                    other.close()
            return model

        monkeypatch.setattr(engine, "_load_for_update", load_then_bump)
        return remaining

    return _install


def test_conflict_is_retried(approval_engine, two_stage, conflicting_writer, event_sink, captured_logs):
    instance = approval_engine.submit(None, Decimal("1"), "REQ-1")
    conflicting_writer(approval_engine, times=1)

    result = approval_engine.decide(instance.instance_id, "dh-1", Decision.APPROVED)

    assert result.advanced_to == 2
    final = approval_engine.get_instance(instance.instance_id)
    assert len(final.decisions) == 1
    assert len(event_sink.of_type(StageAdvanced)) == 1
    (retry,) = [r for r in captured_logs() if r["message"] == "optimistic_lock_retry"]
    assert retry["attempt"] == 1
    assert retry["operation"] == "decide"


def test_retries_exhausted(
    session_factory, directory, deterministic_clock, event_sink, two_stage, conflicting_writer, captured_logs
):
    engine = ApprovalEngine(
        session_factory=session_factory,
        directory=directory,
        clock=deterministic_clock,
        sinks=[event_sink],
        max_conflict_retries=2,
    )
    instance = engine.submit(None, Decimal("1"), "REQ-1")
    event_sink.clear()
    conflicting_writer(engine, times=10)

    with pytest.raises(OptimisticLockError) as exc_info:
        engine.decide(instance.instance_id, "dh-1", Decision.APPROVED)

    assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
    assert exc_info.value.entity_id == str(instance.instance_id)
    final = engine.get_instance(instance.instance_id)
    assert final.decisions == ()
    assert final.status == InstanceStatus.IN_PROGRESS
    assert event_sink.events == []

    logs = captured_logs()
    assert len([r for r in logs if r["message"] == "optimistic_lock_retry"]) == 2
    (exhausted,) = [r for r in logs if r["message"] == "optimistic_lock_exhausted"]
    assert exhausted["attempts"] == 3

"""
Pytest fixtures for the approval engine test suite.

Provides:
- Structured log capture
- A deterministic clock
- A fresh SQLite database per test (file-backed, so worker threads share it)
- An in-memory approver directory and a recording event sink
- An ApprovalEngine wired to all of the above

Environment Variables:
- APPROVALS_TEST_DATABASE_URL: run the database tests against another
  backend (e.g. PostgreSQL).  Tables are dropped and recreated per test.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO

import pytest

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.directory import InMemoryApproverDirectory
from approval_kernel.domain.events import RecordingEventSink
from approval_kernel.domain.workflow import Applicability, RequisitionType
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.approval_engine import ApprovalEngine
from approval_kernel.services.workflow_catalog import WorkflowCatalog
from tests.factories import T0


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approval_engine):
            approval_engine.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_instance_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return os.environ.get(
        "APPROVALS_TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'approvals.db'}"
    )


@pytest.fixture
def db_engine(database_url):
    """Engine with freshly created tables; disposed after the test."""
    eng = init_engine_from_url(database_url, echo=False)
    if not database_url.startswith("sqlite"):
        drop_tables()
    create_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(T0)


@pytest.fixture
def directory():
    """
    Directory with one holder per procurement role, a three-member
    committee, and a handful of role-less users used as escalation targets
    and delegates.
    """
    d = InMemoryApproverDirectory()
    d.add_user("dh-1", "DEPARTMENT_HEAD")
    d.add_user("po-1", "PROCUREMENT_OFFICER")
    d.add_user("ops-1", "OPERATIONS_MANAGER")
    d.add_user("cfo-1", "CFO")
    d.add_user("ceo-1", "CEO")
    for member in ("A", "B", "C"):
        d.add_user(member, "COMMITTEE")
    for user in ("U9", "admin-1", "deputy-1"):
        d.add_user(user)
    return d


@pytest.fixture
def event_sink():
    return RecordingEventSink()


@pytest.fixture
def approval_engine(session_factory, directory, deterministic_clock, event_sink):
    return ApprovalEngine(
        session_factory=session_factory,
        directory=directory,
        clock=deterministic_clock,
        sinks=[event_sink],
    )


@pytest.fixture
def publish_workflow(session_factory, deterministic_clock):
    """
    Publish and commit a workflow definition.

    Usage::

        wf = publish_workflow("Standard", [role_stage(1, "DEPARTMENT_HEAD")],
                              requisition_type="STOCK_REPLENISHMENT",
                              min_amount="0", max_amount="5000")
    """

    def _publish(
        name,
        stages,
        requisition_type=None,
        min_amount=None,
        max_amount=None,
        is_active=True,
    ):
        applicability = Applicability(
            requisition_type=RequisitionType(requisition_type) if requisition_type else None,
            min_amount=Decimal(min_amount) if min_amount is not None else None,
            max_amount=Decimal(max_amount) if max_amount is not None else None,
        )
        s = session_factory()
        try:
            definition = WorkflowCatalog(s, deterministic_clock).publish(
                name=name,
                applicability=applicability,
                stages=stages,
                created_by="test",
                is_active=is_active,
            )
            s.commit()
            return definition
        finally:
            s.close()

    return _publish

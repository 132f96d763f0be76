"""
Pure domain layer.

Value objects for workflow definitions, approval instances, decisions,
escalations and outward events, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    INSTANCE_TRANSITIONS,
    OPEN_INSTANCE_STATUSES,
    TERMINAL_INSTANCE_STATUSES,
    ApprovalInstance,
    ApproverSource,
    Decision,
    EscalationRecord,
    InstanceStatus,
    PinnedApprover,
    RequestStatusView,
    StageDecisionRecord,
    StageEvaluation,
    StageOutcome,
    StageUpdateResult,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.delegation import ApprovalDelegation
from approval_kernel.domain.directory import ApproverDirectory, InMemoryApproverDirectory
from approval_kernel.domain.events import (
    EngineEvent,
    Escalated,
    EventSink,
    InstanceApproved,
    InstanceCancelled,
    InstanceRejected,
    InstanceSubmitted,
    RecordingEventSink,
    StageAdvanced,
    StageBlocked,
)
from approval_kernel.domain.workflow import (
    Applicability,
    ApprovalType,
    ApproverSpec,
    EscalationRule,
    RequisitionType,
    RoleApprover,
    StageTemplate,
    UserApprover,
    WorkflowDefinition,
)

__all__ = [
    "INSTANCE_TRANSITIONS",
    "OPEN_INSTANCE_STATUSES",
    "TERMINAL_INSTANCE_STATUSES",
    "Applicability",
    "ApprovalDelegation",
    "ApprovalInstance",
    "ApprovalType",
    "ApproverDirectory",
    "ApproverSource",
    "ApproverSpec",
    "Clock",
    "Decision",
    "DeterministicClock",
    "EngineEvent",
    "Escalated",
    "EscalationRecord",
    "EscalationRule",
    "EventSink",
    "InMemoryApproverDirectory",
    "InstanceApproved",
    "InstanceCancelled",
    "InstanceRejected",
    "InstanceStatus",
    "InstanceSubmitted",
    "PinnedApprover",
    "RecordingEventSink",
    "RequestStatusView",
    "RequisitionType",
    "RoleApprover",
    "StageAdvanced",
    "StageBlocked",
    "StageDecisionRecord",
    "StageEvaluation",
    "StageOutcome",
    "StageTemplate",
    "StageUpdateResult",
    "SystemClock",
    "UserApprover",
    "WorkflowDefinition",
]

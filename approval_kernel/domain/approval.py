"""
Approval instance domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the live execution of a workflow: the instance
lifecycle state machine, the per-stage pinned approver set, the decision
ledger, escalation records, stage evaluation and ``decide`` results.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/workflow``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``INSTANCE_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* At most one ``StageDecisionRecord`` per (instance, stage, approver);
  the ledger is append-only.
* At most one ``EscalationRecord`` per (instance, stage).
* The workflow definition is a snapshot, never a live link.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from approval_kernel.domain.workflow import (
    RequisitionType,
    StageTemplate,
    WorkflowDefinition,
)


# =========================================================================
# Instance Status Lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Approval instance lifecycle states."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.IN_PROGRESS: frozenset({
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})

OPEN_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.PENDING,
    InstanceStatus.IN_PROGRESS,
})


def can_transition(from_status: InstanceStatus, to_status: InstanceStatus) -> bool:
    return to_status in INSTANCE_TRANSITIONS.get(from_status, frozenset())


class Decision(str, Enum):
    """Decision an approver can record on a stage."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class StageOutcome(str, Enum):
    """Result of applying a stage's quorum rule to its decisions."""

    SATISFIED = "SATISFIED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"


class ApproverSource(str, Enum):
    """How an approver came to be in a stage's pinned set."""

    DESIGNATED = "DESIGNATED"
    ESCALATION = "ESCALATION"
    INTERVENTION = "INTERVENTION"


# =========================================================================
# Ledger records
# =========================================================================


@dataclass(frozen=True)
class PinnedApprover:
    """One member of a stage's pinned approver set."""

    approver_id: str
    stage_number: int
    source: ApproverSource = ApproverSource.DESIGNATED
    added_at: datetime | None = None


@dataclass(frozen=True)
class StageDecisionRecord:
    """Record of a single stage decision. Immutable.

    ``approver_id`` is the pinned slot the decision occupies; ``acted_by``
    differs from it only when a delegate decided on the approver's behalf.
    """

    decision_id: UUID
    instance_id: UUID
    stage_number: int
    approver_id: str
    decision: Decision
    comments: str = ""
    decided_at: datetime | None = None
    acted_by: str | None = None
    by_escalation_target: bool = False


@dataclass(frozen=True)
class EscalationRecord:
    """A fired escalation.  At most one per (instance, stage)."""

    escalation_id: UUID
    instance_id: UUID
    stage_number: int
    original_approver: str
    escalate_to: str
    fired_at: datetime
    trigger: str = "timer"


# =========================================================================
# Instance
# =========================================================================


@dataclass(frozen=True)
class ApprovalInstance:
    """Immutable view of one request's progress through a snapshotted workflow."""

    instance_id: UUID
    request_id: str
    request_type: RequisitionType | None
    amount: Decimal | None
    definition: WorkflowDefinition
    current_stage_number: int
    status: InstanceStatus
    created_at: datetime
    stage_entered_at: datetime
    completed_at: datetime | None = None
    stage_blocked: bool = False
    cancel_reason: str | None = None
    snapshot_hash: str | None = None
    pinned: tuple[PinnedApprover, ...] = ()
    decisions: tuple[StageDecisionRecord, ...] = ()
    escalations: tuple[EscalationRecord, ...] = ()

    @property
    def workflow_id(self) -> UUID:
        return self.definition.workflow_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    @property
    def current_stage(self) -> StageTemplate:
        return self.definition.stage(self.current_stage_number)

    def pinned_for(self, stage_number: int) -> frozenset[str]:
        return frozenset(p.approver_id for p in self.pinned if p.stage_number == stage_number)

    def decisions_for(self, stage_number: int) -> tuple[StageDecisionRecord, ...]:
        return tuple(d for d in self.decisions if d.stage_number == stage_number)

    def escalation_for(self, stage_number: int) -> EscalationRecord | None:
        for e in self.escalations:
            if e.stage_number == stage_number:
                return e
        return None


# =========================================================================
# Evaluation and operation results
# =========================================================================


@dataclass(frozen=True)
class StageEvaluation:
    """Result of evaluating a stage's quorum rule."""

    outcome: StageOutcome
    approvals: int = 0
    rejections: int = 0
    quorum_size: int = 0
    required_approvals: int = 0
    reason: str = ""


@dataclass(frozen=True)
class StageUpdateResult:
    """Returned by ``decide``: what the decision did to the instance."""

    instance_id: UUID
    stage_number: int
    outcome: StageOutcome
    status: InstanceStatus
    current_stage_number: int
    advanced_to: int | None = None
    stage_blocked: bool = False
    evaluation: StageEvaluation | None = None


@dataclass(frozen=True)
class RequestStatusView:
    """Weak back-reference held by the originating request entity."""

    request_id: str
    instance_id: UUID
    status: InstanceStatus
    current_stage_number: int

"""
Module: approval_kernel.models.instance
Responsibility: ORM persistence for approval instances and their per-stage
    ledgers: pinned approver sets, stage decisions and escalation events.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Snapshot, not live link: the resolved workflow definition is frozen
      into ``definition_snapshot`` with its SHA-256 ``snapshot_hash``,
      verified every time the instance is loaded.
    - Optimistic concurrency: ``version_id`` is the mapper version counter;
      a lost update surfaces as StaleDataError.
    - At most one open instance per request id (partial unique index).
    - UNIQUE(instance_id, stage_number, approver_id) on decisions.
    - UNIQUE(instance_id, stage_number) on escalation events.
    - UNIQUE(instance_id, stage_number, approver_id) on pinned approvers.
    - Decisions, escalation events and pinned entries are append-only;
      terminal instances are frozen (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate decision / escalation / pinned entry /
      open submission.
    - SnapshotTamperedError when the stored snapshot does not match its hash.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import SnapshotTamperedError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalInstance,
        EscalationRecord,
        PinnedApprover,
        StageDecisionRecord,
    )

_OPEN_STATUS_PREDICATE = "status IN ('PENDING', 'IN_PROGRESS')"


class ApprovalInstanceModel(Base):
    """Persistent approval instance.

    Contract:
        Status transitions follow INSTANCE_TRANSITIONS (service layer).
        Terminal instances (APPROVED, REJECTED, CANCELLED) cannot be changed.
    """

    __tablename__ = "approval_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_approval_instances_valid_status",
        ),
        CheckConstraint("current_stage_number >= 1", name="ck_approval_instances_stage"),
        Index(
            "ix_approval_instances_open_request",
            "request_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_PREDICATE),
            sqlite_where=text(_OPEN_STATUS_PREDICATE),
        ),
        Index("ix_approval_instances_status", "status", "stage_entered_at"),
        Index("ix_approval_instances_request", "request_id", "created_at"),
    )

    request_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    workflow_version: Mapped[int] = mapped_column(nullable=False)
    definition_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    current_stage_number: Mapped[int] = mapped_column(nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    stage_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    stage_entered_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    pinned: Mapped[list["PinnedApproverModel"]] = relationship(
        "PinnedApproverModel",
        back_populates="instance",
        order_by=lambda: (
            PinnedApproverModel.stage_number,
            PinnedApproverModel.added_at,
            PinnedApproverModel.approver_id,
        ),
        lazy="selectin",
    )
    decisions: Mapped[list["StageDecisionModel"]] = relationship(
        "StageDecisionModel",
        back_populates="instance",
        order_by="StageDecisionModel.sequence",
        lazy="selectin",
    )
    escalations: Mapped[list["EscalationEventModel"]] = relationship(
        "EscalationEventModel",
        back_populates="instance",
        order_by="EscalationEventModel.stage_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance {self.id} request={self.request_id} "
            f"stage={self.current_stage_number} status={self.status}>"
        )

    def verify_snapshot(self) -> None:
        """Recompute the snapshot hash and compare with the stored one.

        Raises:
            SnapshotTamperedError: if they differ.
        """
        from approval_kernel.domain.workflow import snapshot_hash

        computed = snapshot_hash(self.definition_snapshot)
        if computed != self.snapshot_hash:
            raise SnapshotTamperedError(
                instance_id=str(self.id),
                expected_hash=self.snapshot_hash,
                computed_hash=computed,
            )

    def to_dto(self) -> ApprovalInstance:
        """Convert ORM model to frozen domain instance (verifies the snapshot)."""
        from approval_kernel.domain.approval import ApprovalInstance, InstanceStatus
        from approval_kernel.domain.workflow import RequisitionType, definition_from_snapshot

        self.verify_snapshot()
        return ApprovalInstance(
            instance_id=self.id,
            request_id=self.request_id,
            request_type=RequisitionType(self.request_type) if self.request_type else None,
            amount=self.amount,
            definition=definition_from_snapshot(self.definition_snapshot),
            current_stage_number=self.current_stage_number,
            status=InstanceStatus(self.status),
            created_at=self.created_at,
            stage_entered_at=self.stage_entered_at,
            completed_at=self.completed_at,
            stage_blocked=self.stage_blocked,
            cancel_reason=self.cancel_reason,
            snapshot_hash=self.snapshot_hash,
            pinned=tuple(p.to_dto() for p in self.pinned),
            decisions=tuple(d.to_dto() for d in self.decisions),
            escalations=tuple(e.to_dto() for e in self.escalations),
        )


class PinnedApproverModel(Base):
    """Member of a stage's pinned approver set. Append-only."""

    __tablename__ = "approval_pinned_approvers"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "stage_number", "approver_id",
            name="uq_approval_pinned_approvers_member",
        ),
        CheckConstraint(
            "source IN ('DESIGNATED', 'ESCALATION', 'INTERVENTION')",
            name="ck_approval_pinned_approvers_source",
        ),
        Index("ix_approval_pinned_approvers_approver", "approver_id", "stage_number"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_instances.id"), nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="DESIGNATED")
    added_at: Mapped[datetime] = mapped_column(nullable=False)

    instance: Mapped["ApprovalInstanceModel"] = relationship(
        "ApprovalInstanceModel", back_populates="pinned",
    )

    def to_dto(self) -> PinnedApprover:
        from approval_kernel.domain.approval import ApproverSource, PinnedApprover

        return PinnedApprover(
            approver_id=self.approver_id,
            stage_number=self.stage_number,
            source=ApproverSource(self.source),
            added_at=self.added_at,
        )


class StageDecisionModel(Base):
    """Persistent stage decision. Append-only.

    ``sequence`` orders decisions recorded in the same instant; it is the
    position of the decision in the instance's ledger.
    """

    __tablename__ = "approval_stage_decisions"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "stage_number", "approver_id",
            name="uq_approval_stage_decisions_approver",
        ),
        CheckConstraint(
            "decision IN ('APPROVED', 'REJECTED')",
            name="ck_approval_stage_decisions_decision",
        ),
        Index("ix_approval_stage_decisions_instance", "instance_id", "stage_number"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_instances.id"), nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, default=0)
    acted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    by_escalation_target: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    instance: Mapped["ApprovalInstanceModel"] = relationship(
        "ApprovalInstanceModel", back_populates="decisions",
    )

    def __repr__(self) -> str:
        return (
            f"<StageDecision {self.id} instance={self.instance_id} "
            f"stage={self.stage_number} {self.approver_id}={self.decision}>"
        )

    def to_dto(self) -> StageDecisionRecord:
        from approval_kernel.domain.approval import Decision, StageDecisionRecord

        return StageDecisionRecord(
            decision_id=self.id,
            instance_id=self.instance_id,
            stage_number=self.stage_number,
            approver_id=self.approver_id,
            decision=Decision(self.decision),
            comments=self.comments or "",
            decided_at=self.decided_at,
            acted_by=self.acted_by,
            by_escalation_target=self.by_escalation_target,
        )

    @classmethod
    def from_dto(cls, dto: StageDecisionRecord, sequence: int = 0) -> StageDecisionModel:
        return cls(
            id=dto.decision_id,
            instance_id=dto.instance_id,
            stage_number=dto.stage_number,
            approver_id=dto.approver_id,
            decision=dto.decision.value,
            comments=dto.comments,
            decided_at=dto.decided_at,
            sequence=sequence,
            acted_by=dto.acted_by,
            by_escalation_target=dto.by_escalation_target,
        )


class EscalationEventModel(Base):
    """Idempotency record of a fired escalation. Append-only.

    The unique (instance_id, stage_number) constraint is the authoritative
    guard against double firing across ticks, threads and processes.
    """

    __tablename__ = "approval_escalation_events"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "stage_number",
            name="uq_approval_escalation_events_stage",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_instances.id"), nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(nullable=False)
    original_approver: Mapped[str] = mapped_column(String(100), nullable=False)
    escalate_to: Mapped[str] = mapped_column(String(100), nullable=False)
    fired_at: Mapped[datetime] = mapped_column(nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="timer")
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    instance: Mapped["ApprovalInstanceModel"] = relationship(
        "ApprovalInstanceModel", back_populates="escalations",
    )

    def to_dto(self) -> EscalationRecord:
        from approval_kernel.domain.approval import EscalationRecord

        return EscalationRecord(
            escalation_id=self.id,
            instance_id=self.instance_id,
            stage_number=self.stage_number,
            original_approver=self.original_approver,
            escalate_to=self.escalate_to,
            fired_at=self.fired_at,
            trigger=self.trigger,
        )

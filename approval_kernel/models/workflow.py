"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions and their stage
    templates.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Versioned by copy: a definition row is never edited except for its
      ``is_active`` flag; a revision is a new row pointing at the old one
      through ``supersedes_id`` (ORM listener, db/immutability.py).
    - Stage templates are append-only.
    - Exactly one approver kind per stage (CHECK role XOR user).
    - Unique stage number per definition.
    - Escalation hours and target are set together, hours > 0.

Failure modes:
    - IntegrityError on duplicate stage number or approver kind violation.
    - ImmutabilityViolationError on edits to published definitions.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import StageTemplate, WorkflowDefinition


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition (one row per version)."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        CheckConstraint(
            "min_amount IS NULL OR max_amount IS NULL OR min_amount <= max_amount",
            name="ck_approval_workflows_amount_window",
        ),
        CheckConstraint("version >= 1", name="ck_approval_workflows_version"),
        Index("ix_approval_workflows_active", "is_active", "requisition_type"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    requisition_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    min_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supersedes_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=True,
    )

    stages: Mapped[list["StageTemplateModel"]] = relationship(
        "StageTemplateModel",
        back_populates="workflow",
        order_by="StageTemplateModel.stage_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.id} {self.name!r} "
            f"v{self.version} active={self.is_active}>"
        )

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain definition."""
        from approval_kernel.domain.workflow import (
            Applicability,
            RequisitionType,
            WorkflowDefinition,
        )

        return WorkflowDefinition(
            workflow_id=self.id,
            name=self.name,
            description=self.description or "",
            applicability=Applicability(
                requisition_type=(
                    RequisitionType(self.requisition_type) if self.requisition_type else None
                ),
                min_amount=self.min_amount,
                max_amount=self.max_amount,
            ),
            stages=tuple(s.to_dto() for s in self.stages),
            is_active=self.is_active,
            version=self.version,
            created_at=self.created_at,
            supersedes_id=self.supersedes_id,
        )

    @classmethod
    def from_dto(
        cls,
        dto: WorkflowDefinition,
        created_by: str | None = None,
    ) -> WorkflowDefinitionModel:
        """Create ORM model (with stage rows) from a domain definition."""
        app = dto.applicability
        return cls(
            id=dto.workflow_id,
            name=dto.name,
            description=dto.description,
            requisition_type=app.requisition_type.value if app.requisition_type else None,
            min_amount=app.min_amount,
            max_amount=app.max_amount,
            is_active=dto.is_active,
            version=dto.version,
            created_at=dto.created_at,
            created_by=created_by,
            supersedes_id=dto.supersedes_id,
            stages=[StageTemplateModel.from_dto(s) for s in dto.stages],
        )


class StageTemplateModel(Base):
    """One stage of a workflow definition. Append-only."""

    __tablename__ = "approval_workflow_stages"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "stage_number",
            name="uq_approval_workflow_stages_number",
        ),
        CheckConstraint(
            "(approver_role IS NULL) <> (approver_user IS NULL)",
            name="ck_approval_workflow_stages_one_approver",
        ),
        CheckConstraint(
            "(escalation_after_hours IS NULL AND escalate_to IS NULL) OR "
            "(escalation_after_hours > 0 AND escalate_to IS NOT NULL)",
            name="ck_approval_workflow_stages_escalation",
        ),
        CheckConstraint("stage_number >= 1", name="ck_approval_workflow_stages_number"),
        CheckConstraint(
            "approval_type IN ('SINGLE', 'ALL', 'MAJORITY')",
            name="ck_approval_workflow_stages_type",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approver_user: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approval_type: Mapped[str] = mapped_column(String(20), nullable=False, default="SINGLE")
    escalation_after_hours: Mapped[int | None] = mapped_column(nullable=True)
    escalate_to: Mapped[str | None] = mapped_column(String(100), nullable=True)

    workflow: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel",
        back_populates="stages",
    )

    def __repr__(self) -> str:
        return f"<StageTemplate {self.workflow_id}#{self.stage_number} {self.name!r}>"

    def to_dto(self) -> StageTemplate:
        from approval_kernel.domain.workflow import (
            ApprovalType,
            EscalationRule,
            StageTemplate,
            approver_from_fields,
        )

        escalation = None
        if self.escalation_after_hours is not None and self.escalate_to:
            escalation = EscalationRule(
                after_hours=int(self.escalation_after_hours),
                escalate_to=self.escalate_to,
            )
        return StageTemplate(
            stage_number=self.stage_number,
            name=self.name,
            approver=approver_from_fields(self.approver_role, self.approver_user),
            approval_type=ApprovalType(self.approval_type),
            escalation=escalation,
        )

    @classmethod
    def from_dto(cls, dto: StageTemplate) -> StageTemplateModel:
        from approval_kernel.domain.workflow import RoleApprover, UserApprover

        return cls(
            stage_number=dto.stage_number,
            name=dto.name,
            approver_role=dto.approver.role if isinstance(dto.approver, RoleApprover) else None,
            approver_user=(
                dto.approver.user_id if isinstance(dto.approver, UserApprover) else None
            ),
            approval_type=dto.approval_type.value,
            escalation_after_hours=dto.escalation.after_hours if dto.escalation else None,
            escalate_to=dto.escalation.escalate_to if dto.escalation else None,
        )

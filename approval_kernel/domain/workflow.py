"""
Workflow definition types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for approval workflow definitions: the applicability
predicate, stage templates with their approver specification, quorum
rule and optional escalation, and the definition itself.  Also provides
the canonical snapshot encoding used to freeze a definition into an
approval instance.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* An approver specification is exactly one of ``RoleApprover`` or
  ``UserApprover`` -- never both, never neither.
* ``EscalationRule.after_hours`` is a positive integer.
* Definitions are immutable; a revised definition is a new object with a
  higher ``version`` (versioned by copy).
* Stage contiguity (1..N, no gaps) is checked by
  ``approval_engines.workflow_matching.validate_definition``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

from approval_kernel.utils.hashing import hash_payload


class RequisitionType(str, Enum):
    """Kinds of approvable requests a workflow can be restricted to."""

    STOCK_REPLENISHMENT = "STOCK_REPLENISHMENT"
    PROJECT_MATERIALS = "PROJECT_MATERIALS"
    EQUIPMENT_PURCHASE = "EQUIPMENT_PURCHASE"
    MAINTENANCE_PARTS = "MAINTENANCE_PARTS"
    SAFETY_SUPPLIES = "SAFETY_SUPPLIES"
    CONSUMABLES = "CONSUMABLES"
    EMERGENCY = "EMERGENCY"
    CAPITAL_EXPENDITURE = "CAPITAL_EXPENDITURE"


class ApprovalType(str, Enum):
    """Quorum rule applied to a stage."""

    SINGLE = "SINGLE"
    ALL = "ALL"
    MAJORITY = "MAJORITY"


# =========================================================================
# Approver specification (tagged variant)
# =========================================================================


@dataclass(frozen=True)
class RoleApprover:
    """Stage approved by whoever holds ``role`` when the stage is entered."""

    role: str

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("RoleApprover.role must be non-empty")

    def describe(self) -> str:
        return f"role:{self.role}"


@dataclass(frozen=True)
class UserApprover:
    """Stage approved by one designated user."""

    user_id: str

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("UserApprover.user_id must be non-empty")

    def describe(self) -> str:
        return f"user:{self.user_id}"


ApproverSpec = Union[RoleApprover, UserApprover]


def approver_from_fields(role: str | None, user_id: str | None) -> ApproverSpec:
    """Build the tagged variant from a (role, user) column pair.

    Raises:
        ValueError: if both or neither are set.
    """
    if role and user_id:
        raise ValueError("Stage approver must be a role or a user, not both")
    if role:
        return RoleApprover(role)
    if user_id:
        return UserApprover(user_id)
    raise ValueError("Stage approver must specify a role or a user")


# =========================================================================
# Stage and definition
# =========================================================================


@dataclass(frozen=True)
class EscalationRule:
    """Widen the stage's approver set to ``escalate_to`` after ``after_hours``."""

    after_hours: int
    escalate_to: str

    def __post_init__(self) -> None:
        if isinstance(self.after_hours, bool) or not isinstance(self.after_hours, int):
            raise ValueError("EscalationRule.after_hours must be an integer")
        if self.after_hours <= 0:
            raise ValueError("EscalationRule.after_hours must be positive")
        if not self.escalate_to:
            raise ValueError("EscalationRule.escalate_to must be non-empty")


@dataclass(frozen=True)
class StageTemplate:
    """One step of a workflow definition."""

    stage_number: int
    name: str
    approver: ApproverSpec
    approval_type: ApprovalType = ApprovalType.SINGLE
    escalation: EscalationRule | None = None


@dataclass(frozen=True)
class Applicability:
    """Which requests a definition applies to.

    ``requisition_type=None`` means "any type"; a missing amount bound is
    unbounded on that side.  Bounds are inclusive.
    """

    requisition_type: RequisitionType | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named, versioned, ordered template of approval stages."""

    workflow_id: UUID
    name: str
    applicability: Applicability
    stages: tuple[StageTemplate, ...]
    is_active: bool = True
    version: int = 1
    created_at: datetime | None = None
    description: str = ""
    supersedes_id: UUID | None = None

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    def stage(self, stage_number: int) -> StageTemplate:
        """Return the stage template with the given 1-based number."""
        for s in self.stages:
            if s.stage_number == stage_number:
                return s
        raise KeyError(f"Workflow '{self.name}' has no stage {stage_number}")

    def is_last_stage(self, stage_number: int) -> bool:
        return stage_number >= max(s.stage_number for s in self.stages)


# =========================================================================
# Snapshot encoding
# =========================================================================


def _decimal_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value.normalize(), "f")


def definition_to_snapshot(definition: WorkflowDefinition) -> dict[str, Any]:
    """Encode a definition as a JSON-safe dict for freezing into an instance."""
    app = definition.applicability
    return {
        "workflow_id": str(definition.workflow_id),
        "name": definition.name,
        "description": definition.description,
        "version": definition.version,
        "created_at": definition.created_at.isoformat() if definition.created_at else None,
        "supersedes_id": str(definition.supersedes_id) if definition.supersedes_id else None,
        "applicability": {
            "requisition_type": app.requisition_type.value if app.requisition_type else None,
            "min_amount": _decimal_str(app.min_amount),
            "max_amount": _decimal_str(app.max_amount),
        },
        "stages": [
            {
                "stage_number": s.stage_number,
                "name": s.name,
                "approver_role": s.approver.role if isinstance(s.approver, RoleApprover) else None,
                "approver_user": s.approver.user_id if isinstance(s.approver, UserApprover) else None,
                "approval_type": s.approval_type.value,
                "escalation": (
                    {
                        "after_hours": s.escalation.after_hours,
                        "escalate_to": s.escalation.escalate_to,
                    }
                    if s.escalation
                    else None
                ),
            }
            for s in definition.stages
        ],
    }


def definition_from_snapshot(data: dict[str, Any]) -> WorkflowDefinition:
    """Inverse of ``definition_to_snapshot``."""
    app = data["applicability"]
    stages = []
    for s in data["stages"]:
        esc = s.get("escalation")
        stages.append(
            StageTemplate(
                stage_number=s["stage_number"],
                name=s["name"],
                approver=approver_from_fields(s.get("approver_role"), s.get("approver_user")),
                approval_type=ApprovalType(s["approval_type"]),
                escalation=(
                    EscalationRule(esc["after_hours"], esc["escalate_to"]) if esc else None
                ),
            )
        )
    return WorkflowDefinition(
        workflow_id=UUID(data["workflow_id"]),
        name=data["name"],
        description=data.get("description", ""),
        version=data["version"],
        created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else None,
        supersedes_id=UUID(data["supersedes_id"]) if data.get("supersedes_id") else None,
        applicability=Applicability(
            requisition_type=(
                RequisitionType(app["requisition_type"]) if app.get("requisition_type") else None
            ),
            min_amount=Decimal(app["min_amount"]) if app.get("min_amount") is not None else None,
            max_amount=Decimal(app["max_amount"]) if app.get("max_amount") is not None else None,
        ),
        stages=tuple(stages),
    )


def snapshot_hash(snapshot: dict[str, Any]) -> str:
    """SHA-256 of the canonical snapshot encoding."""
    return hash_payload(snapshot)

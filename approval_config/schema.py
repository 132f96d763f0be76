"""
Approval configuration schema.

Defines the human-authored source artifact for the approval engine:
engine settings plus the seed workflow definitions.  YAML documents are
parsed into these types by the loader and compiled into domain
``WorkflowDefinition`` objects by the compiler.

Key distinction:
  ApprovalConfiguration = source artifact (human-authored, versioned)
  WorkflowDefinition    = runtime artifact (validated, frozen)
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the engine controller and the escalation scheduler."""

    tick_interval_seconds: float = 60.0
    lock_timeout_seconds: float = 5.0
    strict_workflow_matching: bool = False
    max_conflict_retries: int = 3
    database_url: str = "sqlite:///approvals.db"


# ---------------------------------------------------------------------------
# Workflow definitions (declarative data)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscalationDef:
    after_hours: int
    escalate_to: str


@dataclass(frozen=True)
class StageDef:
    """One stage as written in YAML.  Exactly one of role / user is set."""

    stage_number: int
    name: str
    approver_role: str | None = None
    approver_user: str | None = None
    approval_type: str = "SINGLE"
    escalation: EscalationDef | None = None


@dataclass(frozen=True)
class WorkflowDef:
    name: str
    stages: tuple[StageDef, ...]
    description: str = ""
    requisition_type: str | None = None
    min_amount: str | None = None  # decimal string, kept exact
    max_amount: str | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfiguration:
    """A complete approval configuration document."""

    settings: EngineSettings
    workflows: tuple[WorkflowDef, ...] = ()
    checksum: str = ""
    source: str | None = None

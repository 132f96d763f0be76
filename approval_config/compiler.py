"""
Configuration Compiler -- ApprovalConfiguration -> WorkflowDefinition tuple.

The compiler turns declarative ``WorkflowDef`` entries into frozen domain
``WorkflowDefinition`` objects the catalog can publish.

Compilation validates:
  - requisition_type names a known RequisitionType
  - amounts parse as decimals
  - approval_type is SINGLE / ALL / MAJORITY
  - each stage names exactly one approver (role or user)
  - escalation hours are positive integers
  - the structural checks of ``validate_definition`` (contiguous stages,
    min <= max, non-empty names)
  - workflow names are unique within the document

All errors across all workflows are collected and reported together.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import NAMESPACE_URL, uuid5

from approval_config.schema import ApprovalConfiguration, StageDef, WorkflowDef
from approval_engines.workflow_matching import validate_definition
from approval_kernel.domain.workflow import (
    Applicability,
    ApprovalType,
    EscalationRule,
    RequisitionType,
    StageTemplate,
    WorkflowDefinition,
    approver_from_fields,
)
from approval_kernel.exceptions import ConfigCompilationError

_ID_NAMESPACE = uuid5(NAMESPACE_URL, "approval-config:workflow")


def _decimal(value: str | None, label: str, errors: list[str]) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        errors.append(f"{label} is not a decimal: {value!r}")
        return None


def _compile_stage(stage: StageDef, prefix: str, errors: list[str]) -> StageTemplate | None:
    where = f"{prefix} stage {stage.stage_number}"
    ok = True

    try:
        approver = approver_from_fields(stage.approver_role, stage.approver_user)
    except ValueError as exc:
        errors.append(f"{where}: {exc}")
        ok = False

    try:
        approval_type = ApprovalType(stage.approval_type)
    except ValueError:
        errors.append(f"{where}: unknown approval_type {stage.approval_type!r}")
        ok = False

    escalation = None
    if stage.escalation is not None:
        try:
            escalation = EscalationRule(stage.escalation.after_hours, stage.escalation.escalate_to)
        except ValueError as exc:
            errors.append(f"{where}: {exc}")
            ok = False

    if not ok:
        return None
    return StageTemplate(
        stage_number=stage.stage_number,
        name=stage.name,
        approver=approver,
        approval_type=approval_type,
        escalation=escalation,
    )


def compile_workflow(workflow: WorkflowDef, errors: list[str]) -> WorkflowDefinition | None:
    """Compile one workflow, appending problems to ``errors``."""
    prefix = f"workflow '{workflow.name}':"
    before = len(errors)

    requisition_type = None
    if workflow.requisition_type:
        try:
            requisition_type = RequisitionType(workflow.requisition_type)
        except ValueError:
            errors.append(f"{prefix} unknown requisition_type {workflow.requisition_type!r}")

    min_amount = _decimal(workflow.min_amount, f"{prefix} min_amount", errors)
    max_amount = _decimal(workflow.max_amount, f"{prefix} max_amount", errors)

    stages = [_compile_stage(s, prefix, errors) for s in workflow.stages]
    if len(errors) > before:
        return None

    definition = WorkflowDefinition(
        workflow_id=uuid5(_ID_NAMESPACE, workflow.name),
        name=workflow.name,
        description=workflow.description,
        applicability=Applicability(
            requisition_type=requisition_type,
            min_amount=min_amount,
            max_amount=max_amount,
        ),
        stages=tuple(s for s in stages if s is not None),
        is_active=workflow.is_active,
    )
    problems = validate_definition(definition)
    if problems:
        errors.extend(f"{prefix} {p}" for p in problems)
        return None
    return definition


def compile_workflows(config: ApprovalConfiguration) -> tuple[WorkflowDefinition, ...]:
    """Compile every workflow in ``config``.

    Raises:
        ConfigCompilationError: listing every problem found.
    """
    errors: list[str] = []
    seen: set[str] = set()
    compiled: list[WorkflowDefinition] = []

    for workflow in config.workflows:
        if workflow.name in seen:
            errors.append(f"workflow '{workflow.name}': duplicate name")
            continue
        seen.add(workflow.name)
        definition = compile_workflow(workflow, errors)
        if definition is not None:
            compiled.append(definition)

    if errors:
        raise ConfigCompilationError(errors)
    return tuple(compiled)

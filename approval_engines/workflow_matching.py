"""
approval_engines.workflow_matching -- Pure workflow selection and validation.

Responsibility:
    Decide which active workflow definition applies to a request of a
    given type and amount, with a deterministic tie-break when several
    overlap, and validate definitions before they are published.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Deterministic selection: candidates are ordered by
      (1) explicit type match before "any type",
      (2) narrower amount window (max - min; an open bound is infinitely wide),
      (3) most recent ``created_at``,
      (4) workflow id, so the order is total and repeated calls agree.
    - Bounds are inclusive; a missing bound is unbounded.
    - Only active definitions are candidates.
    - Stage numbers start at 1 and are contiguous.

Failure modes:
    - ``select_workflow`` never raises; an empty match is reported as
      ``selected=None`` and the caller decides (the selector raises
      ``NoApplicableWorkflowError``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from approval_kernel.domain.workflow import (
    Applicability,
    RequisitionType,
    RoleApprover,
    UserApprover,
    WorkflowDefinition,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class WorkflowMatch:
    """Outcome of matching a request against the catalog.

    ``overlap`` is True when more than one definition matched.
    ``tie_level`` names the tie-break criterion that separated the winner
    from the runner-up: "type", "window", "recency" or "id".
    """

    selected: WorkflowDefinition | None
    candidates: tuple[WorkflowDefinition, ...] = ()
    tie_level: str | None = None

    @property
    def overlap(self) -> bool:
        return len(self.candidates) > 1

    @property
    def ambiguous(self) -> bool:
        """Winner was picked by recency or id rather than by specificity."""
        return self.tie_level in ("recency", "id")


def applies_to(
    applicability: Applicability,
    requisition_type: RequisitionType | None,
    amount: Decimal,
) -> bool:
    """Check a request against one applicability predicate."""
    if applicability.requisition_type is not None:
        if applicability.requisition_type != requisition_type:
            return False
    if applicability.min_amount is not None and amount < applicability.min_amount:
        return False
    if applicability.max_amount is not None and amount > applicability.max_amount:
        return False
    return True


def amount_window(applicability: Applicability) -> Decimal | None:
    """Width of the amount range, or None when either side is open."""
    if applicability.min_amount is None or applicability.max_amount is None:
        return None
    return applicability.max_amount - applicability.min_amount


def _tie_break_key(definition: WorkflowDefinition) -> tuple:
    app = definition.applicability
    width = amount_window(app)
    created = definition.created_at or _EPOCH
    return (
        0 if app.requisition_type is not None else 1,
        (1, Decimal(0)) if width is None else (0, width),
        -created.timestamp(),
        str(definition.workflow_id),
    )


_TIE_LEVELS = ("type", "window", "recency", "id")


def select_workflow(
    definitions: list[WorkflowDefinition] | tuple[WorkflowDefinition, ...],
    requisition_type: RequisitionType | None,
    amount: Decimal | None,
) -> WorkflowMatch:
    """Pick the single applicable active definition.

    Args:
        definitions: Catalog contents (inactive ones are skipped).
        requisition_type: Type of the request, or None if untyped.
        amount: Monetary amount; None is treated as zero.

    Returns:
        WorkflowMatch with the winner (or None) and all candidates in
        tie-break order.
    """
    value = amount if amount is not None else Decimal(0)
    candidates = sorted(
        (
            d for d in definitions
            if d.is_active and applies_to(d.applicability, requisition_type, value)
        ),
        key=_tie_break_key,
    )
    if not candidates:
        return WorkflowMatch(selected=None)

    tie_level = None
    if len(candidates) > 1:
        first, second = _tie_break_key(candidates[0]), _tie_break_key(candidates[1])
        for level, a, b in zip(_TIE_LEVELS, first, second):
            if a != b:
                tie_level = level
                break

    return WorkflowMatch(
        selected=candidates[0],
        candidates=tuple(candidates),
        tie_level=tie_level,
    )


def validate_definition(definition: WorkflowDefinition) -> tuple[str, ...]:
    """Collect structural problems with a definition (empty tuple = valid)."""
    errors: list[str] = []

    if not definition.name or not definition.name.strip():
        errors.append("name must be non-empty")

    app = definition.applicability
    for label, bound in (("min_amount", app.min_amount), ("max_amount", app.max_amount)):
        if bound is not None and bound < 0:
            errors.append(f"{label} cannot be negative")
    if (
        app.min_amount is not None
        and app.max_amount is not None
        and app.min_amount > app.max_amount
    ):
        errors.append("min_amount cannot be greater than max_amount")

    if not definition.stages:
        errors.append("workflow must have at least one stage")
        return tuple(errors)

    numbers = [s.stage_number for s in definition.stages]
    if len(set(numbers)) != len(numbers):
        errors.append("duplicate stage_number")
    if sorted(set(numbers)) != list(range(1, len(set(numbers)) + 1)):
        errors.append(f"stage numbers must be contiguous from 1, got {sorted(numbers)}")
    if numbers != sorted(numbers):
        errors.append("stages must be ordered by stage_number")

    for stage in definition.stages:
        if not stage.name or not stage.name.strip():
            errors.append(f"stage {stage.stage_number} name must be non-empty")
        if not isinstance(stage.approver, (RoleApprover, UserApprover)):
            errors.append(
                f"stage {stage.stage_number} must have exactly one approver role or user"
            )

    return tuple(errors)

"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used
    by the approval services: workflow matching (applicability, tie-break,
    definition validation) and stage quorum evaluation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain (and sibling engine modules).
    MUST NOT import approval_kernel.services, selectors or db.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Times are passed in
      by the services, which own the clock.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines import evaluate_stage, select_workflow
"""

from approval_kernel.logging_config import get_logger

logger = get_logger("engines")

from approval_engines.stage_evaluator import (
    evaluate_stage,
    majority_threshold,
    quorum_members,
)
from approval_engines.workflow_matching import (
    WorkflowMatch,
    amount_window,
    applies_to,
    select_workflow,
    validate_definition,
)

__all__ = [
    "WorkflowMatch",
    "amount_window",
    "applies_to",
    "evaluate_stage",
    "majority_threshold",
    "quorum_members",
    "select_workflow",
    "validate_definition",
]

"""
Module: approval_kernel.selectors.workflow_selector
Responsibility: Resolve the single applicable, active workflow definition
    for a request's type and amount.
Architecture position: Kernel > Selectors.  Loads candidate rows from
    models/workflow.py and delegates matching and tie-break to the pure
    ``approval_engines.workflow_matching`` engine.

Invariants enforced:
    - Returns NoApplicableWorkflowError (never a default) when nothing
      matches; a request is never routed without an approval path.
    - Deterministic tie-break: explicit type before "any type", narrower
      amount window, most recent created_at, then workflow id.
    - Overlaps are logged as ``workflow_match_ambiguous``.  With
      ``strict=True`` an overlap that only recency or id could separate
      raises AmbiguousWorkflowMatchError instead.

Failure modes:
    - NoApplicableWorkflowError, AmbiguousWorkflowMatchError (strict only).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from approval_engines.workflow_matching import WorkflowMatch, select_workflow
from approval_kernel.domain.workflow import RequisitionType, WorkflowDefinition
from approval_kernel.exceptions import (
    AmbiguousWorkflowMatchError,
    NoApplicableWorkflowError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.workflow")


def coerce_requisition_type(value: RequisitionType | str | None) -> RequisitionType | None:
    if value is None or isinstance(value, RequisitionType):
        return value
    return RequisitionType(value)


class WorkflowSelector(BaseSelector):
    """Read-side workflow resolution."""

    def __init__(self, session: Session, strict: bool = False):
        super().__init__(session)
        self._strict = strict

    def candidates(self, requisition_type: RequisitionType | None) -> list[WorkflowDefinition]:
        """Active definitions that could apply to ``requisition_type``."""
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.is_active.is_(True)
        )
        if requisition_type is None:
            stmt = stmt.where(WorkflowDefinitionModel.requisition_type.is_(None))
        else:
            stmt = stmt.where(
                or_(
                    WorkflowDefinitionModel.requisition_type.is_(None),
                    WorkflowDefinitionModel.requisition_type == requisition_type.value,
                )
            )
        return [m.to_dto() for m in self.session.scalars(stmt).all()]

    def match(
        self,
        requisition_type: RequisitionType | str | None,
        amount: Decimal | None,
    ) -> WorkflowMatch:
        rtype = coerce_requisition_type(requisition_type)
        return select_workflow(self.candidates(rtype), rtype, amount)

    def select(
        self,
        requisition_type: RequisitionType | str | None,
        amount: Decimal | None,
    ) -> WorkflowDefinition:
        """Resolve the applicable workflow.

        Raises:
            NoApplicableWorkflowError: zero active definitions match.
            AmbiguousWorkflowMatchError: strict mode and the overlap could
                only be resolved by recency or id.
        """
        rtype = coerce_requisition_type(requisition_type)
        match = self.match(rtype, amount)

        if match.selected is None:
            logger.warning(
                "workflow_not_found",
                extra={
                    "requisition_type": rtype.value if rtype else None,
                    "amount": str(amount) if amount is not None else None,
                },
            )
            raise NoApplicableWorkflowError(
                requisition_type=rtype.value if rtype else None,
                amount=str(amount) if amount is not None else None,
            )

        if match.overlap:
            candidate_ids = [str(c.workflow_id) for c in match.candidates]
            logger.warning(
                "workflow_match_ambiguous",
                extra={
                    "requisition_type": rtype.value if rtype else None,
                    "amount": str(amount) if amount is not None else None,
                    "selected_workflow_id": str(match.selected.workflow_id),
                    "candidate_ids": candidate_ids,
                    "tie_level": match.tie_level,
                },
            )
            if self._strict and match.ambiguous:
                raise AmbiguousWorkflowMatchError(
                    requisition_type=rtype.value if rtype else None,
                    amount=str(amount) if amount is not None else None,
                    candidate_ids=candidate_ids,
                )

        logger.debug(
            "workflow_selected",
            extra={
                "workflow_id": str(match.selected.workflow_id),
                "workflow_name": match.selected.name,
                "version": match.selected.version,
            },
        )
        return match.selected

"""SQLAlchemy ORM models for the approval kernel."""

from approval_kernel.models.delegation import ApprovalDelegationModel
from approval_kernel.models.instance import (
    ApprovalInstanceModel,
    EscalationEventModel,
    PinnedApproverModel,
    StageDecisionModel,
)
from approval_kernel.models.workflow import StageTemplateModel, WorkflowDefinitionModel

__all__ = [
    "ApprovalDelegationModel",
    "ApprovalInstanceModel",
    "EscalationEventModel",
    "PinnedApproverModel",
    "StageDecisionModel",
    "StageTemplateModel",
    "WorkflowDefinitionModel",
]

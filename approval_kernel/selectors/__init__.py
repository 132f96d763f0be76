"""Read-only query selectors."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.instance_selector import InstanceSelector
from approval_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = [
    "BaseSelector",
    "InstanceSelector",
    "WorkflowSelector",
]

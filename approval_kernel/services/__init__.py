"""Write-side services: catalog, engine controller, scheduler, delegations."""

from approval_kernel.services.approval_engine import ApprovalEngine
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.escalation_scheduler import EscalationScheduler, TickSummary
from approval_kernel.services.event_dispatcher import EventDispatcher
from approval_kernel.services.instance_locks import InstanceLockRegistry
from approval_kernel.services.workflow_catalog import WorkflowCatalog

__all__ = [
    "ApprovalEngine",
    "DelegationService",
    "EscalationScheduler",
    "EventDispatcher",
    "InstanceLockRegistry",
    "TickSummary",
    "WorkflowCatalog",
]

"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

An approval is only auditable if nobody can quietly rewrite it afterwards.
Decisions must not be changed after the fact, an escalation must not be
"un-fired", and an in-flight instance must keep running against exactly
the workflow version it was submitted under.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners registered here intercept them:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |                                            ^
         v                                            |
    [before_delete event] --> _prevent_*_delete() ----+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable                | Mutable fields
-----------------------|-------------------------------|------------------------
StageDecision          | ALWAYS (append-only)          | none
EscalationEvent        | ALWAYS (append-only)          | none
PinnedApprover         | ALWAYS (append-only)          | none
StageTemplate          | ALWAYS (append-only)          | none
WorkflowDefinition     | ALWAYS (versioned by copy)    | is_active
ApprovalInstance       | After reaching a terminal     | none once terminal
                       | status                        |

===============================================================================
DESIGN DECISIONS
===============================================================================

1. "WAS TERMINAL" NOT "IS TERMINAL"
   The engine itself must be able to move an instance to APPROVED /
   REJECTED / CANCELLED.  The transition is allowed; any change after it
   is blocked.  Detected through SQLAlchemy attribute history.

2. INLINE IMPORTS
   Models import from db, db imports from models.  Inline imports defer
   resolution until registration.

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url``.  Tests may call:

    from approval_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_STATUSES = frozenset({"APPROVED", "REJECTED", "CANCELLED"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_column_keys(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if insp.attrs[attr.key].history.has_changes()
    ]


# =============================================================================
# Append-only ledgers
# =============================================================================


def _prevent_decision_update(mapper, connection, target):
    raise _blocked(
        "StageDecision", target.id, "UPDATE",
        "Stage decisions are immutable -- cannot modify",
    )


def _prevent_decision_delete(mapper, connection, target):
    raise _blocked(
        "StageDecision", target.id, "DELETE",
        "Stage decisions are immutable -- cannot delete",
    )


def _prevent_escalation_update(mapper, connection, target):
    raise _blocked(
        "EscalationEvent", target.id, "UPDATE",
        "Escalation events are immutable -- cannot modify",
    )


def _prevent_escalation_delete(mapper, connection, target):
    raise _blocked(
        "EscalationEvent", target.id, "DELETE",
        "Escalation events are immutable -- cannot delete",
    )


def _prevent_pinned_update(mapper, connection, target):
    raise _blocked(
        "PinnedApprover", target.id, "UPDATE",
        "Pinned approver sets only grow -- cannot modify a member",
    )


def _prevent_pinned_delete(mapper, connection, target):
    raise _blocked(
        "PinnedApprover", target.id, "DELETE",
        "Pinned approver sets only grow -- cannot remove a member",
    )


# =============================================================================
# Workflow definitions (versioned by copy)
# =============================================================================


def _prevent_stage_template_update(mapper, connection, target):
    raise _blocked(
        "StageTemplate", target.id, "UPDATE",
        "Stage templates are immutable -- publish a new workflow version instead",
    )


def _prevent_stage_template_delete(mapper, connection, target):
    raise _blocked(
        "StageTemplate", target.id, "DELETE",
        "Stage templates are immutable -- cannot delete",
    )


def _check_workflow_definition_immutability(mapper, connection, target):
    """Only ``is_active`` may change on a published definition."""
    for key in _changed_column_keys(target):
        if key == "is_active":
            continue
        raise _blocked(
            "WorkflowDefinition", target.id, "UPDATE",
            f"Cannot modify field '{key}' on a published workflow definition; "
            "revise it to create a new version",
            field=key,
        )


def _prevent_workflow_definition_delete(mapper, connection, target):
    raise _blocked(
        "WorkflowDefinition", target.id, "DELETE",
        "Workflow definitions are immutable -- deactivate instead of deleting",
    )


# =============================================================================
# Approval instances
# =============================================================================


def _check_instance_immutability(mapper, connection, target):
    """Block any change to an instance that was already terminal."""
    status_history = get_history(target, "status")

    if status_history.deleted:
        was_terminal = status_history.deleted[0] in _TERMINAL_STATUSES
    elif not status_history.added:
        was_terminal = target.status in _TERMINAL_STATUSES
    else:
        was_terminal = False

    if not was_terminal:
        return

    changed = _changed_column_keys(target)
    if changed:
        raise _blocked(
            "ApprovalInstance", target.id, "UPDATE",
            f"Cannot modify field '{changed[0]}' on terminal approval instance",
            field=changed[0],
        )


def _prevent_instance_delete(mapper, connection, target):
    raise _blocked(
        "ApprovalInstance", target.id, "DELETE",
        "Approval instances are never deleted -- cancel instead",
    )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from approval_kernel.models.instance import (
        ApprovalInstanceModel,
        EscalationEventModel,
        PinnedApproverModel,
        StageDecisionModel,
    )
    from approval_kernel.models.workflow import StageTemplateModel, WorkflowDefinitionModel

    return (
        (StageDecisionModel, "before_update", _prevent_decision_update),
        (StageDecisionModel, "before_delete", _prevent_decision_delete),
        (EscalationEventModel, "before_update", _prevent_escalation_update),
        (EscalationEventModel, "before_delete", _prevent_escalation_delete),
        (PinnedApproverModel, "before_update", _prevent_pinned_update),
        (PinnedApproverModel, "before_delete", _prevent_pinned_delete),
        (StageTemplateModel, "before_update", _prevent_stage_template_update),
        (StageTemplateModel, "before_delete", _prevent_stage_template_delete),
        (WorkflowDefinitionModel, "before_update", _check_workflow_definition_immutability),
        (WorkflowDefinitionModel, "before_delete", _prevent_workflow_definition_delete),
        (ApprovalInstanceModel, "before_update", _check_instance_immutability),
        (ApprovalInstanceModel, "before_delete", _prevent_instance_delete),
    )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

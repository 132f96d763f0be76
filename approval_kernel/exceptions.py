"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (requisition, invoice and purchase-order services)
must react differently to "nobody may approve this" and "you already
decided".  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        engine.decide(instance_id, approver_id, Decision.APPROVED)
    except Exception as e:
        if "already decided" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        engine.decide(instance_id, approver_id, Decision.APPROVED)
    except DuplicateDecisionError as e:
        api_response(code=e.code, stage=e.stage_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalEngineError (base)
    |
    +-- WorkflowError
    |   +-- NoApplicableWorkflowError
    |   +-- AmbiguousWorkflowMatchError
    |   +-- WorkflowNotFoundError
    |   +-- InvalidWorkflowDefinitionError
    |
    +-- DecisionError
    |   +-- UnauthorizedApproverError
    |   +-- DuplicateDecisionError
    |   +-- StaleDecisionError
    |   +-- BlockedStageError
    |
    +-- InstanceError
    |   +-- InstanceNotFoundError
    |   +-- InvalidInstanceTransitionError
    |   +-- DuplicateSubmissionError
    |   +-- SnapshotTamperedError
    |
    +-- DelegationError
    |   +-- InvalidDelegationError
    |   +-- DelegationNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- InstanceLockTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError
        +-- ConfigCompilationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Workflow        | NO_APPLICABLE_WORKFLOW      | No active definition matches type/amount
                | AMBIGUOUS_WORKFLOW_MATCH    | Overlap found and strict matching is on
                | WORKFLOW_NOT_FOUND          | Definition id doesn't exist
                | INVALID_WORKFLOW_DEFINITION | Stage gaps, both/neither approver, ...
----------------|-----------------------------|-----------------------------------------
Decision        | UNAUTHORIZED_APPROVER       | Approver not pinned for current stage
                | DUPLICATE_DECISION          | Same approver decided twice on a stage
                | STALE_DECISION              | Terminal instance or stage already passed
                | BLOCKED_STAGE               | Pinned approver set is empty
----------------|-----------------------------|-----------------------------------------
Instance        | INSTANCE_NOT_FOUND          | Instance id doesn't exist
                | INVALID_INSTANCE_TRANSITION | Illegal status change (e.g. cancel twice)
                | DUPLICATE_SUBMISSION        | Request already has an open instance
                | SNAPSHOT_TAMPERED           | Definition snapshot hash mismatch
----------------|-----------------------------|-----------------------------------------
Delegation      | INVALID_DELEGATION          | Bad window or self-delegation
                | DELEGATION_NOT_FOUND        | Delegation id doesn't exist
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
                | INSTANCE_LOCK_TIMEOUT       | Instance busy longer than lock timeout
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
Config          | CONFIG_COMPILATION_FAILED   | YAML workflows failed validation

All decision errors are pre-conditions of ``submit``/``decide`` and are
raised synchronously; none of them leave a partial write behind.
"""


class ApprovalEngineError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_ENGINE_ERROR"


# Workflow-related exceptions


class WorkflowError(ApprovalEngineError):
    """Base exception for workflow definition errors."""

    code: str = "WORKFLOW_ERROR"


class NoApplicableWorkflowError(WorkflowError):
    """No active workflow definition applies to the request.

    The request must stay blocked -- it is never auto-approved.
    """

    code: str = "NO_APPLICABLE_WORKFLOW"

    def __init__(self, requisition_type: str | None, amount: str | None):
        self.requisition_type = requisition_type
        self.amount = amount
        super().__init__(
            f"No applicable workflow for type={requisition_type} amount={amount}"
        )


class AmbiguousWorkflowMatchError(WorkflowError):
    """More than one definition matched equally and strict matching is on."""

    code: str = "AMBIGUOUS_WORKFLOW_MATCH"

    def __init__(
        self,
        requisition_type: str | None,
        amount: str | None,
        candidate_ids: list[str],
    ):
        self.requisition_type = requisition_type
        self.amount = amount
        self.candidate_ids = candidate_ids
        super().__init__(
            f"Ambiguous workflow match for type={requisition_type} "
            f"amount={amount}: {len(candidate_ids)} candidates"
        )


class WorkflowNotFoundError(WorkflowError):
    """Workflow definition with given ID was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow definition not found: {workflow_id}")


class InvalidWorkflowDefinitionError(WorkflowError):
    """Workflow definition failed structural validation."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, name: str, errors: tuple[str, ...]):
        self.name = name
        self.errors = errors
        super().__init__(
            f"Invalid workflow definition '{name}': {'; '.join(errors)}"
        )


# Decision-related exceptions


class DecisionError(ApprovalEngineError):
    """Base exception for rejected ``decide`` calls."""

    code: str = "DECISION_ERROR"


class UnauthorizedApproverError(DecisionError):
    """Approver is not in the pinned set of the current stage."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, instance_id: str, stage_number: int, approver_id: str):
        self.instance_id = instance_id
        self.stage_number = stage_number
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} is not authorized for stage "
            f"{stage_number} of instance {instance_id}"
        )


class DuplicateDecisionError(DecisionError):
    """Approver already recorded a decision for this stage."""

    code: str = "DUPLICATE_DECISION"

    def __init__(self, instance_id: str, stage_number: int, approver_id: str):
        self.instance_id = instance_id
        self.stage_number = stage_number
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} already decided stage {stage_number} "
            f"of instance {instance_id}"
        )


class StaleDecisionError(DecisionError):
    """Decision targets a terminal instance or a stage that is no longer current."""

    code: str = "STALE_DECISION"

    def __init__(
        self,
        instance_id: str,
        status: str,
        current_stage: int,
        requested_stage: int | None = None,
    ):
        self.instance_id = instance_id
        self.status = status
        self.current_stage = current_stage
        self.requested_stage = requested_stage
        if requested_stage is not None and requested_stage != current_stage:
            detail = f"stage {requested_stage} is no longer current (now {current_stage})"
        else:
            detail = f"instance is {status}"
        super().__init__(f"Stale decision on instance {instance_id}: {detail}")


class BlockedStageError(DecisionError):
    """Current stage has no approvers and needs administrative intervention."""

    code: str = "BLOCKED_STAGE"

    def __init__(self, instance_id: str, stage_number: int, reason: str):
        self.instance_id = instance_id
        self.stage_number = stage_number
        self.reason = reason
        super().__init__(
            f"Stage {stage_number} of instance {instance_id} is blocked: {reason}"
        )


# Instance-related exceptions


class InstanceError(ApprovalEngineError):
    """Base exception for approval instance errors."""

    code: str = "INSTANCE_ERROR"


class InstanceNotFoundError(InstanceError):
    """Approval instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Approval instance not found: {instance_id}")


class InvalidInstanceTransitionError(InstanceError):
    """Requested status change is not allowed by the lifecycle."""

    code: str = "INVALID_INSTANCE_TRANSITION"

    def __init__(self, instance_id: str, from_status: str, to_status: str):
        self.instance_id = instance_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Instance {instance_id} cannot move from {from_status} to {to_status}"
        )


class DuplicateSubmissionError(InstanceError):
    """The originating request already has an open approval instance."""

    code: str = "DUPLICATE_SUBMISSION"

    def __init__(self, request_id: str, instance_id: str):
        self.request_id = request_id
        self.instance_id = instance_id
        super().__init__(
            f"Request {request_id} already has open approval instance {instance_id}"
        )


class SnapshotTamperedError(InstanceError):
    """Stored workflow snapshot no longer matches its creation hash."""

    code: str = "SNAPSHOT_TAMPERED"

    def __init__(self, instance_id: str, expected_hash: str, computed_hash: str):
        self.instance_id = instance_id
        self.expected_hash = expected_hash
        self.computed_hash = computed_hash
        super().__init__(
            f"Workflow snapshot of instance {instance_id} was modified after creation"
        )


# Delegation-related exceptions


class DelegationError(ApprovalEngineError):
    """Base exception for approval delegation errors."""

    code: str = "DELEGATION_ERROR"


class InvalidDelegationError(DelegationError):
    """Delegation request is malformed."""

    code: str = "INVALID_DELEGATION"

    def __init__(self, delegator_id: str, delegate_id: str, reason: str):
        self.delegator_id = delegator_id
        self.delegate_id = delegate_id
        self.reason = reason
        super().__init__(
            f"Invalid delegation {delegator_id} -> {delegate_id}: {reason}"
        )


class DelegationNotFoundError(DelegationError):
    """Delegation with given ID was not found."""

    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, delegation_id: str):
        self.delegation_id = delegation_id
        super().__init__(f"Delegation not found: {delegation_id}")


# Concurrency-related exceptions


class ConcurrencyError(ApprovalEngineError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class InstanceLockTimeoutError(ConcurrencyError):
    """The per-instance lock could not be acquired within the timeout."""

    code: str = "INSTANCE_LOCK_TIMEOUT"

    def __init__(self, instance_id: str, timeout: float):
        self.instance_id = instance_id
        self.timeout = timeout
        super().__init__(
            f"Could not lock approval instance {instance_id} within {timeout}s"
        )


# Immutability-related exceptions


class ImmutabilityError(ApprovalEngineError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Decisions, escalation events, stage templates and terminal instances
    are immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration-related exceptions


class ConfigError(ApprovalEngineError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class ConfigCompilationError(ConfigError):
    """One or more configured workflows failed validation."""

    code: str = "CONFIG_COMPILATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Approval configuration failed with {len(errors)} error(s): "
            + "; ".join(errors)
        )

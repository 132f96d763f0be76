"""
approval_kernel.services.approval_engine -- Approval workflow controller.

Responsibility:
    Orchestrates an approval instance's life: resolves the workflow on
    submission, pins each stage's approver set on entry, records decisions,
    applies the stage quorum rule, advances / approves / rejects, cancels,
    and fires escalations.  Emits outward events after each commit.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines (``approval_engines``).

Invariants enforced:
    - Snapshot: an instance runs against the definition snapshot taken at
      submission, verified by hash on every load.
    - Pinned approver set: resolved once per stage entry from the
      directory; later role changes do not alter an in-flight quorum.
      Escalation and administrative intervention only ever add members.
    - Serialization: every mutation of an instance runs under the
      per-instance lock, re-reads the row (FOR UPDATE where supported) and
      re-checks terminal status after acquiring it.  The version column
      turns a cross-process lost update into a retried conflict.
    - One decision per (instance, stage, approver); one escalation per
      (instance, stage).  Both are also unique constraints.
    - Exactly one stage transition per satisfied stage: the transition is
      decided while holding the lock, against the decision set that
      includes the new decision.
    - Terminal freeze: decisions on APPROVED / REJECTED / CANCELLED
      instances raise StaleDecisionError and change nothing.
    - Events are published only after commit; sink failures are logged
      and never roll back engine state.

Failure modes:
    - NoApplicableWorkflowError / AmbiguousWorkflowMatchError on submit.
    - DuplicateSubmissionError when the request already has an open instance.
    - UnauthorizedApproverError, DuplicateDecisionError, StaleDecisionError,
      BlockedStageError on decide.
    - InstanceNotFoundError, InvalidInstanceTransitionError.
    - OptimisticLockError after ``max_conflict_retries`` conflicts.
    - InstanceLockTimeoutError when ``lock_timeout_seconds`` elapses.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.stage_evaluator import evaluate_stage
from approval_kernel.domain.approval import (
    ApprovalInstance,
    ApproverSource,
    Decision,
    EscalationRecord,
    InstanceStatus,
    RequestStatusView,
    StageDecisionRecord,
    StageOutcome,
    StageUpdateResult,
    can_transition,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.directory import ApproverDirectory
from approval_kernel.domain.events import (
    EngineEvent,
    Escalated,
    EventSink,
    InstanceApproved,
    InstanceCancelled,
    InstanceRejected,
    InstanceSubmitted,
    StageAdvanced,
    StageBlocked,
)
from approval_kernel.domain.workflow import (
    RequisitionType,
    RoleApprover,
    StageTemplate,
    UserApprover,
    WorkflowDefinition,
    definition_to_snapshot,
    snapshot_hash,
)
from approval_kernel.exceptions import (
    BlockedStageError,
    DuplicateDecisionError,
    DuplicateSubmissionError,
    InstanceNotFoundError,
    InvalidInstanceTransitionError,
    OptimisticLockError,
    StaleDecisionError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.instance import (
    ApprovalInstanceModel,
    EscalationEventModel,
    PinnedApproverModel,
    StageDecisionModel,
)
from approval_kernel.selectors.instance_selector import InstanceSelector
from approval_kernel.selectors.workflow_selector import WorkflowSelector, coerce_requisition_type
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.event_dispatcher import EventDispatcher
from approval_kernel.services.instance_locks import InstanceLockRegistry

logger = get_logger("services.approval_engine")

T = TypeVar("T")

_Work = Callable[[Session, ApprovalInstanceModel, list[EngineEvent]], T]


class ApprovalEngine:
    """Multi-stage approval controller.

    Contract:
        - ``submit`` / ``decide`` / ``cancel`` are the request-facing calls.
        - ``escalate_if_due`` is the scheduler's per-instance hook;
          ``escalate_now`` and ``intervene`` are administrative.
        - Every call opens its own session from ``session_factory`` and
          commits before returning.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ApproverDirectory,
        clock: Clock | None = None,
        sinks: list[EventSink] | tuple[EventSink, ...] = (),
        strict_matching: bool = False,
        lock_timeout_seconds: float | None = None,
        max_conflict_retries: int = 3,
        locks: InstanceLockRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock or SystemClock()
        self._dispatcher = EventDispatcher(sinks)
        self._strict_matching = strict_matching
        self._lock_timeout = lock_timeout_seconds
        self._max_conflict_retries = max_conflict_retries
        self._locks = locks or InstanceLockRegistry()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def locks(self) -> InstanceLockRegistry:
        return self._locks

    def add_sink(self, sink: EventSink) -> None:
        self._dispatcher.add_sink(sink)

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        requisition_type: RequisitionType | str | None,
        amount: Decimal | None,
        request_id: str,
    ) -> ApprovalInstance:
        """Route a request into its applicable workflow.

        Creates the instance at stage 1 (PENDING, then immediately
        IN_PROGRESS) with stage 1's approver set pinned.  A stage whose
        approver set resolves empty is marked blocked and reported via
        ``StageBlocked``; it is never auto-passed.

        Raises:
            NoApplicableWorkflowError: nothing matches; the request must
                stay blocked.
            DuplicateSubmissionError: the request already has an open
                instance.
        """
        rtype = coerce_requisition_type(requisition_type)
        events: list[EngineEvent] = []

        with LogContext.bind(request_id=request_id):
            session = self._session_factory()
            try:
                existing = InstanceSelector(session).open_instance_for_request(request_id)
                if existing is not None:
                    raise DuplicateSubmissionError(request_id, str(existing))

                definition = WorkflowSelector(
                    session, strict=self._strict_matching,
                ).select(rtype, amount)

                model = self._create_instance(session, definition, rtype, amount, request_id)
                approvers = self._enter_stage(model, definition, 1, events)
                self._transition(model, InstanceStatus.IN_PROGRESS)

                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    raise DuplicateSubmissionError(request_id, "") from None

                events.insert(
                    0,
                    InstanceSubmitted(
                        instance_id=model.id,
                        request_id=request_id,
                        occurred_at=model.created_at,
                        stage=1,
                        approvers=approvers,
                    ),
                )
                instance = model.to_dto()
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            logger.info(
                "approval_instance_submitted",
                extra={
                    "instance_id": str(model.id),
                    "workflow_id": str(definition.workflow_id),
                    "workflow_name": definition.name,
                    "workflow_version": definition.version,
                    "requisition_type": rtype.value if rtype else None,
                    "amount": str(amount) if amount is not None else None,
                    "approvers": list(approvers),
                },
            )
            self._dispatcher.dispatch(events)
            return instance

    # =========================================================================
    # Decisions
    # =========================================================================

    def decide(
        self,
        instance_id: UUID,
        approver_id: str,
        decision: Decision | str,
        comments: str = "",
        stage_number: int | None = None,
    ) -> StageUpdateResult:
        """Record one approver's decision on the current stage.

        Args:
            instance_id: Instance to decide on.
            approver_id: The acting user.  If they are not pinned but hold
                an active delegation from a pinned approver, the decision
                occupies the delegator's slot.
            decision: APPROVED or REJECTED.
            comments: Free text stored with the decision.
            stage_number: Stage the caller believes is current.  A
                mismatch is a stale decision.

        Returns:
            StageUpdateResult describing what the decision did.
        """
        decision = Decision(decision)

        def work(session, model, events):
            instance = model.to_dto()
            self._ensure_decidable(instance, stage_number)

            current = instance.current_stage_number
            stage = instance.current_stage
            pinned = tuple(p for p in instance.pinned if p.stage_number == current)
            if not pinned:
                raise BlockedStageError(
                    str(instance_id), current, "Pinned approver set is empty",
                )

            slot, acted_by = self._resolve_slot(session, instance, approver_id)
            source = next(p.source for p in pinned if p.approver_id == slot)
            now = self._clock.now()

            record = StageDecisionRecord(
                decision_id=uuid4(),
                instance_id=instance.instance_id,
                stage_number=current,
                approver_id=slot,
                decision=decision,
                comments=comments or "",
                decided_at=now,
                acted_by=acted_by,
                by_escalation_target=source == ApproverSource.ESCALATION,
            )
            model.decisions.append(
                StageDecisionModel.from_dto(record, sequence=len(instance.decisions) + 1)
            )
            try:
                session.flush()
            except IntegrityError:
                raise DuplicateDecisionError(str(instance_id), current, slot) from None

            evaluation = evaluate_stage(
                stage.approval_type,
                pinned,
                instance.decisions_for(current) + (record,),
            )
            logger.info(
                "stage_decision_recorded",
                extra={
                    "stage": current,
                    "decision": decision.value,
                    "slot": slot,
                    "acted_by": acted_by,
                    "outcome": evaluation.outcome.value,
                    "approvals": evaluation.approvals,
                    "rejections": evaluation.rejections,
                    "quorum_size": evaluation.quorum_size,
                },
            )

            advanced_to = None
            if evaluation.outcome == StageOutcome.SATISFIED:
                advanced_to = self._complete_stage(model, instance.definition, current, events)
            elif evaluation.outcome == StageOutcome.REJECTED:
                self._finish(model, InstanceStatus.REJECTED)
                events.append(
                    InstanceRejected(
                        instance_id=model.id,
                        request_id=model.request_id,
                        occurred_at=now,
                        rejecting_stage=current,
                    )
                )
                logger.info("approval_instance_rejected", extra={"rejecting_stage": current})
            model.updated_at = now

            return StageUpdateResult(
                instance_id=model.id,
                stage_number=current,
                outcome=evaluation.outcome,
                status=InstanceStatus(model.status),
                current_stage_number=model.current_stage_number,
                advanced_to=advanced_to,
                stage_blocked=model.stage_blocked,
                evaluation=evaluation,
            )

        with LogContext.bind(instance_id=str(instance_id), approver_id=approver_id):
            return self._mutate(instance_id, "decide", work)

    # =========================================================================
    # Cancellation and administrative actions
    # =========================================================================

    def cancel(
        self,
        instance_id: UUID,
        reason: str,
        actor_id: str | None = None,
    ) -> ApprovalInstance:
        """Administratively cancel a non-terminal instance.

        Raises:
            InvalidInstanceTransitionError: the instance is already terminal.
        """

        def work(session, model, events):
            now = self._clock.now()
            self._finish(model, InstanceStatus.CANCELLED)
            model.cancel_reason = reason
            model.updated_at = now
            events.append(
                InstanceCancelled(
                    instance_id=model.id,
                    request_id=model.request_id,
                    occurred_at=now,
                    reason=reason,
                )
            )
            logger.info("approval_instance_cancelled", extra={"reason": reason})
            return model.to_dto()

        with LogContext.bind(instance_id=str(instance_id), actor_id=actor_id):
            return self._mutate(instance_id, "cancel", work)

    def intervene(
        self,
        instance_id: UUID,
        approver_ids: list[str] | tuple[str, ...],
        actor_id: str,
        reason: str = "",
    ) -> ApprovalInstance:
        """Add approvers to the current stage's pinned set.

        Used by an administrator to clear a blocked stage.  Inactive users
        and users already pinned are skipped.  The pinned set only grows.

        Raises:
            InvalidInstanceTransitionError: the instance is terminal.
        """

        def work(session, model, events):
            instance = model.to_dto()
            if instance.is_terminal:
                raise InvalidInstanceTransitionError(
                    str(instance_id), instance.status.value, InstanceStatus.IN_PROGRESS.value,
                )
            current = instance.current_stage_number
            already = instance.pinned_for(current)
            now = self._clock.now()

            added = []
            for user_id in sorted(set(approver_ids)):
                if user_id in already:
                    continue
                if not self._directory.is_active(user_id):
                    logger.warning("intervention_approver_inactive", extra={"user_id": user_id})
                    continue
                model.pinned.append(
                    PinnedApproverModel(
                        stage_number=current,
                        approver_id=user_id,
                        source=ApproverSource.INTERVENTION.value,
                        added_at=now,
                    )
                )
                added.append(user_id)

            if added:
                model.stage_blocked = False
                model.updated_at = now
            logger.info(
                "stage_intervention",
                extra={"stage": current, "added": added, "reason": reason},
            )
            return model.to_dto()

        with LogContext.bind(instance_id=str(instance_id), actor_id=actor_id):
            return self._mutate(instance_id, "intervene", work)

    # =========================================================================
    # Escalation
    # =========================================================================

    def escalate_if_due(
        self,
        instance_id: UUID,
        lock_timeout_seconds: float | None = None,
    ) -> EscalationRecord | None:
        """Fire the current stage's escalation if it is overdue.

        A stage is overdue when it has been open longer than its
        ``after_hours`` or when its pinned approver set is empty.
        Everything is re-checked under the instance lock, so a stage that
        was decided or cancelled since the caller looked is left alone.

        Returns:
            The fired escalation, or None if nothing fired.
        """
        with LogContext.bind(instance_id=str(instance_id)):
            return self._mutate(
                instance_id,
                "escalate",
                self._escalation_work(trigger="timer", actor_id=None, require_due=True),
                lock_timeout=lock_timeout_seconds,
            )

    def escalate_now(self, instance_id: UUID, actor_id: str) -> EscalationRecord | None:
        """Manually escalate the current stage, ignoring the elapsed-time threshold.

        Shares the one-escalation-per-stage record with the scheduler.

        Returns:
            The fired escalation, or None if the stage has no escalation
            rule, already escalated, or the target is inactive.
        """
        with LogContext.bind(instance_id=str(instance_id), actor_id=actor_id):
            return self._mutate(
                instance_id,
                "escalate",
                self._escalation_work(trigger="manual", actor_id=actor_id, require_due=False),
            )

    def _escalation_work(self, trigger: str, actor_id: str | None, require_due: bool):
        def work(session, model, events):
            instance = model.to_dto()
            if instance.is_terminal:
                return None

            current = instance.current_stage_number
            stage = instance.current_stage
            rule = stage.escalation
            if rule is None:
                if not require_due:
                    logger.info("escalation_not_configured", extra={"stage": current})
                return None
            if instance.escalation_for(current) is not None:
                return None

            now = self._clock.now()
            pinned = instance.pinned_for(current)
            if require_due:
                elapsed = now - instance.stage_entered_at
                overdue = elapsed > timedelta(hours=rule.after_hours)
                if pinned and not overdue:
                    return None

            if not self._directory.is_active(rule.escalate_to):
                if not model.stage_blocked:
                    model.stage_blocked = True
                    model.updated_at = now
                    reason = f"Escalation target {rule.escalate_to} is inactive"
                    events.append(
                        StageBlocked(
                            instance_id=model.id,
                            request_id=model.request_id,
                            occurred_at=now,
                            stage=current,
                            reason=reason,
                        )
                    )
                    logger.warning(
                        "escalation_target_inactive",
                        extra={"stage": current, "escalate_to": rule.escalate_to},
                    )
                return None

            escalation = EscalationEventModel(
                id=uuid4(),
                stage_number=current,
                original_approver=stage.approver.describe(),
                escalate_to=rule.escalate_to,
                fired_at=now,
                trigger=trigger,
                actor_id=actor_id,
            )
            model.escalations.append(escalation)
            if rule.escalate_to not in pinned:
                model.pinned.append(
                    PinnedApproverModel(
                        stage_number=current,
                        approver_id=rule.escalate_to,
                        source=ApproverSource.ESCALATION.value,
                        added_at=now,
                    )
                )
            model.stage_blocked = False
            model.updated_at = now

            try:
                session.flush()
            except IntegrityError:
                # Another process fired it first
                session.rollback()
                events.clear()
                logger.info("escalation_already_fired", extra={"stage": current})
                return None

            record = escalation.to_dto()
            events.append(
                Escalated(
                    instance_id=model.id,
                    request_id=model.request_id,
                    occurred_at=now,
                    stage=current,
                    escalate_to=rule.escalate_to,
                    original_approver=record.original_approver,
                    escalation_id=record.escalation_id,
                )
            )
            logger.info(
                "escalation_fired",
                extra={
                    "stage": current,
                    "escalate_to": rule.escalate_to,
                    "original_approver": record.original_approver,
                    "trigger": trigger,
                },
            )
            return record

        return work

    # =========================================================================
    # Reads
    # =========================================================================

    def get_instance(self, instance_id: UUID) -> ApprovalInstance:
        session = self._session_factory()
        try:
            return InstanceSelector(session).get(instance_id)
        finally:
            session.close()

    def status_for_request(self, request_id: str) -> RequestStatusView | None:
        session = self._session_factory()
        try:
            return InstanceSelector(session).status_for_request(request_id)
        finally:
            session.close()

    def pending_for(self, approver_id: str) -> list[ApprovalInstance]:
        """Open instances waiting on ``approver_id`` or anyone they act for."""
        session = self._session_factory()
        try:
            delegators = DelegationService(session, self._clock).active_delegators_for(approver_id)
            return InstanceSelector(session).pending_for_approver(approver_id, delegators)
        finally:
            session.close()

    def list_open_ids(self) -> list[UUID]:
        session = self._session_factory()
        try:
            return InstanceSelector(session).list_open_ids()
        finally:
            session.close()

    # =========================================================================
    # Internal: unit of work
    # =========================================================================

    def _mutate(
        self,
        instance_id: UUID,
        operation: str,
        work: _Work,
        lock_timeout: float | None = None,
    ):
        """Run ``work`` against a freshly locked instance row and commit.

        Holds the per-instance lock for the whole unit of work.  Retries on
        optimistic version conflicts; publishes collected events after the
        commit succeeds.
        """
        timeout = lock_timeout if lock_timeout is not None else self._lock_timeout
        with self._locks.hold(instance_id, timeout):
            attempt = 0
            while True:
                events: list[EngineEvent] = []
                session = self._session_factory()
                try:
                    model = self._load_for_update(session, instance_id)
                    result = work(session, model, events)
                    session.commit()
                except StaleDataError:
                    session.rollback()
                    attempt += 1
                    if attempt > self._max_conflict_retries:
                        logger.error(
                            "optimistic_lock_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise OptimisticLockError("ApprovalInstance", str(instance_id)) from None
                    logger.warning(
                        "optimistic_lock_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    continue
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()

                self._dispatcher.dispatch(events)
                return result

    def _load_for_update(self, session: Session, instance_id: UUID) -> ApprovalInstanceModel:
        model = session.execute(
            select(ApprovalInstanceModel)
            .where(ApprovalInstanceModel.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    # =========================================================================
    # Internal: state changes
    # =========================================================================

    def _create_instance(
        self,
        session: Session,
        definition: WorkflowDefinition,
        requisition_type: RequisitionType | None,
        amount: Decimal | None,
        request_id: str,
    ) -> ApprovalInstanceModel:
        snapshot = definition_to_snapshot(definition)
        now = self._clock.now()
        model = ApprovalInstanceModel(
            id=uuid4(),
            request_id=request_id,
            request_type=requisition_type.value if requisition_type else None,
            amount=amount,
            workflow_id=definition.workflow_id,
            workflow_version=definition.version,
            definition_snapshot=snapshot,
            snapshot_hash=snapshot_hash(snapshot),
            current_stage_number=1,
            status=InstanceStatus.PENDING.value,
            stage_blocked=False,
            created_at=now,
            stage_entered_at=now,
            updated_at=now,
        )
        session.add(model)
        return model

    def _resolve_approvers(self, stage: StageTemplate) -> frozenset[str]:
        """Point-in-time approver set for a stage, taken once at entry."""
        approver = stage.approver
        if isinstance(approver, RoleApprover):
            return frozenset(self._directory.role_holders(approver.role))
        if isinstance(approver, UserApprover):
            if self._directory.is_active(approver.user_id):
                return frozenset({approver.user_id})
            return frozenset()
        return frozenset()

    def _enter_stage(
        self,
        model: ApprovalInstanceModel,
        definition: WorkflowDefinition,
        stage_number: int,
        events: list[EngineEvent],
    ) -> tuple[str, ...]:
        """Make ``stage_number`` current and pin its approver set."""
        stage = definition.stage(stage_number)
        now = self._clock.now()
        approvers = tuple(sorted(self._resolve_approvers(stage)))

        model.current_stage_number = stage_number
        model.stage_entered_at = now
        model.stage_blocked = not approvers
        for approver_id in approvers:
            model.pinned.append(
                PinnedApproverModel(
                    stage_number=stage_number,
                    approver_id=approver_id,
                    source=ApproverSource.DESIGNATED.value,
                    added_at=now,
                )
            )

        if not approvers:
            reason = f"No active approvers for {stage.approver.describe()}"
            events.append(
                StageBlocked(
                    instance_id=model.id,
                    request_id=model.request_id,
                    occurred_at=now,
                    stage=stage_number,
                    reason=reason,
                )
            )
            logger.warning(
                "stage_blocked",
                extra={"stage": stage_number, "approver": stage.approver.describe()},
            )
        return approvers

    def _complete_stage(
        self,
        model: ApprovalInstanceModel,
        definition: WorkflowDefinition,
        stage_number: int,
        events: list[EngineEvent],
    ) -> int | None:
        """Advance past a satisfied stage, or approve after the last one."""
        now = self._clock.now()
        if definition.is_last_stage(stage_number):
            self._finish(model, InstanceStatus.APPROVED)
            events.append(
                InstanceApproved(
                    instance_id=model.id,
                    request_id=model.request_id,
                    occurred_at=now,
                )
            )
            logger.info("approval_instance_approved", extra={"final_stage": stage_number})
            return None

        next_stage = stage_number + 1
        blocked_events: list[EngineEvent] = []
        approvers = self._enter_stage(model, definition, next_stage, blocked_events)
        events.append(
            StageAdvanced(
                instance_id=model.id,
                request_id=model.request_id,
                occurred_at=now,
                new_stage=next_stage,
                approvers=approvers,
            )
        )
        events.extend(blocked_events)
        logger.info(
            "stage_advanced",
            extra={"from_stage": stage_number, "new_stage": next_stage, "approvers": list(approvers)},
        )
        return next_stage

    def _transition(self, model: ApprovalInstanceModel, to_status: InstanceStatus) -> None:
        from_status = InstanceStatus(model.status)
        if not can_transition(from_status, to_status):
            raise InvalidInstanceTransitionError(str(model.id), from_status.value, to_status.value)
        model.status = to_status.value

    def _finish(self, model: ApprovalInstanceModel, to_status: InstanceStatus) -> None:
        self._transition(model, to_status)
        model.completed_at = self._clock.now()

    # =========================================================================
    # Internal: authorization
    # =========================================================================

    def _ensure_decidable(self, instance: ApprovalInstance, stage_number: int | None) -> None:
        if instance.is_terminal:
            raise StaleDecisionError(
                str(instance.instance_id),
                instance.status.value,
                instance.current_stage_number,
                stage_number,
            )
        if stage_number is not None and stage_number != instance.current_stage_number:
            raise StaleDecisionError(
                str(instance.instance_id),
                instance.status.value,
                instance.current_stage_number,
                stage_number,
            )

    def _resolve_slot(
        self,
        session: Session,
        instance: ApprovalInstance,
        approver_id: str,
    ) -> tuple[str, str | None]:
        """Decide which pinned slot ``approver_id`` fills on the current stage.

        Returns:
            (slot, acted_by) where acted_by is set only when acting for a
            delegator.
        """
        current = instance.current_stage_number
        pinned = instance.pinned_for(current)
        decided = {d.approver_id for d in instance.decisions_for(current)}

        if approver_id in pinned:
            if approver_id in decided:
                raise DuplicateDecisionError(str(instance.instance_id), current, approver_id)
            return approver_id, None

        delegators = DelegationService(session, self._clock).active_delegators_for(approver_id)
        eligible = [d for d in delegators if d in pinned]
        if eligible:
            open_slots = [d for d in eligible if d not in decided]
            if not open_slots:
                raise DuplicateDecisionError(str(instance.instance_id), current, eligible[0])
            logger.info(
                "decision_by_delegate",
                extra={"delegator_id": open_slots[0], "delegate_id": approver_id},
            )
            return open_slots[0], approver_id

        # Pinned on a stage the instance has already moved past
        identities = {approver_id, *delegators}
        for earlier in range(current - 1, 0, -1):
            if instance.pinned_for(earlier) & identities:
                raise StaleDecisionError(
                    str(instance.instance_id),
                    instance.status.value,
                    current,
                    earlier,
                )

        logger.warning("unauthorized_approver", extra={"stage": current})
        raise UnauthorizedApproverError(str(instance.instance_id), current, approver_id)

"""
approval_engines.stage_evaluator -- Pure stage quorum evaluation.

Responsibility:
    Apply a stage's quorum rule (SINGLE / ALL / MAJORITY) to the pinned
    approver set and the decisions recorded so far, and decide whether the
    stage is satisfied, rejected, still pending, or blocked.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Quorum is computed against the pinned set, never against the number
      of decisions received so far.
    - The quorum size is the number of approvers pinned at stage entry
      (DESIGNATED, plus INTERVENTION members added by an administrator).
      Escalation targets widen authority: their decisions count as votes,
      but they do not enlarge the quorum.  When no approver was pinned at
      entry, every pinned approver (escalation targets included) forms
      the quorum.
    - ALL is satisfied only once every quorum member has approved; an
      escalation target's approval never fills a silent member's place.
    - An empty pinned set is BLOCKED, never auto-satisfied.
    - Decisions from approvers outside the pinned set are ignored.

Failure modes:
    - None.  Unknown approval types fall through to PENDING only if the
      enum is extended without updating this module.
"""

from __future__ import annotations

from approval_kernel.domain.approval import (
    ApproverSource,
    Decision,
    PinnedApprover,
    StageDecisionRecord,
    StageEvaluation,
    StageOutcome,
)
from approval_kernel.domain.workflow import ApprovalType


def quorum_members(pinned: tuple[PinnedApprover, ...] | list[PinnedApprover]) -> frozenset[str]:
    """Approvers whose count defines the stage's quorum size."""
    base = frozenset(
        p.approver_id for p in pinned if p.source != ApproverSource.ESCALATION
    )
    if base:
        return base
    return frozenset(p.approver_id for p in pinned)


def majority_threshold(quorum_size: int) -> int:
    """Smallest count strictly greater than half of ``quorum_size``."""
    return quorum_size // 2 + 1


def evaluate_stage(
    approval_type: ApprovalType,
    pinned: tuple[PinnedApprover, ...] | list[PinnedApprover],
    decisions: tuple[StageDecisionRecord, ...] | list[StageDecisionRecord],
) -> StageEvaluation:
    """Determine the outcome of one stage.

    Args:
        approval_type: The stage's quorum rule.
        pinned: Pinned approver set of the stage (all sources).
        decisions: Decisions recorded for the stage, in the order received.

    Returns:
        StageEvaluation with the outcome and the vote counts it was
        based on.
    """
    voters = frozenset(p.approver_id for p in pinned)
    if not voters:
        return StageEvaluation(
            outcome=StageOutcome.BLOCKED,
            reason="Pinned approver set is empty",
        )

    counted = _counted_decisions(voters, decisions)
    approvals = sum(1 for d in counted if d.decision == Decision.APPROVED)
    rejections = len(counted) - approvals
    members = quorum_members(pinned)
    quorum_size = len(members)

    if approval_type == ApprovalType.SINGLE:
        return _evaluate_single(counted, approvals, rejections, quorum_size)
    if approval_type == ApprovalType.ALL:
        return _evaluate_all(counted, members, approvals, rejections)
    if approval_type == ApprovalType.MAJORITY:
        all_decided = len(counted) >= len(voters)
        return _evaluate_majority(approvals, rejections, quorum_size, all_decided)

    return StageEvaluation(
        outcome=StageOutcome.PENDING,
        approvals=approvals,
        rejections=rejections,
        quorum_size=quorum_size,
        reason=f"Unsupported approval type {approval_type}",
    )


def _counted_decisions(
    voters: frozenset[str],
    decisions: tuple[StageDecisionRecord, ...] | list[StageDecisionRecord],
) -> list[StageDecisionRecord]:
    """Keep the first decision of each pinned approver, in received order."""
    seen: set[str] = set()
    counted: list[StageDecisionRecord] = []
    for d in decisions:
        if d.approver_id not in voters or d.approver_id in seen:
            continue
        seen.add(d.approver_id)
        counted.append(d)
    return counted


def _evaluate_single(
    counted: list[StageDecisionRecord],
    approvals: int,
    rejections: int,
    quorum_size: int,
) -> StageEvaluation:
    if not counted:
        return StageEvaluation(
            outcome=StageOutcome.PENDING,
            quorum_size=quorum_size,
            required_approvals=1,
            reason="Awaiting first decision",
        )

    first = counted[0]
    if first.decision == Decision.APPROVED:
        outcome = StageOutcome.SATISFIED
        reason = f"Approved by {first.approver_id}"
    else:
        outcome = StageOutcome.REJECTED
        reason = f"Rejected by {first.approver_id}"

    return StageEvaluation(
        outcome=outcome,
        approvals=approvals,
        rejections=rejections,
        quorum_size=quorum_size,
        required_approvals=1,
        reason=reason,
    )


def _evaluate_all(
    counted: list[StageDecisionRecord],
    members: frozenset[str],
    approvals: int,
    rejections: int,
) -> StageEvaluation:
    quorum_size = len(members)
    approved_by = {d.approver_id for d in counted if d.decision == Decision.APPROVED}
    missing = members - approved_by

    # Any rejection vetoes, even before everyone has responded
    if rejections > 0:
        outcome = StageOutcome.REJECTED
        reason = f"Vetoed ({rejections} rejection(s))"
    elif not missing:
        outcome = StageOutcome.SATISFIED
        reason = "Unanimous approval"
    else:
        outcome = StageOutcome.PENDING
        reason = f"Awaiting {', '.join(sorted(missing))}"

    return StageEvaluation(
        outcome=outcome,
        approvals=approvals,
        rejections=rejections,
        quorum_size=quorum_size,
        required_approvals=quorum_size,
        reason=reason,
    )


def _evaluate_majority(
    approvals: int,
    rejections: int,
    quorum_size: int,
    all_decided: bool,
) -> StageEvaluation:
    required = majority_threshold(quorum_size)

    if approvals >= required:
        outcome = StageOutcome.SATISFIED
        reason = f"Majority approval ({approvals}/{quorum_size})"
    elif rejections >= required:
        outcome = StageOutcome.REJECTED
        reason = f"Majority rejection ({rejections}/{quorum_size})"
    elif all_decided:
        # Everyone voted and neither side has a strict majority (even split)
        outcome = StageOutcome.REJECTED
        reason = f"No majority reached ({approvals} for, {rejections} against)"
    else:
        outcome = StageOutcome.PENDING
        reason = f"{approvals}/{required} approvals needed"

    return StageEvaluation(
        outcome=outcome,
        approvals=approvals,
        rejections=rejections,
        quorum_size=quorum_size,
        required_approvals=required,
        reason=reason,
    )

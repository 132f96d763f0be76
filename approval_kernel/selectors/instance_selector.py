"""
Module: approval_kernel.selectors.instance_selector
Responsibility: Read-only access to approval instances: single lookup,
    open-instance enumeration for the escalation scheduler, approver work
    queues, and the weak status view held by originating requests.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Every instance returned has had its definition snapshot verified.
    - ``list_open_ids`` is ordered by stage entry time so the oldest
      stalled stages are inspected first.

Failure modes:
    - InstanceNotFoundError from ``get``; other methods return None or an
      empty list on absence of data.
    - SnapshotTamperedError when a stored snapshot fails verification.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import and_, select

from approval_kernel.domain.approval import (
    OPEN_INSTANCE_STATUSES,
    ApprovalInstance,
    InstanceStatus,
    RequestStatusView,
)
from approval_kernel.exceptions import InstanceNotFoundError
from approval_kernel.models.instance import ApprovalInstanceModel, PinnedApproverModel
from approval_kernel.selectors.base import BaseSelector

_OPEN_VALUES = tuple(s.value for s in OPEN_INSTANCE_STATUSES)


class InstanceSelector(BaseSelector):
    """Read-side queries over approval instances."""

    def find(self, instance_id: UUID) -> ApprovalInstance | None:
        model = self.session.get(ApprovalInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def get(self, instance_id: UUID) -> ApprovalInstance:
        instance = self.find(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def list_open_ids(self, limit: int | None = None) -> list[UUID]:
        stmt = (
            select(ApprovalInstanceModel.id)
            .where(ApprovalInstanceModel.status.in_(_OPEN_VALUES))
            .order_by(ApprovalInstanceModel.stage_entered_at, ApprovalInstanceModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def pending_for_approver(
        self,
        approver_id: str,
        delegators: tuple[str, ...] | list[str] = (),
    ) -> list[ApprovalInstance]:
        """Open instances waiting on ``approver_id`` (or someone they act for).

        An instance is included when its current stage pins one of the
        identities and that identity has not decided on the stage yet.
        """
        identities = {approver_id, *delegators}
        # json columns have no equality operator on PostgreSQL, so no DISTINCT
        waiting_ids = (
            select(ApprovalInstanceModel.id)
            .join(
                PinnedApproverModel,
                and_(
                    PinnedApproverModel.instance_id == ApprovalInstanceModel.id,
                    PinnedApproverModel.stage_number == ApprovalInstanceModel.current_stage_number,
                ),
            )
            .where(
                ApprovalInstanceModel.status.in_(_OPEN_VALUES),
                PinnedApproverModel.approver_id.in_(identities),
            )
        )
        stmt = (
            select(ApprovalInstanceModel)
            .where(ApprovalInstanceModel.id.in_(waiting_ids))
            .order_by(ApprovalInstanceModel.created_at, ApprovalInstanceModel.id)
        )

        pending = []
        for model in self.session.scalars(stmt).all():
            instance = model.to_dto()
            stage = instance.current_stage_number
            pinned = instance.pinned_for(stage) & identities
            decided = {d.approver_id for d in instance.decisions_for(stage)}
            if pinned - decided:
                pending.append(instance)
        return pending

    def status_for_request(self, request_id: str) -> RequestStatusView | None:
        """Latest instance for a request, as the weak back-reference view."""
        row = self.session.execute(
            select(
                ApprovalInstanceModel.id,
                ApprovalInstanceModel.status,
                ApprovalInstanceModel.current_stage_number,
            )
            .where(ApprovalInstanceModel.request_id == request_id)
            .order_by(ApprovalInstanceModel.created_at.desc(), ApprovalInstanceModel.id.desc())
            .limit(1)
        ).first()
        if row is None:
            return None
        return RequestStatusView(
            request_id=request_id,
            instance_id=row.id,
            status=InstanceStatus(row.status),
            current_stage_number=row.current_stage_number,
        )

    def open_instance_for_request(self, request_id: str) -> UUID | None:
        return self.session.scalars(
            select(ApprovalInstanceModel.id).where(
                ApprovalInstanceModel.request_id == request_id,
                ApprovalInstanceModel.status.in_(_OPEN_VALUES),
            )
        ).first()

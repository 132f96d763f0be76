"""
approval_kernel.services.delegation_service -- Approval delegations.

Responsibility:
    Lets an approver (delegator) hand approval authority to another user
    (delegate) for a time window, and answers "who may act for whom right
    now" for the engine's authorization check and the approver work queue.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - delegator != delegate; starts_at < ends_at.
    - A delegator has at most one active delegation per instant: creating
      a delegation deactivates every overlapping active one.
    - Windows are inclusive at both ends.

Failure modes:
    - InvalidDelegationError on a bad window or self-delegation.
    - DelegationNotFoundError on unknown delegation id.

The caller owns the session and its transaction; the service only flushes.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from approval_kernel.db.types import utc
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.delegation import ApprovalDelegation
from approval_kernel.exceptions import DelegationNotFoundError, InvalidDelegationError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.delegation import ApprovalDelegationModel

logger = get_logger("services.delegation")


class DelegationService:
    """Manages approval delegations."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def create_delegation(
        self,
        delegator_id: str,
        delegate_id: str,
        starts_at: datetime,
        ends_at: datetime,
        reason: str | None = None,
    ) -> ApprovalDelegation:
        if not delegator_id or not delegate_id:
            raise InvalidDelegationError(
                delegator_id, delegate_id, "delegator and delegate are required",
            )
        if delegator_id == delegate_id:
            raise InvalidDelegationError(
                delegator_id, delegate_id, "delegate cannot equal delegator",
            )
        starts_at, ends_at = utc(starts_at), utc(ends_at)
        if starts_at >= ends_at:
            raise InvalidDelegationError(
                delegator_id, delegate_id, "starts_at must be before ends_at",
            )

        superseded = self._session.execute(
            update(ApprovalDelegationModel)
            .where(
                ApprovalDelegationModel.delegator_id == delegator_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.starts_at <= ends_at,
                ApprovalDelegationModel.ends_at >= starts_at,
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount

        model = ApprovalDelegationModel(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            starts_at=starts_at,
            ends_at=ends_at,
            reason=reason,
            is_active=True,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "delegation_created",
            extra={
                "delegation_id": str(model.id),
                "delegator_id": delegator_id,
                "delegate_id": delegate_id,
                "superseded": superseded,
            },
        )
        return model.to_dto()

    def cancel_delegation(self, delegation_id: UUID) -> ApprovalDelegation:
        model = self._session.get(ApprovalDelegationModel, delegation_id)
        if model is None:
            raise DelegationNotFoundError(str(delegation_id))
        if model.is_active:
            model.is_active = False
            self._session.flush()
            logger.info("delegation_cancelled", extra={"delegation_id": str(delegation_id)})
        return model.to_dto()

    def get(self, delegation_id: UUID) -> ApprovalDelegation:
        model = self._session.get(ApprovalDelegationModel, delegation_id)
        if model is None:
            raise DelegationNotFoundError(str(delegation_id))
        return model.to_dto()

    def list_for_user(self, user_id: str) -> list[ApprovalDelegation]:
        """Delegations where the user is delegator or delegate, newest first."""
        stmt = (
            select(ApprovalDelegationModel)
            .where(
                or_(
                    ApprovalDelegationModel.delegator_id == user_id,
                    ApprovalDelegationModel.delegate_id == user_id,
                )
            )
            .order_by(ApprovalDelegationModel.created_at.desc())
        )
        return [m.to_dto() for m in self._session.scalars(stmt).all()]

    def active_delegators_for(self, delegate_id: str, at: datetime | None = None) -> tuple[str, ...]:
        """Approvers ``delegate_id`` may currently act for, sorted."""
        moment = utc(at) if at is not None else self._clock.now()
        stmt = select(ApprovalDelegationModel.delegator_id).where(
            ApprovalDelegationModel.delegate_id == delegate_id,
            ApprovalDelegationModel.is_active.is_(True),
            ApprovalDelegationModel.starts_at <= moment,
            ApprovalDelegationModel.ends_at >= moment,
        )
        return tuple(sorted(set(self._session.scalars(stmt).all())))

    def resolve_delegate(self, approver_id: str, at: datetime | None = None) -> str | None:
        """The user currently acting for ``approver_id``, if any."""
        moment = utc(at) if at is not None else self._clock.now()
        stmt = (
            select(ApprovalDelegationModel.delegate_id)
            .where(
                ApprovalDelegationModel.delegator_id == approver_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.starts_at <= moment,
                ApprovalDelegationModel.ends_at >= moment,
            )
            .order_by(ApprovalDelegationModel.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

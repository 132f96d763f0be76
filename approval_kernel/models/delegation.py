"""
Module: approval_kernel.models.delegation
Responsibility: ORM persistence for approval delegations.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - delegator_id != delegate_id (CHECK).
    - starts_at < ends_at (CHECK).
    - Overlapping active delegations of one delegator are deactivated by
      DelegationService before a new one is inserted.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base

if TYPE_CHECKING:
    from approval_kernel.domain.delegation import ApprovalDelegation


class ApprovalDelegationModel(Base):
    """Persistent delegation of approval authority for a time window."""

    __tablename__ = "approval_delegations"

    __table_args__ = (
        CheckConstraint("delegator_id <> delegate_id", name="ck_approval_delegations_distinct"),
        CheckConstraint("starts_at < ends_at", name="ck_approval_delegations_window"),
        Index("ix_approval_delegations_delegate", "delegate_id", "is_active"),
        Index("ix_approval_delegations_delegator", "delegator_id", "is_active"),
    )

    delegator_id: Mapped[str] = mapped_column(String(100), nullable=False)
    delegate_id: Mapped[str] = mapped_column(String(100), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDelegation {self.delegator_id}->{self.delegate_id} "
            f"active={self.is_active}>"
        )

    def to_dto(self) -> ApprovalDelegation:
        from approval_kernel.domain.delegation import ApprovalDelegation

        return ApprovalDelegation(
            delegation_id=self.id,
            delegator_id=self.delegator_id,
            delegate_id=self.delegate_id,
            starts_at=self.starts_at,
            ends_at=self.ends_at,
            is_active=self.is_active,
            reason=self.reason,
            created_at=self.created_at,
        )

"""
Approval delegation value object (``approval_kernel.domain.delegation``).

A delegation lets ``delegate_id`` decide on behalf of ``delegator_id``
during ``[starts_at, ends_at]`` (both ends inclusive).  Decisions made
under a delegation occupy the delegator's slot in the pinned approver set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class ApprovalDelegation:
    delegation_id: UUID
    delegator_id: str
    delegate_id: str
    starts_at: datetime
    ends_at: datetime
    is_active: bool = True
    reason: str | None = None
    created_at: datetime | None = None

    def covers(self, at: datetime) -> bool:
        """True if the delegation is active and ``at`` falls in its window."""
        return self.is_active and self.starts_at <= at <= self.ends_at

    def overlaps(self, starts_at: datetime, ends_at: datetime) -> bool:
        return self.starts_at <= ends_at and starts_at <= self.ends_at

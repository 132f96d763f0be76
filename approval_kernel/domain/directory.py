"""
Approver directory interface (``approval_kernel.domain.directory``).

The user/role directory is an external collaborator.  The engine only
needs two point-in-time questions answered: who currently holds a role,
and whether a user is still active.  ``role_holders`` is called exactly
once per stage entry; the answer is pinned for the stage's lifetime, so
later role changes cannot alter an in-flight quorum.
"""

from __future__ import annotations

import threading
from typing import Protocol


class ApproverDirectory(Protocol):
    """Pluggable interface for role membership and user status lookups."""

    def role_holders(self, role: str) -> frozenset[str]:
        """Return the active users holding ``role`` right now."""
        ...

    def is_active(self, user_id: str) -> bool:
        """Check whether a user may still act as an approver."""
        ...


class InMemoryApproverDirectory:
    """Directory backed by a dict of user -> roles.

    Used by the command line tool and the test suite; production wires the
    HR/user service behind the same protocol.
    """

    def __init__(self, users: dict[str, set[str] | frozenset[str]] | None = None):
        self._lock = threading.Lock()
        self._roles: dict[str, set[str]] = {
            user_id: set(roles) for user_id, roles in (users or {}).items()
        }
        self._inactive: set[str] = set()

    def add_user(self, user_id: str, *roles: str) -> None:
        with self._lock:
            self._roles.setdefault(user_id, set()).update(roles)
            self._inactive.discard(user_id)

    def revoke_role(self, user_id: str, role: str) -> None:
        with self._lock:
            self._roles.get(user_id, set()).discard(role)

    def deactivate(self, user_id: str) -> None:
        with self._lock:
            self._inactive.add(user_id)

    def role_holders(self, role: str) -> frozenset[str]:
        with self._lock:
            return frozenset(
                user_id
                for user_id, roles in self._roles.items()
                if role in roles and user_id not in self._inactive
            )

    def is_active(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._roles and user_id not in self._inactive

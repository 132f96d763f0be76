"""
approval_kernel.services.instance_locks -- Per-instance mutual exclusion.

Responsibility:
    Hands out one lock per approval instance id so that ``decide``,
    ``cancel``, ``intervene`` and escalation firing for the same instance
    run one at a time inside a process.  Different instances never
    contend.

Architecture position:
    Kernel > Services.  Shared by ApprovalEngine and EscalationScheduler
    (the scheduler goes through the engine, which owns the registry).

Invariants enforced:
    - The same instance id always maps to the same lock object while any
      thread holds or waits on it.
    - Locks are reclaimed when nobody references them.

Across processes the database provides the same guarantee: instance rows
are read FOR UPDATE on PostgreSQL and carry an optimistic version column
everywhere.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from approval_kernel.exceptions import InstanceLockTimeoutError


class _InstanceLock:
    """Weak-referenceable holder around a ``threading.Lock``."""

    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


class InstanceLockRegistry:
    """Registry of per-instance locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[UUID, _InstanceLock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, instance_id: UUID | str) -> _InstanceLock:
        # str and UUID spellings of one id share a lock
        instance_id = UUID(str(instance_id))
        with self._guard:
            holder = self._locks.get(instance_id)
            if holder is None:
                holder = _InstanceLock()
                self._locks[instance_id] = holder
            return holder

    @contextmanager
    def hold(
        self,
        instance_id: UUID | str,
        timeout: float | None = None,
    ) -> Generator[None, None, None]:
        """Hold the instance lock for the duration of the block.

        Args:
            instance_id: Instance to serialize on.
            timeout: Seconds to wait; None waits indefinitely.

        Raises:
            InstanceLockTimeoutError: if ``timeout`` elapsed first.
        """
        holder = self._lock_for(instance_id)
        acquired = holder.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise InstanceLockTimeoutError(str(instance_id), timeout)
        try:
            yield
        finally:
            holder.lock.release()

    def __len__(self) -> int:
        return len(self._locks)

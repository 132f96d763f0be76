"""
EscalationScheduler -- In-process polling escalation watcher.

Contract:
    On each tick, walks every open approval instance and asks the engine
    to fire the current stage's escalation if it is overdue.  The engine
    re-checks everything under the same per-instance lock ``decide`` uses,
    so a stage decided or cancelled mid-tick is never escalated.

Architecture: approval_kernel/services.  Single coordinating thread; never
    spawns per-instance workers.

Invariants enforced:
    - At most one escalation per (instance, stage): checked under the
      instance lock and backed by a unique constraint, so overlapping
      ticks, retries and restarts cannot double-fire.
    - Never blocks on a stalled instance: the per-instance lock is taken
      with a timeout and a busy instance is retried next tick.
    - Overlapping ticks are suppressed (non-blocking tick guard).
    - A failing instance is logged and does not stop the tick.
    - Graceful shutdown: ``stop()`` lets the current instance finish.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from approval_kernel.domain.approval import EscalationRecord
from approval_kernel.exceptions import InstanceLockTimeoutError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.approval_engine import ApprovalEngine

logger = get_logger("services.escalation_scheduler")


@dataclass(frozen=True)
class TickSummary:
    """What one scheduler tick did."""

    inspected: int = 0
    fired: int = 0
    skipped_busy: int = 0
    failed: int = 0
    overlapped: bool = False
    escalations: tuple[EscalationRecord, ...] = ()


class EscalationScheduler:
    """Periodic escalation watcher.

    Contract:
        - ``tick()`` inspects all open instances once (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.
        - Respects the stop signal between instances.

    Non-goals:
        - NOT a distributed scheduler (no leader election); running several
          is safe but redundant, since firing is idempotent.
    """

    def __init__(
        self,
        engine: ApprovalEngine,
        tick_interval_seconds: float = 60,
        lock_timeout_seconds: float = 5.0,
    ):
        self._engine = engine
        self._tick_interval = tick_interval_seconds
        self._lock_timeout = lock_timeout_seconds
        self._stop_event = threading.Event()
        self._tick_guard = threading.Lock()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickSummary:
        """Inspect every open instance and fire due escalations."""
        if not self._tick_guard.acquire(blocking=False):
            logger.debug("scheduler_tick_overlap_skipped")
            return TickSummary(overlapped=True)
        try:
            return self._run_tick()
        finally:
            self._tick_guard.release()

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _run_tick(self) -> TickSummary:
        instance_ids = self._engine.list_open_ids()
        inspected = fired = busy = failed = 0
        escalations: list[EscalationRecord] = []

        for instance_id in instance_ids:
            if self._stop_event.is_set():
                break
            inspected += 1
            with LogContext.bind(instance_id=str(instance_id)):
                try:
                    record = self._engine.escalate_if_due(
                        instance_id, lock_timeout_seconds=self._lock_timeout,
                    )
                except InstanceLockTimeoutError:
                    busy += 1
                    logger.info("scheduler_instance_busy")
                    continue
                except Exception:
                    failed += 1
                    logger.exception("scheduler_instance_failed")
                    continue
            if record is not None:
                fired += 1
                escalations.append(record)

        summary = TickSummary(
            inspected=inspected,
            fired=fired,
            skipped_busy=busy,
            failed=failed,
            escalations=tuple(escalations),
        )
        logger.info(
            "scheduler_tick_completed",
            extra={
                "inspected": inspected,
                "fired": fired,
                "skipped_busy": busy,
                "failed": failed,
            },
        )
        return summary

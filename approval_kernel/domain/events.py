"""
Outward engine events (``approval_kernel.domain.events``).

Responsibility
--------------
Frozen event payloads emitted by the engine after a state change has been
committed, plus the ``EventSink`` protocol implemented by the notification
collaborator and by the originating request services.

Delivery is fire-and-forget: events are published only after the
transaction that produced them commits, and a failing sink never rolls
back engine state (see ``services.event_dispatcher``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class EngineEvent:
    """Base for all outward events."""

    instance_id: UUID
    request_id: str
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class InstanceSubmitted(EngineEvent):
    stage: int = 1
    approvers: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageAdvanced(EngineEvent):
    new_stage: int = 0
    approvers: tuple[str, ...] = ()


@dataclass(frozen=True)
class Escalated(EngineEvent):
    stage: int = 0
    escalate_to: str = ""
    original_approver: str = ""
    escalation_id: UUID | None = None


@dataclass(frozen=True)
class StageBlocked(EngineEvent):
    stage: int = 0
    reason: str = ""


@dataclass(frozen=True)
class InstanceApproved(EngineEvent):
    pass


@dataclass(frozen=True)
class InstanceRejected(EngineEvent):
    rejecting_stage: int = 0


@dataclass(frozen=True)
class InstanceCancelled(EngineEvent):
    reason: str = ""


class EventSink(Protocol):
    """Consumer of engine events (notifications, request status display)."""

    def publish(self, event: EngineEvent) -> None:
        ...


@dataclass
class RecordingEventSink:
    """Sink that keeps every event in memory, in publish order."""

    events: list[EngineEvent] = field(default_factory=list)

    def publish(self, event: EngineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_cls: type[EngineEvent]) -> list[EngineEvent]:
        return [e for e in self.events if isinstance(e, event_cls)]

    def clear(self) -> None:
        self.events.clear()

"""
approval_kernel.services.event_dispatcher -- Fire-and-forget event delivery.

Responsibility:
    Collects engine events produced inside a unit of work and hands them to
    the configured sinks only after the transaction has committed.

Architecture position:
    Kernel > Services.  Used by ApprovalEngine.

Invariants enforced:
    - Events are never published for a transaction that rolled back.
    - A failing sink never propagates into the engine: delivery failures
      are logged and left to the notification collaborator to retry.
    - Events are delivered in the order they were produced.
"""

from __future__ import annotations

from approval_kernel.domain.events import EngineEvent, EventSink
from approval_kernel.logging_config import get_logger

logger = get_logger("services.event_dispatcher")


class EventDispatcher:
    """Publishes events to one or more sinks, swallowing sink failures."""

    def __init__(self, sinks: list[EventSink] | tuple[EventSink, ...] = ()) -> None:
        self._sinks = list(sinks)

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def dispatch(self, events: list[EngineEvent]) -> int:
        """Deliver committed events.  Returns the number of failed deliveries."""
        failures = 0
        for event in events:
            for sink in self._sinks:
                try:
                    sink.publish(event)
                except Exception:
                    failures += 1
                    logger.exception(
                        "event_delivery_failed",
                        extra={
                            "event_type": event.event_type,
                            "instance_id": str(event.instance_id),
                            "sink": type(sink).__name__,
                        },
                    )
            logger.debug(
                "event_dispatched",
                extra={"event_type": event.event_type, "instance_id": str(event.instance_id)},
            )
        return failures

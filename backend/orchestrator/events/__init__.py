from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import (
    COMPLETION_EVENTS,
    SCORED_EVENTS,
    BusEvent,
    parse_event,
)

__all__ = [
    "BusEvent",
    "COMPLETION_EVENTS",
    "SCORED_EVENTS",
    "SessionEventBus",
    "parse_event",
]

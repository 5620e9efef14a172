"""
Execution events and the adapter from raw Step Functions history events.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    STATE_ENTERED = "state-entered"
    STATE_EXITED = "state-exited"
    MAP_ENTERED = "map-entered"
    MAP_STARTED = "map-started"
    MAP_ITERATION_STARTED = "map-iteration-started"
    MAP_ITERATION_SUCCEEDED = "map-iteration-succeeded"
    MAP_ITERATION_FAILED = "map-iteration-failed"
    MAP_EXITED = "map-exited"


class ExecutionEvent(BaseModel):
    """One immutable entry of an execution's event log."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    state_name: Optional[str] = None
    iteration_count: Optional[int] = Field(default=None, ge=0)


_MAP_EVENT_TYPES = {
    "MapStateEntered": EventType.MAP_ENTERED,
    "MapStateExited": EventType.MAP_EXITED,
    "MapStateStarted": EventType.MAP_STARTED,
    "MapIterationStarted": EventType.MAP_ITERATION_STARTED,
    "MapIterationSucceeded": EventType.MAP_ITERATION_SUCCEEDED,
    "MapIterationFailed": EventType.MAP_ITERATION_FAILED,
    # Distributed maps report runs instead of iterations
    "MapRunStarted": EventType.MAP_STARTED,
}


def from_history_event(raw: Dict[str, Any]) -> Optional[ExecutionEvent]:
    """
    Convert one Step Functions ``HistoryEvent`` into an ExecutionEvent.

    Returns:
        The event, or None for history entries that carry no progress
        information (lambda scheduling, execution start, and so on).
    """
    raw_type = raw.get("type", "")
    timestamp = raw.get("timestamp") or datetime.now(timezone.utc)

    if raw_type in _MAP_EVENT_TYPES:
        event_type = _MAP_EVENT_TYPES[raw_type]
        name = None
        count = None
        if event_type is EventType.MAP_ENTERED:
            name = (raw.get("stateEnteredEventDetails") or {}).get("name")
        elif event_type is EventType.MAP_EXITED:
            name = (raw.get("stateExitedEventDetails") or {}).get("name")
        elif event_type is EventType.MAP_STARTED:
            count = (raw.get("mapStateStartedEventDetails") or {}).get("length")
        else:
            details = raw.get("mapIterationStartedEventDetails") or raw.get(
                "mapIterationSucceededEventDetails"
            ) or raw.get("mapIterationFailedEventDetails") or {}
            name = details.get("name")
        return ExecutionEvent(
            type=event_type, timestamp=timestamp, state_name=name, iteration_count=count
        )

    if raw_type.endswith("StateEntered"):
        name = (raw.get("stateEnteredEventDetails") or {}).get("name")
        return ExecutionEvent(type=EventType.STATE_ENTERED, timestamp=timestamp, state_name=name)

    if raw_type.endswith("StateExited"):
        name = (raw.get("stateExitedEventDetails") or {}).get("name")
        return ExecutionEvent(type=EventType.STATE_EXITED, timestamp=timestamp, state_name=name)

    return None


def from_history(raw_events: Iterable[Dict[str, Any]]) -> List[ExecutionEvent]:
    """Convert a complete, ordered history into ExecutionEvents."""
    events = []
    for raw in raw_events:
        event = from_history_event(raw)
        if event is not None:
            events.append(event)
    return events

"""Structured events for path generation, learner progress and path switches.

Each event is written to the ``learnpath.telemetry`` logger as a
``TELEMETRY {json}`` line and handed to any in-process listeners. Field values
are reduced to JSON primitives first, so listeners never see enums, pydantic
models or datetimes.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Mapping

from pydantic import BaseModel

logger = logging.getLogger("learnpath.telemetry")

KNOWN_EVENTS = frozenset(
    {
        "learner_enroll",
        "lesson_completion",
        "path_switch",
        "persistence_failure",
        "progress_snapshot",
        "schedule_generation",
        "schedule_replace",
    }
)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> Callable[[], None]:
    """Register an in-process listener and return a callback that removes it."""
    with _lock:
        _listeners.append(listener)

    def _unregister() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return _unregister


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


@contextmanager
def capture_events(*names: str) -> Iterator[List[TelemetryEvent]]:
    """Collect events emitted inside the block, optionally only ``names``."""
    captured: List[TelemetryEvent] = []

    def _collect(event: TelemetryEvent) -> None:
        if not names or event.name in names:
            captured.append(event)

    unregister = register_listener(_collect)
    try:
        yield captured
    finally:
        unregister()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    if name not in KNOWN_EVENTS:
        logger.debug("Emitting unregistered telemetry event %s", name)
    event = TelemetryEvent(name=name, payload={key: _to_primitive(value) for key, value in fields.items()})

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))
    return event


def _to_primitive(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _to_primitive(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_to_primitive(item) for item in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_to_primitive(item) for item in value]
    return value


__all__ = [
    "KNOWN_EVENTS",
    "TelemetryEvent",
    "capture_events",
    "clear_listeners",
    "emit_event",
    "register_listener",
]

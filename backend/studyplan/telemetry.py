"""Telemetry for planner operations.

Events are plain ``(name, payload)`` pairs. Every event is logged as a single
``TELEMETRY {...}`` JSON line on the ``studyplan.telemetry`` logger and handed
to the in-process listeners, which is how the tests observe them.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List

logger = logging.getLogger("studyplan.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> Callable[[], None]:
    """Register an in-process listener and return a callable that removes it."""
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


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload={key: _plain(value) for key, value in fields.items()})

    with _lock:
        listeners = list(_listeners)
    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str, sort_keys=True))
    return event


@contextmanager
def timed_event(name: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Time the enclosed block and emit ``name`` once it finishes.

    The yielded dict is merged into the payload, so callers can attach results
    (unit counts, backlog sizes) after the work is done. Failures are emitted
    with ``status="error"`` and re-raised.
    """
    extra: Dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield extra
    except Exception as exc:
        emit_event(
            name,
            **fields,
            **extra,
            status="error",
            duration_ms=_elapsed_ms(start),
            error=str(exc),
            exception_type=exc.__class__.__name__,
        )
        raise
    emit_event(name, **fields, **extra, status="success", duration_ms=_elapsed_ms(start))


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


__all__ = [
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "timed_event",
]

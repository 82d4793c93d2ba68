"""In-process telemetry events and spans.

Handlers are attached to event names (tuples such as
``("car_req", "request", "stop")``) and receive
``(event_name, measurements, metadata, config)``. A handler that raises is
logged and detached so that it cannot break the request it observes.

Usage:
    >>> def handle(event, measurements, metadata, config):
    ...     print(event, measurements["duration"], metadata["step_name"])
    >>> attach("printer", [STEP_STOP], handle)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Mapping, Tuple, TypeVar

logger = logging.getLogger(__name__)

EventName = Tuple[str, ...]
Handler = Callable[[EventName, Mapping[str, Any], Mapping[str, Any], Any], None]
T = TypeVar("T")

REQUEST_EVENT: EventName = ("car_req", "request")
STEP_EVENT: EventName = ("car_req", "step")
REQUEST_START = REQUEST_EVENT + ("start",)
REQUEST_STOP = REQUEST_EVENT + ("stop",)
REQUEST_EXCEPTION = REQUEST_EVENT + ("exception",)
STEP_START = STEP_EVENT + ("start",)
STEP_STOP = STEP_EVENT + ("stop",)
STEP_EXCEPTION = STEP_EVENT + ("exception",)

_handlers: dict[str, tuple[frozenset[EventName], Handler, Any]] = {}
_lock = threading.Lock()


def attach(handler_id: str, event_names: Iterable[EventName], handler: Handler, config: Any = None) -> None:
    """Attach ``handler`` to ``event_names`` under a unique ``handler_id``."""
    with _lock:
        if handler_id in _handlers:
            raise ValueError(f"telemetry handler {handler_id!r} is already attached")
        _handlers[handler_id] = (frozenset(tuple(name) for name in event_names), handler, config)


def detach(handler_id: str) -> bool:
    with _lock:
        return _handlers.pop(handler_id, None) is not None


def execute(event_name: EventName, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
    """Deliver one event to every handler attached to ``event_name``."""
    with _lock:
        targets = [
            (handler_id, handler, config)
            for handler_id, (names, handler, config) in _handlers.items()
            if event_name in names
        ]
    for handler_id, handler, config in targets:
        try:
            handler(event_name, measurements, metadata, config)
        except Exception:
            logger.exception("telemetry handler %r failed on %s and was detached", handler_id, event_name)
            detach(handler_id)


def span(prefix: EventName, start_metadata: Mapping[str, Any], func: Callable[[], tuple[T, Mapping[str, Any]]]) -> T:
    """Run ``func`` between ``prefix + start`` and ``prefix + stop`` events.

    ``func`` returns ``(result, stop_metadata)``. If it raises, a
    ``prefix + exception`` event is emitted and the exception propagates.
    Durations are reported in nanoseconds.
    """
    started = time.perf_counter_ns()
    execute(prefix + ("start",), {"monotonic_time": time.monotonic_ns(), "system_time": time.time_ns()}, start_metadata)
    try:
        result, stop_metadata = func()
    except Exception as exc:
        duration = time.perf_counter_ns() - started
        execute(
            prefix + ("exception",),
            {"duration": duration},
            {**start_metadata, "kind": type(exc).__name__, "reason": exc},
        )
        raise
    duration = time.perf_counter_ns() - started
    execute(prefix + ("stop",), {"duration": duration}, stop_metadata)
    return result


__all__ = [
    "REQUEST_EVENT",
    "REQUEST_EXCEPTION",
    "REQUEST_START",
    "REQUEST_STOP",
    "STEP_EVENT",
    "STEP_EXCEPTION",
    "STEP_START",
    "STEP_STOP",
    "attach",
    "detach",
    "execute",
    "span",
]

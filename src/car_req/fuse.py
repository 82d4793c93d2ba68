"""Circuit breaker ("fuse") step built on pybreaker.

Breakers live in a process-local registry keyed by name. There is no
global breaker state: two processes may disagree depending on the traffic
each one saw.

``fuse_opts`` has the shape ``(("standard", max_melts, window_ms),
("reset", reset_ms))``. A breaker blows once more than ``max_melts``
failures ("melts") land within ``window_ms``; it stays open for
``reset_ms``, after which the next call is let through as a trial. Explicit
opt-out is ``fuse_opts="disabled"`` (see ``car_req.client.attach_circuit_breaker``).

Options:

- ``fuse_name``: breaker name, defaults to the profile identifier.
- ``fuse_opts``: trip and reset parameters, default
  ``(("standard", 10, 10_000), ("reset", 30_000))``. Only read when the
  breaker is first installed.
- ``fuse_melt_func``: one-argument function receiving the response or
  exception, returning whether it counts as a failure. Defaults to
  ``default_melt``.
- ``fuse_verbose``: log state changes (default True).
- ``fuse_mode``: ``"sync"`` or ``"async_dirty"``. Accepted for
  compatibility; breaker state is always read under the breaker's lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

import pybreaker

from .exceptions import CircuitOpenError
from .pipeline import Outcome, Request, Response

logger = logging.getLogger(__name__)

FUSE_OPTIONS = ("fuse_name", "fuse_opts", "fuse_verbose", "fuse_mode", "fuse_melt_func")
DEFAULT_FUSE_OPTS = (("standard", 10, 10_000), ("reset", 30_000))

# melt accounting is done by _MeltWindow, so pybreaker's consecutive counter never trips
_NEVER = 2**63 - 1


class _Melted(Exception):
    """Raised inside the breaker to record one failure."""


class _MeltWindow(pybreaker.CircuitBreakerListener):
    """Counts melts in a rolling window and tracks when the breaker blew."""

    def __init__(
        self,
        name: str,
        max_melts: int,
        window_ms: int,
        reset_ms: int,
        *,
        verbose: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_melts = max_melts
        self.window = window_ms / 1000
        self.reset = reset_ms / 1000
        self.verbose = verbose
        self.opened_at: float | None = None
        self._clock = clock
        self._melts: deque[float] = deque()

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        if cb.current_state != pybreaker.STATE_CLOSED:
            return
        now = self._clock()
        self._melts.append(now)
        while self._melts and now - self._melts[0] > self.window:
            self._melts.popleft()
        if len(self._melts) > self.max_melts:
            cb.open()

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        old = getattr(old_state, "name", old_state)
        new = getattr(new_state, "name", new_state)
        if new == pybreaker.STATE_OPEN:
            self.opened_at = self._clock()
        elif new == pybreaker.STATE_CLOSED:
            self.opened_at = None
            self._melts.clear()
        if not self.verbose:
            return
        if new == pybreaker.STATE_OPEN:
            logger.warning("fuse %s blown (%s -> %s)", self.name, old, new)
        else:
            logger.info("fuse %s %s -> %s", self.name, old, new)

    def blown(self) -> bool:
        opened_at = self.opened_at
        return opened_at is not None and self._clock() - opened_at < self.reset


@dataclass
class Fuse:
    name: str
    breaker: pybreaker.CircuitBreaker
    window: _MeltWindow

    def blown(self) -> bool:
        return self.window.blown()

    def record(self, failed: bool) -> None:
        """Record one call outcome. Ignored while the breaker is open."""

        def probe() -> None:
            if failed:
                raise _Melted()

        try:
            self.breaker.call(probe)
        except (_Melted, pybreaker.CircuitBreakerError):
            # _Melted is the failure being recorded; CircuitBreakerError means the fuse is already blown
            pass


_fuses: dict[str, Fuse] = {}
_lock = threading.Lock()


def install(name: str, fuse_opts: Any = None, *, verbose: bool | None = None) -> Fuse:
    """Return the breaker registered under ``name``, creating it on first use."""
    with _lock:
        fuse = _fuses.get(name)
        if fuse is not None:
            return fuse
        (_, max_melts, window_ms), (_, reset_ms) = fuse_opts or DEFAULT_FUSE_OPTS
        window = _MeltWindow(name, max_melts, window_ms, reset_ms, verbose=verbose is not False)
        breaker = pybreaker.CircuitBreaker(
            fail_max=_NEVER,
            reset_timeout=reset_ms / 1000,
            listeners=[window],
            name=name,
        )
        fuse = _fuses[name] = Fuse(name=name, breaker=breaker, window=window)
        return fuse


def ask(name: str) -> str | None:
    """``"ok"``, ``"blown"``, or None when no breaker is installed under ``name``."""
    fuse = _fuses.get(name)
    if fuse is None:
        return None
    return "blown" if fuse.blown() else "ok"


def melt(name: str) -> None:
    fuse = _fuses.get(name)
    if fuse is not None:
        fuse.record(failed=True)


def reset(name: str) -> None:
    fuse = _fuses.get(name)
    if fuse is not None:
        fuse.breaker.close()


def remove(name: str) -> bool:
    with _lock:
        return _fuses.pop(name, None) is not None


def default_melt(outcome: Outcome) -> bool:
    """Server errors and exceptions count as failures."""
    if isinstance(outcome, Response):
        return outcome.status >= 500
    return isinstance(outcome, BaseException)


def attach(request: Request, options: dict[str, Any]) -> Request:
    """Register the fuse options, merge the ones in ``options`` and attach the steps."""
    fuse_options = {key: options[key] for key in FUSE_OPTIONS if key in options}
    return (
        request.register_options(*FUSE_OPTIONS)
        .merge_options(fuse_options)
        .prepend_request_steps(fuse=check_fuse)
        .prepend_response_steps(fuse=melt_fuse)
        .prepend_error_steps(fuse=melt_fuse)
    )


def _fuse_for(request: Request) -> Fuse:
    options = request.options
    name = options.get("fuse_name") or options.get("implementing_module")
    return install(str(name), options.get("fuse_opts"), verbose=options.get("fuse_verbose"))


def check_fuse(request: Request) -> Request | tuple[Request, Outcome]:
    fuse = _fuse_for(request)
    if fuse.blown():
        return request.halt(), CircuitOpenError(key=fuse.name)
    return request


def melt_fuse(pair: tuple[Request, Outcome]) -> tuple[Request, Outcome]:
    request, outcome = pair
    melt_func = request.options.get("fuse_melt_func") or default_melt
    _fuse_for(request).record(failed=bool(melt_func(outcome)))
    return pair

"""Request/response values and the named step pipeline that runs them.

A ``Request`` carries its own ordered steps:

- request steps take a ``Request`` and return a ``Request``, or a
  ``(request, response_or_exception)`` pair to skip the remaining request
  steps and the adapter;
- the adapter takes the ``Request`` and returns a
  ``(request, response_or_exception)`` pair;
- response steps (adapter returned a ``Response``) and error steps (adapter
  returned an exception) take the pair and return a pair.

A step may ``halt()`` the request to skip everything that follows. Steps
return new values via ``dataclasses.replace``; they never modify a request or
response in place. Every step runs inside a telemetry span.
"""

from __future__ import annotations

import json as _json
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping, Tuple, Union

import httpx

from . import telemetry
from .exceptions import CarReqValidationError

Step = Tuple[str, Callable[..., Any]]
Outcome = Union["Response", Exception]

# options stored as Request attributes rather than in Request.options
REQUEST_FIELDS = frozenset({"method", "url", "headers", "params", "body", "adapter"})

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class Response:
    status: int = 200
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Any = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @classmethod
    def from_json(cls, data: Any, *, status: int = 200) -> "Response":
        return cls(
            status=status,
            headers=httpx.Headers({"content-type": "application/json"}),
            body=_json.dumps(data).encode(),
        )

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()


@dataclass(frozen=True)
class Request:
    method: str = "GET"
    url: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    params: Any = None
    body: str | bytes | None = None
    adapter: Callable[["Request"], tuple["Request", Outcome]] | None = None
    options: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    registered_options: frozenset[str] = REQUEST_FIELDS
    request_steps: tuple[Step, ...] = ()
    response_steps: tuple[Step, ...] = ()
    error_steps: tuple[Step, ...] = ()
    halted: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers))

    def register_options(self, *names: str) -> "Request":
        return replace(self, registered_options=self.registered_options | frozenset(names))

    def merge_options(self, options: Mapping[str, Any]) -> "Request":
        """Return a request with ``options`` applied over the current ones.

        Every key must have been registered by the request or one of its
        attached steps.
        """
        unknown = [key for key in options if key not in self.registered_options]
        if unknown:
            raise CarReqValidationError(f"unknown option {unknown[0]!r}", key=unknown[0])

        changes: dict[str, Any] = {}
        merged = dict(self.options)
        for key, value in options.items():
            if key == "headers":
                headers = httpx.Headers(self.headers)
                headers.update(httpx.Headers(value or {}))
                changes["headers"] = headers
            elif key == "method":
                changes["method"] = str(value).upper()
            elif key == "url":
                changes["url"] = str(value)
            elif key in REQUEST_FIELDS:
                changes[key] = value
            else:
                merged[key] = value
        return replace(self, options=MappingProxyType(merged), **changes)

    def put_option(self, key: str, value: Any) -> "Request":
        return replace(self, options=MappingProxyType({**self.options, key: value}))

    def append_request_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, request_steps=self.request_steps + tuple(steps.items()))

    def prepend_request_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, request_steps=tuple(steps.items()) + self.request_steps)

    def append_response_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, response_steps=self.response_steps + tuple(steps.items()))

    def prepend_response_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, response_steps=tuple(steps.items()) + self.response_steps)

    def append_error_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, error_steps=self.error_steps + tuple(steps.items()))

    def prepend_error_steps(self, **steps: Callable[..., Any]) -> "Request":
        return replace(self, error_steps=tuple(steps.items()) + self.error_steps)

    def halt(self) -> "Request":
        return replace(self, halted=True)

    @property
    def step_names(self) -> dict[str, list[str]]:
        return {
            "request": [name for name, _ in self.request_steps],
            "response": [name for name, _ in self.response_steps],
            "error": [name for name, _ in self.error_steps],
        }


def run_step(name: str, phase: str, step: Callable[..., Any], argument: Any) -> Any:
    metadata = {"step_name": name, "step_phase": phase}
    return telemetry.span(telemetry.STEP_EVENT, metadata, lambda: (step(argument), metadata))


def run(request: Request) -> tuple[Request, Outcome]:
    """Run all of ``request``'s steps and its adapter, returning the final pair."""
    outcome: Outcome | None = None
    for name, step in request.request_steps:
        result = run_step(name, "request", step, request)
        if isinstance(result, Request):
            request = result
        else:
            request, outcome = result
            break
        if request.halted:
            break

    if request.halted:
        if outcome is None:
            raise RuntimeError("a request step halted without providing a response or exception")
        return request, outcome

    if outcome is None:
        if request.adapter is None:
            raise RuntimeError("request has no adapter to run")
        request, outcome = run_step("transport", "request", request.adapter, request)

    return run_response(request, outcome)


def run_response(request: Request, outcome: Outcome) -> tuple[Request, Outcome]:
    if isinstance(outcome, Response):
        phase, steps = "response", request.response_steps
    else:
        phase, steps = "error", request.error_steps
    for name, step in steps:
        request, outcome = run_step(name, phase, step, (request, outcome))
        if request.halted:
            break
    return request, outcome

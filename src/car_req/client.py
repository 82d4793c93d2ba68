"""HTTP client profiles.

A profile is a subclass of ``CarReq``. Class keyword arguments are the
definition-time options and are validated when the class statement runs::

    class Cars(CarReq, base_url="https://www.cars.com/", receive_timeout=999):
        pass

    class Inventory(
        CarReq,
        pool_timeout=100,
        retry="safe",
        max_retries=3,
        fuse_opts=(("standard", 5, 10_000), ("reset", 30_000)),
    ):
        @classmethod
        def dynamic_options(cls):
            # evaluated on every call, for values only known at runtime
            return {"base_url": os.environ["INVENTORY_URL"]}

    result = Cars.request(method="GET", url="/listings", params={"page": 1})
    if result.ok:
        print(result.response.status)

Per-call options override dynamic options, which override definition
options, which override the schema defaults. The circuit breaker is on by
default (opt out with ``fuse_opts="disabled"``); the logging step is on by
default (opt out with ``log_function="none"``).

Every call is wrapped in a ``("car_req", "request")`` telemetry span and each
step in a ``("car_req", "step")`` span; see ``car_req.telemetry``.
"""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, ClassVar, Mapping

import httpx

from . import fuse, log_step, pipeline, retry, steps, telemetry
from .exceptions import CarReqRequestError
from .options import resolve_options, validate_options
from .pipeline import Request, Response

INSTRUMENTATION_OPTIONS = ("telemetry_service_name", "implementing_module")


class ErrorReason(str, enum.Enum):
    POOL_TIMEOUT = "pool_timeout"
    JSON_DECODE_ERROR = "json_decode_error"


@dataclass(frozen=True)
class Result:
    """Outcome of ``CarReq.request``: a response, or the reason there is none.

    ``reason`` is an ``ErrorReason``, the exception the adapter returned (for
    example ``CircuitOpenError`` or an ``httpx.TransportError``), or the
    ``repr`` of an unexpected exception.
    """

    response: Response | None = None
    reason: Any = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def unwrap(self) -> Response:
        if self.reason is not None:
            raise CarReqRequestError(f"request failed: {self.reason}", reason=self.reason)
        if self.response is None:
            raise CarReqRequestError("request failed: no response")
        return self.response


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _underscore(segment: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", segment).lower()


def build_service_name(identifier: str, options: Mapping[str, Any]) -> str:
    """Telemetry service name for a profile.

    ``telemetry_service_name`` wins when given. Otherwise the dotted
    identifier is snake-cased and joined with underscores, keeping only
    what follows ``external_`` when present:
    ``engine.external.Wordpress.DefaultAdapter`` -> ``wordpress_default_adapter``.
    """
    explicit = options.get("telemetry_service_name")
    if explicit:
        return explicit
    segments = [s for s in identifier.split(".") if s and s != "<locals>"]
    name = "_".join(_underscore(s) for s in segments)
    _, found, after = name.partition("external_")
    return after if found else name


def attach_circuit_breaker(request: Request, options: Mapping[str, Any], request_options: Mapping[str, Any]) -> Request:
    """Attach the fuse step unless ``fuse_opts="disabled"`` at either layer.

    When disabled, the fuse option names are still registered so passing
    them is not an error, but nothing is gated or recorded.
    """
    if options.get("fuse_opts") == "disabled" or request_options.get("fuse_opts") == "disabled":
        return request.register_options(*fuse.FUSE_OPTIONS)
    options = dict(options)
    options.setdefault("fuse_name", options.get("implementing_module"))
    return fuse.attach(request, options)


class CarReq:
    """Base class for HTTP client profiles."""

    options: ClassVar[Mapping[str, Any]] = MappingProxyType({})
    identifier: ClassVar[str] = "car_req.CarReq"
    service_name: ClassVar[str] = "car_req"

    def __init_subclass__(cls, **options: Any) -> None:
        super().__init_subclass__()
        merged = {**cls.options, **validate_options(options)}
        cls.options = MappingProxyType(merged)
        cls.identifier = f"{cls.__module__}.{cls.__qualname__}"
        cls.service_name = build_service_name(cls.identifier, merged)

    @classmethod
    def dynamic_options(cls) -> Mapping[str, Any]:
        """Options evaluated at call time. Override for runtime-only values."""
        return {}

    @classmethod
    def client(cls, **request_options: Any) -> Request:
        """Build the request for ``request_options`` without running it.

        Steps are attached in order (core steps, logging, circuit breaker)
        before the resolved options are applied.
        """
        dynamic = cls.dynamic_options()
        resolved = resolve_options(cls.options, dynamic, request_options)
        definition = {**cls.options, **dynamic, "implementing_module": cls.identifier}

        request = steps.attach(Request()).register_options(*INSTRUMENTATION_OPTIONS)
        request = log_step.attach(request)
        request = attach_circuit_breaker(request, definition, request_options)
        # resolved already folds definition, dynamic and call options, in that order
        request = request.merge_options({**resolved, "implementing_module": cls.identifier})
        return retry.attach(request)

    @classmethod
    def request(cls, **request_options: Any) -> Result:
        """Make an HTTP request, returning a ``Result``.

        Common options: ``method``, ``url`` (absolute, or relative to
        ``base_url``), ``params``, ``headers``, ``body``, ``json``, and
        ``adapter`` (a one-argument function replacing the transport, for
        tests). Any profile option may be overridden for this call.

        Raises ``CarReqValidationError`` for unknown or malformed options;
        every other failure is returned in ``Result.reason``.
        """
        metadata = {
            "telemetry_service_name": request_options.get("telemetry_service_name", cls.service_name),
            "url": request_options.get("url"),
            "method": request_options.get("method"),
            "query_params": request_options.get("params"),
        }
        client = cls.client(**request_options)

        def perform() -> tuple[Result, Mapping[str, Any]]:
            try:
                _, outcome = pipeline.run(client)
            except json.JSONDecodeError:
                return _failure(ErrorReason.JSON_DECODE_ERROR, metadata)
            except httpx.PoolTimeout:
                return _failure(ErrorReason.POOL_TIMEOUT, metadata)
            except Exception as exc:
                return _failure(repr(exc), metadata)
            if isinstance(outcome, httpx.PoolTimeout):
                return _failure(ErrorReason.POOL_TIMEOUT, metadata)
            if isinstance(outcome, Exception):
                return _failure(outcome, metadata)
            return Result(response=outcome), {**metadata, "status_code": outcome.status}

        # the stop event carries the status code or the failure reason
        return telemetry.span(telemetry.REQUEST_EVENT, metadata, perform)


def _failure(reason: Any, metadata: Mapping[str, Any]) -> tuple[Result, Mapping[str, Any]]:
    return Result(reason=reason), {**metadata, "reason": reason}

"""Configured, instrumented HTTP client profiles on top of httpx."""

from .client import CarReq, ErrorReason, Result, attach_circuit_breaker, build_service_name
from .exceptions import (
    CarReqError,
    CarReqRequestError,
    CarReqValidationError,
    CircuitOpenError,
    UnknownPoolError,
)
from .options import resolve_options, validate_options
from .pipeline import Request, Response

__version__ = "0.1.0"

__all__ = [
    "CarReq",
    "CarReqError",
    "CarReqRequestError",
    "CarReqValidationError",
    "CircuitOpenError",
    "ErrorReason",
    "Request",
    "Response",
    "Result",
    "UnknownPoolError",
    "attach_circuit_breaker",
    "build_service_name",
    "resolve_options",
    "validate_options",
]

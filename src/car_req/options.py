"""Option schema and the three-layer option resolver."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Literal, Mapping, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import CarReqValidationError

DEFAULT_POOL_TIMEOUT = 500
DEFAULT_RECEIVE_TIMEOUT = 1000

Timeout = Union[Literal["infinity"], int]


def accepts_one_argument(func: Callable[..., Any]) -> bool:
    """Return True when ``func`` can be called with exactly one positional argument."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        # builtins and C callables without introspectable signatures
        return True
    try:
        signature.bind(None)
    except TypeError:
        return False
    return True


def is_fuse_opts(value: Any) -> bool:
    if not isinstance(value, tuple) or len(value) != 2:
        return False
    strategy, refresh = value
    if not (isinstance(strategy, tuple) and len(strategy) == 3 and strategy[0] == "standard"):
        return False
    if not (isinstance(refresh, tuple) and len(refresh) == 2 and refresh[0] == "reset"):
        return False
    _, max_melts, window = strategy
    _, reset = refresh
    return all(isinstance(n, int) and not isinstance(n, bool) and n >= 0 for n in (max_melts, window, reset))


class ClientOptions(BaseModel):
    """Options accepted when declaring a profile and by the dynamic options callback."""

    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        frozen=True,
        arbitrary_types_allowed=True,
    )

    base_url: str | httpx.URL | None = None
    telemetry_service_name: str | None = None
    pool: str | None = None
    pool_timeout: Timeout = DEFAULT_POOL_TIMEOUT
    receive_timeout: Timeout = DEFAULT_RECEIVE_TIMEOUT
    decode_body: bool = True
    raw: bool = False
    retry: Literal["safe", False] | Callable[[Any], bool] = False
    retry_delay: int | Callable[[int], int] | None = None
    max_retries: int | None = Field(default=None, ge=0)
    log_function: Literal["none"] | Callable[[Any], Any] | None = None
    fuse_name: str | None = None
    fuse_opts: Any = None
    fuse_verbose: bool | None = None
    fuse_mode: Literal["sync", "async_dirty"] | None = None
    fuse_melt_func: Callable[[Any], bool] | None = None

    @field_validator("pool_timeout", "receive_timeout", "retry_delay")
    @classmethod
    def _non_negative(cls, value: Any) -> Any:
        if isinstance(value, int) and value < 0:
            raise ValueError("expected a non-negative integer (milliseconds)")
        return value

    @field_validator("retry", "retry_delay", "log_function", "fuse_melt_func")
    @classmethod
    def _arity_one(cls, value: Any) -> Any:
        if callable(value) and not accepts_one_argument(value):
            raise ValueError("expected a function that takes exactly one argument")
        return value

    @field_validator("fuse_opts")
    @classmethod
    def _fuse_opts_shape(cls, value: Any) -> Any:
        if value is None or value == "disabled" or is_fuse_opts(value):
            return value
        raise ValueError(
            "expected 'disabled' or a (strategy, refresh) tuple such as "
            "(('standard', 5, 10_000), ('reset', 30_000))"
        )


class RequestOptions(ClientOptions):
    """Per-call options: every profile option plus the request itself."""

    method: str | None = None
    url: str | httpx.URL | None = None
    params: Any = None
    headers: Any = None
    body: str | bytes | None = None
    # aliased: BaseModel already defines a json attribute
    json_: Any = Field(default=None, alias="json")
    adapter: Callable[[Any], Any] | None = None

    @field_validator("adapter")
    @classmethod
    def _adapter_arity(cls, value: Any) -> Any:
        if value is not None and not accepts_one_argument(value):
            raise ValueError("expected a function that takes exactly one argument")
        return value


def _translate(error: ValidationError) -> CarReqValidationError:
    errors = error.errors()
    first = errors[0]
    key = str(first["loc"][0]) if first["loc"] else None
    if first["type"] == "extra_forbidden":
        explanation = f"unknown option {key!r}"
    else:
        messages = [e["msg"] for e in errors if e["loc"][:1] == first["loc"][:1]]
        explanation = "; ".join(dict.fromkeys(messages))
    return CarReqValidationError(explanation, key=key, cause=error)


def _defaults() -> dict[str, Any]:
    return {
        name: field.default
        for name, field in RequestOptions.model_fields.items()
        if field.default is not None
    }


def _validate(model: type[ClientOptions], options: Mapping[str, Any]) -> ClientOptions:
    if not isinstance(options, Mapping):
        raise CarReqValidationError(f"expected a mapping of options, got {type(options).__name__}")
    try:
        return model.model_validate(dict(options))
    except ValidationError as exc:
        raise _translate(exc) from exc


def validate_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """Validate profile options, returning only the keys that were given."""
    _validate(ClientOptions, options)
    return dict(options)


def validate_request_options(options: Mapping[str, Any]) -> dict[str, Any]:
    _validate(RequestOptions, options)
    return dict(options)


def resolve_options(
    definition: Mapping[str, Any],
    dynamic: Mapping[str, Any] | None = None,
    call: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Fold the option layers left to right and apply schema defaults.

    Precedence is ``call`` > ``dynamic`` > ``definition`` > defaults. Each layer
    is validated on its own so that errors name the layer's offending key, then
    the merged set is validated once more. Options that are neither given nor
    defaulted are left out of the result. None of the inputs are mutated.
    """
    layers = (
        validate_options(definition),
        validate_options(dynamic or {}),
        validate_request_options(call or {}),
    )
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    _validate(RequestOptions, merged)
    resolved = dict(_defaults())
    resolved.update((key, value) for key, value in merged.items() if value is not None)
    return resolved

"""car_req exceptions."""

from __future__ import annotations


class CarReqError(Exception):
    """Base exception for all car_req failures."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        reason: object = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.reason = reason
        self.cause = cause

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.key is None:
            return str(self.args[0])
        return f"{self.key}: {self.args[0]}"


class CarReqValidationError(CarReqError):
    """Raised when options are unknown or malformed.

    ``key`` names the offending option and ``explanation`` says what was
    wrong with it. Raised before any network activity.
    """

    def __init__(
        self,
        explanation: str,
        *,
        key: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(explanation, key=key, cause=cause)
        self.explanation = explanation


class CircuitOpenError(CarReqError):
    """Returned as the error reason when a circuit breaker is open."""

    def __init__(self, message: str = "circuit breaker is open", *, key: str | None = None) -> None:
        super().__init__(message, key=key)

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return str(self.args[0])


class UnknownPoolError(CarReqError):
    """Raised when a request names a connection pool that was never started."""


class CarReqRequestError(CarReqError):
    """Raised by ``Result.unwrap()`` for unsuccessful requests."""

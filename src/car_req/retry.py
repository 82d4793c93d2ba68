"""Retry policy around the adapter, built on Tenacity.

Options:

- ``retry``: ``False`` (default, no retries), ``"safe"`` (GET/HEAD requests
  that returned a transient status or a transport exception), or a
  one-argument function receiving the response or exception and returning
  whether to retry.
- ``retry_delay``: milliseconds, or a one-argument function of the retry
  count (0 for the first retry) returning milliseconds. Defaults to
  exponential backoff: 1000, 2000, 4000 ms, ...
- ``max_retries``: defaults to 3.

Each retry is logged at WARNING level.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from typing import Any, Callable, Mapping

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential, wait_fixed

from .adapter import Adapter, httpx_adapter
from .pipeline import Outcome, Request, Response

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
SAFE_METHODS = frozenset({"GET", "HEAD"})
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def attach(request: Request) -> Request:
    """Resolve the adapter and wrap it in the retry policy when one is set."""
    adapter = request.adapter or httpx_adapter
    if request.options.get("retry", False) is False:
        return replace(request, adapter=adapter)
    return replace(request, adapter=functools.partial(run_with_retry, adapter))


def should_retry(policy: Any, pair: tuple[Request, Outcome]) -> bool:
    request, outcome = pair
    if policy is False or policy is None:
        return False
    if policy == "safe":
        if request.method not in SAFE_METHODS:
            return False
        if isinstance(outcome, Response):
            return outcome.status in TRANSIENT_STATUSES
        return True
    return bool(policy(outcome))


class _RetryDelay:
    """Tenacity wait strategy for the ``retry_delay`` option."""

    def __init__(self, delay: int | Callable[[int], int] | None) -> None:
        if delay is None:
            self._wait: Callable[[RetryCallState], float] = wait_exponential(multiplier=1, min=0)
        elif callable(delay):
            self._wait = lambda state: delay(state.attempt_number - 1) / 1000
        else:
            self._wait = wait_fixed(delay / 1000)

    def __call__(self, retry_state: RetryCallState) -> float:
        return float(self._wait(retry_state))


def _log_retry(max_retries: int) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        _, outcome = retry_state.outcome.result()
        delay_ms = round(retry_state.next_action.sleep * 1000)
        left = max_retries - retry_state.attempt_number + 1
        attempts = "attempt" if left == 1 else "attempts"
        if isinstance(outcome, Response):
            logger.warning(
                "retry: got response with status %s, will retry in %sms, %s %s left",
                outcome.status,
                delay_ms,
                left,
                attempts,
            )
        else:
            logger.warning(
                "retry: got exception, will retry in %sms, %s %s left",
                delay_ms,
                left,
                attempts,
            )
            logger.warning("retry: %r", outcome)

    return before_sleep


def build_retrying(options: Mapping[str, Any]) -> Retrying:
    policy = options.get("retry", False)
    max_retries = options.get("max_retries")
    if max_retries is None:
        max_retries = DEFAULT_MAX_RETRIES
    return Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=_RetryDelay(options.get("retry_delay")),
        retry=retry_if_result(functools.partial(should_retry, policy)),
        before_sleep=_log_retry(max_retries),
        # out of attempts: hand back the last response or exception
        retry_error_callback=lambda state: state.outcome.result(),
        reraise=True,
    )


def run_with_retry(adapter: Adapter, request: Request) -> tuple[Request, Outcome]:
    return build_retrying(request.options)(adapter, request)

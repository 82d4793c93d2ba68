from __future__ import annotations

import httpx
import pytest
from tenacity import RetryCallState

from car_req import Request, Response, adapter, retry


def _state(attempt_number: int) -> RetryCallState:
    state = RetryCallState(None, None, (), {})
    state.attempt_number = attempt_number
    return state


@pytest.mark.parametrize(
    ("method", "outcome", "expected"),
    [
        ("GET", Response(status=503), True),
        ("HEAD", Response(status=429), True),
        ("GET", Response(status=404), False),
        ("GET", Response(status=200), False),
        ("GET", httpx.ReadTimeout("slow"), True),
        ("POST", Response(status=503), False),
        ("DELETE", httpx.ConnectError("refused"), False),
    ],
)
def test_safe_policy(method, outcome, expected) -> None:
    assert retry.should_retry("safe", (Request(method=method), outcome)) is expected


def test_disabled_and_custom_policies() -> None:
    pair = (Request(method="POST"), Response(status=409))
    assert retry.should_retry(False, pair) is False
    assert retry.should_retry(lambda outcome: outcome.status == 409, pair) is True


def test_default_delay_is_exponential() -> None:
    wait = retry._RetryDelay(None)
    assert [wait(_state(n)) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_fixed_and_computed_delays_are_milliseconds() -> None:
    assert retry._RetryDelay(250)(_state(3)) == 0.25
    assert retry._RetryDelay(lambda count: (count + 1) * 100)(_state(2)) == 0.2


def test_attach_defaults_to_the_httpx_adapter() -> None:
    assert retry.attach(Request()).adapter is adapter.httpx_adapter
    assert retry.attach(Request(adapter=adapter.success_204)).adapter is adapter.success_204


def test_attach_wraps_the_adapter_when_retrying() -> None:
    request = retry.attach(Request(adapter=adapter.success_204).put_option("retry", "safe"))

    assert request.adapter is not adapter.success_204
    _, response = request.adapter(request)
    assert response.status == 204


def test_exhausted_retries_return_the_last_outcome() -> None:
    request = (
        Request(adapter=adapter.closed)
        .put_option("retry", "safe")
        .put_option("retry_delay", 0)
        .put_option("max_retries", 1)
    )
    _, outcome = retry.run_with_retry(adapter.closed, request)
    assert isinstance(outcome, httpx.ConnectError)

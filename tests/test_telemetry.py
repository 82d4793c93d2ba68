from __future__ import annotations

import logging

import httpx
import pytest

from car_req import CarReq, CarReqValidationError, ErrorReason, Request, adapter, build_service_name, telemetry


class TelemetryClient(CarReq, base_url="https://www.cars.com/"):
    pass


class NamedClient(CarReq, telemetry_service_name="inventory_api"):
    pass


def _named(events, suffix):
    return [e for e in events if e[0][-1] == suffix]


def test_request_span_reports_start_and_stop(events) -> None:
    TelemetryClient.request(method="GET", url="/listings", params={"page": 1}, adapter=adapter.success)

    request_events = [e for e in events if e[0][:2] == telemetry.REQUEST_EVENT]
    assert [e[0] for e in request_events] == [telemetry.REQUEST_START, telemetry.REQUEST_STOP]

    _, start_measurements, start_metadata = request_events[0]
    assert start_metadata == {
        "telemetry_service_name": TelemetryClient.service_name,
        "url": "/listings",
        "method": "GET",
        "query_params": {"page": 1},
    }
    assert start_measurements["monotonic_time"] > 0
    assert start_measurements["system_time"] > 0

    _, stop_measurements, stop_metadata = request_events[1]
    assert stop_metadata["status_code"] == 200
    assert "reason" not in stop_metadata
    assert stop_measurements["duration"] >= 0


def test_request_stop_carries_the_failure_reason(events) -> None:
    def pool_exhausted(request: Request):
        return request, httpx.PoolTimeout("no connection available")

    TelemetryClient.request(method="GET", url="/", adapter=pool_exhausted)

    _, _, stop_metadata = [e for e in events if e[0] == telemetry.REQUEST_STOP][0]
    assert stop_metadata["reason"] is ErrorReason.POOL_TIMEOUT
    assert "status_code" not in stop_metadata


def test_every_step_gets_a_span(events) -> None:
    TelemetryClient.request(method="GET", url="/", adapter=adapter.success)

    stops = [(e[2]["step_name"], e[2]["step_phase"]) for e in events if e[0] == telemetry.STEP_STOP]
    assert stops == [
        ("fuse", "request"),
        ("put_user_agent", "request"),
        ("encode_body", "request"),
        ("put_base_url", "request"),
        ("transport", "request"),
        ("fuse", "response"),
        ("decode_body", "response"),
        ("log_function", "response"),
    ]
    assert len(_named(events, "start")) == len(_named(events, "stop"))


def test_error_steps_are_reported_in_the_error_phase(events) -> None:
    TelemetryClient.request(method="GET", url="/", adapter=adapter.closed)

    phases = [(e[2]["step_name"], e[2]["step_phase"]) for e in events if e[0] == telemetry.STEP_STOP]
    assert phases[-2:] == [("transport", "request"), ("fuse", "error")]


def test_raising_step_emits_an_exception_event(events) -> None:
    def explode(request: Request):
        raise RuntimeError("kaboom")

    result = TelemetryClient.request(method="GET", url="/", adapter=explode)

    exceptions = [e for e in events if e[0] == telemetry.STEP_EXCEPTION]
    assert len(exceptions) == 1
    _, measurements, metadata = exceptions[0]
    assert metadata["step_name"] == "transport"
    assert metadata["kind"] == "RuntimeError"
    assert str(metadata["reason"]) == "kaboom"
    assert measurements["duration"] >= 0
    assert result.reason == "RuntimeError('kaboom')"
    assert [e[0] for e in events if e[0][:2] == telemetry.REQUEST_EVENT][-1] == telemetry.REQUEST_STOP


def test_validation_errors_raise_before_the_span(events) -> None:
    with pytest.raises(CarReqValidationError):
        TelemetryClient.request(method="GET", url="/", retry=True)
    assert events == []


def test_explicit_service_name_is_used(events) -> None:
    NamedClient.request(method="GET", url="https://www.cars.com/", adapter=adapter.success)
    TelemetryClient.request(method="GET", url="/", telemetry_service_name="per_call", adapter=adapter.success)

    names = [e[2]["telemetry_service_name"] for e in events if e[0] == telemetry.REQUEST_START]
    assert names == ["inventory_api", "per_call"]


def test_failing_handler_is_detached(caplog) -> None:
    def broken(event, measurements, metadata, config):
        raise ValueError("handler bug")

    telemetry.attach("broken-handler", [telemetry.REQUEST_START], broken)
    result = TelemetryClient.request(method="GET", url="/", adapter=adapter.success)

    assert result.ok
    assert not telemetry.detach("broken-handler")
    errors = [r for r in caplog.records if r.name == "car_req.telemetry" and r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "broken-handler" in errors[0].getMessage()


def test_handler_ids_are_unique() -> None:
    def noop(event, measurements, metadata, config):
        return None

    telemetry.attach("unique-handler", [telemetry.STEP_STOP], noop, config={"sink": "memory"})
    try:
        with pytest.raises(ValueError, match="already attached"):
            telemetry.attach("unique-handler", [telemetry.STEP_STOP], noop)
    finally:
        assert telemetry.detach("unique-handler")


def test_handlers_receive_their_config() -> None:
    received = []

    def handle(event, measurements, metadata, config):
        received.append(config)

    telemetry.attach("config-handler", [telemetry.REQUEST_STOP], handle, config={"sink": "memory"})
    try:
        TelemetryClient.request(method="GET", url="/", adapter=adapter.success)
    finally:
        telemetry.detach("config-handler")

    assert received == [{"sink": "memory"}]


@pytest.mark.parametrize(
    ("identifier", "expected"),
    [
        ("engine.external.Wordpress.DefaultAdapter", "wordpress_default_adapter"),
        ("my_app.clients.ExternalCarsAPI", "cars_api"),
        ("my_app.clients.CarsAPI", "my_app_clients_cars_api"),
        ("my_app.HTTPClient", "my_app_http_client"),
        ("tests.test_clients.<locals>.Inventory", "tests_test_clients_inventory"),
    ],
)
def test_build_service_name(identifier, expected) -> None:
    assert build_service_name(identifier, {}) == expected


def test_build_service_name_prefers_the_explicit_name() -> None:
    assert build_service_name("engine.external.Wordpress", {"telemetry_service_name": "wp"}) == "wp"
    assert NamedClient.service_name == "inventory_api"

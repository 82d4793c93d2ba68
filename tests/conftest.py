from __future__ import annotations

import itertools
from typing import Any

import pytest

from car_req import fuse, pools, telemetry

_handler_ids = itertools.count()


@pytest.fixture(autouse=True)
def _isolated_registries(monkeypatch):
    monkeypatch.setattr(fuse, "_fuses", {})
    yield
    pools.close_pools()


@pytest.fixture
def events():
    """Collect every car_req telemetry event emitted during the test."""
    received: list[tuple[tuple[str, ...], dict[str, Any], dict[str, Any]]] = []
    handler_id = f"test-handler-{next(_handler_ids)}"

    def handle(event, measurements, metadata, config) -> None:
        received.append((event, dict(measurements), dict(metadata)))

    telemetry.attach(
        handler_id,
        [
            telemetry.REQUEST_START,
            telemetry.REQUEST_STOP,
            telemetry.REQUEST_EXCEPTION,
            telemetry.STEP_START,
            telemetry.STEP_STOP,
            telemetry.STEP_EXCEPTION,
        ],
        handle,
    )
    yield received
    telemetry.detach(handler_id)

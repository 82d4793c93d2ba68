"""Adapters: the functions that perform (or fake) the HTTP exchange.

An adapter takes a ``Request`` and returns ``(request, response)`` or
``(request, exception)``. ``httpx_adapter`` is the default. The stub adapters
below can be passed as the ``adapter`` request option in tests::

    ExampleClient.request(method="GET", url="/", adapter=adapter.success)
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from . import pools
from .pipeline import Outcome, Request, Response


class Adapter(Protocol):
    def __call__(self, request: Request) -> tuple[Request, Outcome]: ...


def _seconds(milliseconds: Any) -> float | None:
    if milliseconds is None or milliseconds == "infinity":
        return None
    return milliseconds / 1000


def build_timeout(options: Any) -> httpx.Timeout:
    """``receive_timeout`` bounds connect/read/write, ``pool_timeout`` the pool checkout."""
    return httpx.Timeout(
        _seconds(options.get("receive_timeout")),
        pool=_seconds(options.get("pool_timeout")),
    )


def httpx_adapter(request: Request) -> tuple[Request, Outcome]:
    """Send ``request`` through its httpx pool.

    Transport failures (timeouts, including pool checkout timeouts, and
    network errors) are returned, not raised. With ``raw`` the body is left
    compressed.
    """
    client = pools.get_pool(request.options.get("pool"))
    http_request = client.build_request(
        request.method,
        request.url,
        params=request.params,
        headers=request.headers,
        content=request.body,
        timeout=build_timeout(request.options),
    )
    try:
        http_response = client.send(http_request, stream=True)
    except httpx.TransportError as exc:
        return request, exc
    try:
        if request.options.get("raw"):
            body = b"".join(http_response.iter_raw())
        else:
            body = http_response.read()
    except httpx.TransportError as exc:
        return request, exc
    finally:
        http_response.close()
    return request, Response(status=http_response.status_code, headers=http_response.headers, body=body)


def success(request: Request) -> tuple[Request, Outcome]:
    return request, Response(status=200)


def success_204(request: Request) -> tuple[Request, Outcome]:
    return request, Response(status=204)


def not_found(request: Request) -> tuple[Request, Outcome]:
    return request, Response(status=404)


def failed(request: Request) -> tuple[Request, Outcome]:
    return request, Response(status=500)


def closed(request: Request) -> tuple[Request, Outcome]:
    return request, httpx.ConnectError("connection closed")

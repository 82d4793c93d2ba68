"""Named httpx connection pools.

A profile selects a pool with the ``pool`` option. Without one, requests go
through a shared default pool created on first use.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx

from .exceptions import UnknownPoolError

logger = logging.getLogger(__name__)

DEFAULT_POOL = "car_req.default"
DEFAULT_MAX_CONNECTIONS = 50

_pools: dict[str, httpx.Client] = {}
_lock = threading.Lock()


def _new_client(
    *,
    max_connections: int = DEFAULT_MAX_CONNECTIONS,
    max_keepalive_connections: int | None = None,
    transport: httpx.BaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.Client:
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max_keepalive_connections,
    )
    client_kwargs.setdefault("trust_env", False)
    return httpx.Client(limits=limits, transport=transport, **client_kwargs)


def start_pool(name: str, **kwargs: Any) -> httpx.Client:
    """Create a pool registered under ``name``.

    ``kwargs`` are ``max_connections``, ``max_keepalive_connections``,
    ``transport`` and any other ``httpx.Client`` keyword.
    """
    client = _new_client(**kwargs)
    with _lock:
        if name in _pools:
            client.close()
            raise ValueError(f"pool {name!r} is already started")
        _pools[name] = client
    logger.debug("started pool %s", name)
    return client


def get_pool(name: str | None = None) -> httpx.Client:
    with _lock:
        if name is None:
            client = _pools.get(DEFAULT_POOL)
            if client is None:
                client = _pools[DEFAULT_POOL] = _new_client()
            return client
        try:
            return _pools[name]
        except KeyError:
            raise UnknownPoolError(f"unknown pool: {name}", key=name) from None


def stop_pool(name: str) -> bool:
    with _lock:
        client = _pools.pop(name, None)
    if client is None:
        return False
    client.close()
    return True


def close_pools() -> None:
    with _lock:
        clients = list(_pools.values())
        _pools.clear()
    for client in clients:
        client.close()

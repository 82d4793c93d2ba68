"""Logging step.

By default a WARNING is emitted for any response with a status above 499.

Logging is skipped with ``log_function="none"``. A custom one-argument
function replaces the default: it receives the ``(request, response)`` pair,
emits whatever it wants, and the step hands the same pair on::

    def emit(pair):
        request, response = pair
        if response.status == 412:
            logging.getLogger("my_app").warning("a WARN-able situation")
        return pair

    class ExampleClient(CarReq, log_function=emit):
        ...
"""

from __future__ import annotations

import logging
from typing import Any

from .pipeline import Outcome, Request

logger = logging.getLogger(__name__)

LOG_OPTIONS = ("log_function", "implementing_module")


def attach(request: Request) -> Request:
    return request.register_options(*LOG_OPTIONS).append_response_steps(log_function=log_function)


def log_function(pair: tuple[Request, Outcome]) -> tuple[Request, Outcome]:
    request, _ = pair
    custom = request.options.get("log_function")
    if custom is None:
        emit_log(pair)
    elif custom != "none":
        custom(pair)
    return pair


def emit_log(pair: tuple[Request, Outcome]) -> None:
    request, response = pair
    if response.status <= 499:
        return
    fields = {
        "module": request.options.get("implementing_module"),
        "status": response.status,
        "body": _loggable_body(response.body),
        "url": str(request.url),
    }
    message = "".join(f"{key}: {value!r}\n" for key, value in fields.items())
    logger.warning("CarReq request failed %s", message)


def _loggable_body(body: Any) -> str:
    if isinstance(body, str):
        return body
    return repr(body)

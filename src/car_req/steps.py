"""Default request and response steps."""

from __future__ import annotations

import codecs
import json
from dataclasses import replace
from typing import Any

import httpx

from .pipeline import Outcome, Request, Response

USER_AGENT = "car_req/0.1.0"

CORE_OPTIONS = (
    "base_url",
    "json",
    "pool",
    "pool_timeout",
    "receive_timeout",
    "decode_body",
    "raw",
    "retry",
    "retry_delay",
    "max_retries",
)


def attach(request: Request) -> Request:
    """Register the core options and attach the default steps."""
    return (
        request.register_options(*CORE_OPTIONS)
        .append_request_steps(
            put_user_agent=put_user_agent,
            encode_body=encode_body,
            put_base_url=put_base_url,
        )
        .append_response_steps(decode_body=decode_body)
    )


def put_user_agent(request: Request) -> Request:
    if "user-agent" in request.headers:
        return request
    headers = httpx.Headers(request.headers)
    headers["user-agent"] = USER_AGENT
    return replace(request, headers=headers)


def encode_body(request: Request) -> Request:
    payload = request.options.get("json")
    if payload is None:
        return request
    headers = httpx.Headers(request.headers)
    headers.setdefault("content-type", "application/json")
    return replace(request, body=json.dumps(payload).encode(), headers=headers)


def join_url(base_url: Any, url: str) -> str:
    """Append a relative ``url`` to ``base_url``, keeping the base path.

    Absolute URLs are returned unchanged.
    """
    if not base_url or "://" in url:
        return url
    base = str(base_url)
    if not url:
        return base
    return base.rstrip("/") + "/" + url.lstrip("/")


def put_base_url(request: Request) -> Request:
    base_url = request.options.get("base_url")
    if not base_url:
        return request
    return replace(request, url=join_url(base_url, request.url))


def decode_body(pair: tuple[Request, Outcome]) -> tuple[Request, Outcome]:
    """Decode JSON bodies and text bodies.

    Skipped when ``raw`` is set or ``decode_body`` is False. Invalid JSON,
    including a JSON body that is not valid UTF-8, raises
    ``json.JSONDecodeError``.
    """
    request, response = pair
    if not isinstance(response, Response):
        return pair
    if request.options.get("raw") or not request.options.get("decode_body", True):
        return pair
    body = response.body
    if not isinstance(body, (bytes, str)) or not body:
        return pair

    content_type = response.content_type
    if "json" in content_type:
        try:
            data = json.loads(body)
        except UnicodeDecodeError as exc:
            text = body.decode("utf-8", errors="replace")
            raise json.JSONDecodeError(f"body is not valid UTF-8 ({exc.reason})", text, exc.start) from exc
        return request, replace(response, body=data)
    if isinstance(body, bytes) and content_type.startswith("text/"):
        return request, replace(response, body=body.decode(_charset(content_type), errors="replace"))
    return pair


def _charset(content_type: str) -> str:
    for part in content_type.split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key == "charset" and value:
            charset = value.strip('"')
            try:
                codecs.lookup(charset)
            except LookupError:
                break
            return charset
    return "utf-8"

from __future__ import annotations

import asyncio
import json
import socket
from typing import Any

import structlog
import httpx

from narrator import __version__
from narrator.models.schemas import DeliveryResult, ErrorKind

logger = structlog.get_logger()

DEFAULT_USER_AGENT = f"ScreenNarrator-Webhook/{__version__}"

ACK_PLACEHOLDER = {"acknowledged": True}

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
    "name resolution",
)


def validate_url(url: str | None) -> httpx.URL | None:
    """Return the parsed URL if it is an absolute http(s) URL, else None."""
    if not url or not url.strip():
        return None
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError):
        return None
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return None
    return parsed


def _exception_chain(exc: BaseException):
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_connect_error(exc: BaseException) -> ErrorKind:
    """Tell connection refused and DNS failures apart from other connect errors."""
    for err in _exception_chain(exc):
        if isinstance(err, ConnectionRefusedError):
            return ErrorKind.CONNECTION_REFUSED
        if isinstance(err, socket.gaierror):
            return ErrorKind.DNS_FAILURE

    message = " ".join(str(err) for err in _exception_chain(exc)).lower()
    if "refused" in message:
        return ErrorKind.CONNECTION_REFUSED
    if any(marker in message for marker in _DNS_MARKERS):
        return ErrorKind.DNS_FAILURE
    return ErrorKind.NETWORK_ERROR


def _parse_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return dict(ACK_PLACEHOLDER)


def _failure(kind: ErrorKind, reason: str, http_status: int | None = None) -> DeliveryResult:
    return DeliveryResult(
        success=False,
        http_status=http_status,
        error_kind=kind,
        retryable=kind not in (ErrorKind.HTTP_ERROR, ErrorKind.INVALID_CONFIG),
        reason=reason,
        attempts=1,
    )


async def send(
    url: str | None,
    payload: dict,
    timeout_ms: int,
    user_agent: str = DEFAULT_USER_AGENT,
) -> DeliveryResult:
    """POST ``payload`` to ``url`` once and classify the outcome.

    The request is abandoned when ``timeout_ms`` elapses first. A
    ``timeout_ms`` of 0 disables the timer.
    """
    target = validate_url(url)
    if target is None:
        return _failure(ErrorKind.INVALID_CONFIG, f"Invalid webhook URL: {url!r}")

    timeout_s = timeout_ms / 1000 if timeout_ms > 0 else None
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            resp = await asyncio.wait_for(
                client.post(target, json=payload, headers=headers),
                timeout=timeout_s,
            )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return _failure(ErrorKind.TIMEOUT, f"Timed out after {timeout_ms}ms")
    except httpx.ConnectError as e:
        return _failure(classify_connect_error(e), str(e)[:200])
    except (httpx.HTTPError, OSError) as e:
        return _failure(ErrorKind.NETWORK_ERROR, str(e)[:200] or type(e).__name__)

    if 200 <= resp.status_code < 300:
        return DeliveryResult(
            success=True,
            http_status=resp.status_code,
            attempts=1,
            response=_parse_body(resp),
        )

    logger.debug("webhook_http_rejected", status=resp.status_code, body=resp.text[:200])
    return _failure(
        ErrorKind.HTTP_ERROR,
        f"HTTP {resp.status_code}: {resp.reason_phrase}",
        http_status=resp.status_code,
    )

"""
transport.py — HTTP helpers shared by the service and registry clients.

  - raise_for_status(): translate a non-2xx response into a typed HunterError,
    carrying the counterparty's own {code, message, details} when it sent one
  - with_retries():     exponential backoff for idempotent calls only
  - probe_json():       single retryless GET under a hard deadline that
                        returns None on any failure
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import HunterError, NetworkTimeout

logger = logging.getLogger("hunter_settlement.transport")

T = TypeVar("T")


def read_error_payload(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def raise_for_status(
    resp: httpx.Response,
    operation: str,
    error_class: type[HunterError],
    expected_status: Optional[int] = None,
) -> None:
    """
    Raise ``error_class`` unless the response is a success (or exactly
    ``expected_status`` when given; quotes arrive as 402).

    Error responses are expected to be JSON:
      {"code": "...", "message": "...", "details": {...}}
    """
    if expected_status is not None:
        if resp.status_code == expected_status:
            return
    elif resp.is_success:
        return

    body = read_error_payload(resp)
    message = body.get("message") or body.get("error") or resp.text or ""
    if expected_status is not None:
        message = message or f"Expected {expected_status} response, got {resp.status_code}"
    details = body.get("details")
    raise error_class(
        f"[{operation}] {message or f'HTTP {resp.status_code}'}",
        status=resp.status_code,
        code=body.get("code") or None,
        details=details if isinstance(details, dict) else ({"detail": details} if details else {}),
    )


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    backoff: float = 0.5,
    label: str = "",
) -> T:
    """
    Await fn(), retrying on transport errors and 5xx HunterErrors.

    Only for idempotent reads and writes keyed by the caller. Client errors
    (4xx) are raised immediately. Raises the last HunterError, or
    NetworkTimeout when the last failure was a transport error.
    """
    last_exc: Optional[BaseException] = None
    for attempt in range(1, retries + 1):
        try:
            return await fn()
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            last_exc = exc
        except HunterError as exc:
            if exc.status < 500:
                raise
            last_exc = exc
        wait = backoff * (2 ** (attempt - 1))
        logger.warning(
            "%s: retriable error on attempt %d/%d, retrying in %.1fs: %s",
            label, attempt, retries, wait, last_exc,
        )
        if attempt < retries:
            await asyncio.sleep(wait)

    if isinstance(last_exc, HunterError):
        raise last_exc
    raise NetworkTimeout(
        f"{label} failed after {retries} attempts: {last_exc}",
        details={"operation": label},
    ) from last_exc


async def probe_json(
    http: httpx.AsyncClient,
    url: str,
    timeout_seconds: float,
) -> Optional[Any]:
    """
    GET ``url`` once; return the decoded JSON body, or None on timeout,
    transport error, non-2xx status or an undecodable body.
    """
    try:
        resp = await asyncio.wait_for(http.get(url), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.debug("Probe %s timed out after %.2fs", url, timeout_seconds)
        return None
    except httpx.HTTPError as exc:
        logger.debug("Probe %s failed: %s", url, exc)
        return None
    if not resp.is_success:
        logger.debug("Probe %s returned %d", url, resp.status_code)
        return None
    try:
        return resp.json()
    except ValueError:
        logger.debug("Probe %s returned a non-JSON body", url)
        return None

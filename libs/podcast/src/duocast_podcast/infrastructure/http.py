from __future__ import annotations

from typing import Any

import httpx

from duocast_contracts.errors import FatalRequestError, ProviderTimeoutError, TransientProviderError


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds from a delta-seconds Retry-After header. HTTP-date values are ignored."""
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        secs = float(raw.strip())
    except ValueError:
        return None
    return secs if secs > 0 else None


def _is_daily_quota(body: str) -> bool:
    lower = body.lower()
    return "resource_exhausted" in lower and any(k in lower for k in ("per day", "per_day", "rpd"))


def check_response(response: httpx.Response, *, provider: str) -> None:
    """Map an HTTP status onto the provider error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    body = response.text
    snippet = body[:300]
    if status == 429 and _is_daily_quota(body):
        raise FatalRequestError(
            f"{provider} daily quota exhausted: {snippet}", status_code=status, body=body, provider=provider
        )
    if status == 429 or status >= 500:
        raise TransientProviderError(
            f"{provider} returned {status}: {snippet}",
            status_code=status,
            body=body,
            retry_after=parse_retry_after(response),
            provider=provider,
        )
    raise FatalRequestError(f"{provider} returned {status}: {snippet}", status_code=status, body=body, provider=provider)


async def send(client: httpx.AsyncClient, method: str, url: str, *, provider: str, **kwargs: Any) -> httpx.Response:
    """Issue one request, translating transport failures and HTTP errors."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(f"{provider} request timed out: {exc}", provider=provider) from exc
    except httpx.TransportError as exc:
        raise TransientProviderError(f"{provider} network error: {exc}", provider=provider) from exc
    check_response(response, provider=provider)
    return response

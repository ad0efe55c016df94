from __future__ import annotations

import httpx

from auth.errors import HttpFailure, MalformedResponse, NetworkFailure

from .constants import APP_VERSION, HTTP_TIMEOUT_SECONDS, LOGGER

ERROR_BODY_LIMIT = 1000


def _truncate(text: str, limit: int = ERROR_BODY_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit] + "...<truncated>"
    return text


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("Auth request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "Auth response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        LOGGER.warning("Auth error body: %s", _truncate(body.decode("utf-8", errors="replace")))


def build_client(
    *,
    timeout: float = HTTP_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        headers={
            "Accept": "application/json",
            "User-Agent": f"sakura-launcher/{APP_VERSION}",
        },
        event_hooks={
            "request": [log_request],
            "response": [log_response],
        },
    )


async def request_json(
    method: str,
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    **kwargs,
) -> dict:
    """Send one request and return its decoded JSON object.

    Any non-2xx status raises ``HttpFailure`` with the raw body. Nothing is
    retried.
    """
    own_client = client is None
    http_client = client or build_client()

    try:
        response = await http_client.request(method, url, **kwargs)
    except httpx.TransportError as error:
        raise NetworkFailure(f"{method} {url} failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    if not response.is_success:
        raise HttpFailure(response.status_code, response.text, url=url)

    try:
        payload = response.json()
    except ValueError as error:
        raise MalformedResponse(f"{url} returned a body that is not JSON.") from error
    if not isinstance(payload, dict):
        raise MalformedResponse(f"{url} returned JSON that is not an object.")
    return payload

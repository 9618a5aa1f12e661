"""
Shared JSON-over-HTTP helper for the CMS clients.
"""
from typing import Any, Optional

import httpx


class CMSApiError(RuntimeError):
    """
    A CMS call failed. `transient` marks failures worth retrying
    (network errors, timeouts, 429, 5xx); `body` keeps the platform's raw error.
    `delivered` is False when the platform cannot have acted on the request:
    the connection was never made, or it answered 429.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = '',
                 transient: bool = False, delivered: bool = True):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.transient = transient
        self.delivered = delivered


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def request_json(
    method: str,
    url: str,
    *,
    error_cls=CMSApiError,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    headers: Optional[dict] = None,
    payload: Optional[dict] = None,
    auth: Optional[httpx.Auth] = None,
    platform: str = 'CMS',
) -> Any:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, auth=auth) as client:
            response = await client.request(method, url, json=payload, headers=headers)
    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        raise error_cls(f"Could not connect to {platform}: {exc}", transient=True, delivered=False) from exc
    except httpx.RequestError as exc:
        raise error_cls(f"Network error while calling {platform}: {exc}", transient=True) from exc

    if response.status_code >= 400:
        raise error_cls(
            f"{platform} API call failed ({response.status_code})",
            status_code=response.status_code,
            body=response.text,
            transient=is_transient_status(response.status_code),
            delivered=response.status_code != 429,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise error_cls(f"{platform} API returned invalid JSON", status_code=response.status_code,
                        body=response.text) from exc

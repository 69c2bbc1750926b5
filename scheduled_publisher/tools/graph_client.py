"""
Async client for the provider Graph API.

Uses ``httpx`` to call the container-create, container-status and publish
endpoints.  Every call takes the plaintext access token explicitly; the
client holds no credential state.

Responses are classified into the pipeline's error taxonomy:

- network errors, timeouts, HTTP 429 / 5xx and throttling error codes
  -> ``ProviderUnavailable`` (retryable)
- HTTP 401 / 403 and OAuth error code 190 -> ``AuthFailure``
- any other 4xx -> the caller's non-retryable error class
  (``MediaRejected`` for container creation, ``ContainerNotPublishable``
  for publishing)
"""

import logging
from typing import Any, Dict, Optional, Type

import httpx

from scheduled_publisher.config import Settings, get_settings
from scheduled_publisher.exceptions import (
    AuthFailure,
    PipelineError,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)

# Graph API error codes that signal throttling or temporary unavailability
TRANSIENT_ERROR_CODES = frozenset({1, 2, 4, 17, 32, 341, 613})

# OAuth / permission error codes
AUTH_ERROR_CODES = frozenset({10, 102, 190, 200})


def _error_details(response: httpx.Response) -> Dict[str, Any]:
    """Extract the ``error`` object from a Graph API error body."""
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text[:200]}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return {"message": str(payload)[:200]}


def classify_response(
    response: httpx.Response,
    operation: str,
    rejection_error: Type[PipelineError],
) -> PipelineError:
    """Map a failed Graph API response onto the error taxonomy.

    Args:
        response: Non-2xx response.
        operation: Name used in the error message (e.g. ``"create container"``).
        rejection_error: Class raised for permanent 4xx failures.

    Returns:
        The exception instance to raise.
    """
    error = _error_details(response)
    message = error.get("message") or f"HTTP {response.status_code}"
    code = error.get("code")
    detail = f"{operation} failed ({response.status_code}): {message}"

    if code in AUTH_ERROR_CODES or response.status_code in (401, 403):
        return AuthFailure(detail)
    if (
        response.status_code == 429
        or response.status_code >= 500
        or code in TRANSIENT_ERROR_CODES
        or error.get("is_transient") is True
    ):
        return ProviderUnavailable(detail)
    return rejection_error(detail)


class GraphAPIClient:
    """Thin async wrapper around the provider Graph API.

    Args:
        settings: Application settings (base URL, timeout).  Defaults to
            :func:`~scheduled_publisher.config.get_settings`.
        http_client: Optional shared ``httpx.AsyncClient``.  When ``None``
            a short-lived client is opened per request.

    Usage::

        client = GraphAPIClient()
        data = await client.post(
            f"{account_id}/media",
            token,
            {"image_url": url, "caption": caption},
            operation="create container",
            rejection_error=MediaRejected,
        )
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client

    def _url(self, path: str) -> str:
        return f"{self.settings.graph_api_root}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        payload: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        query = dict(params or {})
        query["access_token"] = access_token

        if self._http_client is not None:
            return await self._http_client.request(
                method, self._url(path), params=query, data=payload,
                timeout=self.settings.http_timeout_seconds,
            )
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds
        ) as client:
            return await client.request(
                method, self._url(path), params=query, data=payload,
            )

    async def request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        operation: str,
        rejection_error: Type[PipelineError],
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send one request and return the decoded JSON body.

        Raises:
            ProviderUnavailable: On network errors or transient responses.
            AuthFailure: When the token is rejected.
            PipelineError: ``rejection_error`` for other 4xx responses.
        """
        try:
            response = await self._send(method, path, access_token, payload, params)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(f"{operation} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailable(f"{operation} network error: {exc}") from exc

        if response.is_error:
            error = classify_response(response, operation, rejection_error)
            logger.warning(
                "[GRAPH] %s %s -> %d (%s)",
                method,
                path,
                response.status_code,
                type(error).__name__,
            )
            raise error

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailable(
                f"{operation} returned a non-JSON body"
            ) from exc

        logger.debug("[GRAPH] %s %s -> %d", method, path, response.status_code)
        return data

    async def post(
        self,
        path: str,
        access_token: str,
        payload: Dict[str, Any],
        *,
        operation: str,
        rejection_error: Type[PipelineError],
    ) -> Dict[str, Any]:
        """POST form parameters to *path*."""
        return await self.request(
            "POST", path, access_token,
            operation=operation,
            rejection_error=rejection_error,
            payload=payload,
        )

    async def get(
        self,
        path: str,
        access_token: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        operation: str,
        rejection_error: Type[PipelineError],
    ) -> Dict[str, Any]:
        """GET *path* with query parameters."""
        return await self.request(
            "GET", path, access_token,
            operation=operation,
            rejection_error=rejection_error,
            params=params,
        )


__all__ = [
    "GraphAPIClient",
    "classify_response",
    "TRANSIENT_ERROR_CODES",
    "AUTH_ERROR_CODES",
]

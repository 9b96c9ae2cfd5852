"""Shared HTTP plumbing for clients of the studio API."""

import logging
from typing import Any

import httpx

from studio.config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from studio.errors import ApiError, TransportError

logger = logging.getLogger(__name__)


class BaseApiClient:
    """Authenticated JSON client with a per-request timeout.

    Every request carries ``Authorization: Bearer <api_key>`` and
    ``Content-Type: application/json``. Network failures surface as
    TransportError (``timed_out=True`` for timeouts); nothing is retried here.

    Args:
        api_key: API key for bearer authentication
        base_url: Root URL of the studio deployment
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and return the raw response (any status).

        Args:
            method: HTTP method
            path: Path below the base URL, starting with ``/``
            operation: Description used in error messages (e.g. "Failed to save workflow")

        Raises:
            TransportError: If no response was received
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    json=json,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out after {self.timeout}s")
            raise TransportError(f"Request timeout: {operation}", timed_out=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{operation}: {e or type(e).__name__}") from e

    @staticmethod
    def _read_json(response: httpx.Response) -> Any:
        """Parse a response body, returning ``None`` if it is not JSON."""
        try:
            return response.json()
        except ValueError:
            return None

    def _check_response(self, response: httpx.Response, operation: str) -> Any:
        """Return the parsed body of a 2xx response.

        Raises:
            ApiError: For non-2xx responses (message taken from the body's
                ``error`` or ``message`` field) and for malformed 2xx bodies
        """
        data = self._read_json(response)
        if not response.is_success:
            body = data if data is not None else {}
            message = operation
            if isinstance(body, dict):
                message = body.get("error") or body.get("message") or operation
            raise ApiError(
                f"{message} (Status: {response.status_code})",
                status=response.status_code,
                body=body,
            )
        if data is None and response.content:
            raise ApiError(
                f"{operation}: malformed response body",
                status=response.status_code,
                body=response.text,
            )
        return data

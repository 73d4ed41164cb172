"""
Shared httpx plumbing for the marketplace clients.

Maps transport failures and HTTP status codes onto the engine's error
taxonomy:
- connection errors, timeouts, 5xx -> CatalogUnavailableError
- 400 / 422 -> DestinationValidationError with the API's detail verbatim
- anything else non-2xx -> CatalogClientError
"""

import json
from typing import Any, Optional

import httpx
import structlog

from catalog_migration.errors.exceptions import (
    CatalogClientError,
    CatalogUnavailableError,
    DestinationValidationError,
)

logger = structlog.get_logger(__name__)

VALIDATION_STATUS_CODES = (400, 422)


def extract_detail(response: httpx.Response) -> str:
    """Best-effort error text from a JSON or plain-text error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"

    if isinstance(data, dict):
        detail = data.get("detail", data.get("message", data))
    else:
        detail = data

    if isinstance(detail, str):
        return detail
    return json.dumps(detail, ensure_ascii=False)


class BaseCatalogClient:
    """
    Async context-managed httpx client with bearer auth.

    Usage:
        async with SourceCatalogClient() as client:
            items = await client.list_all_items()
    """

    service_name = "catalog"

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Marketplace API base URL
            token: Bearer token sent on every request
            timeout: Read timeout in seconds
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = httpx.Timeout(connect=5.0, read=timeout, write=10.0, pool=5.0)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = logger.bind(service=self.service_name, base_url=self.base_url)

    async def __aenter__(self):
        """Context manager entry - create async client."""
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/json",
                "User-Agent": "catalog-migration/1.0",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not initialized."""
        if self._client is None:
            raise CatalogClientError(
                f"{type(self).__name__} not initialized. Use 'async with {type(self).__name__}() as client:'"
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and translate failures into engine errors."""
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            self._log.error("request_timeout", method=method, path=path, error=str(e))
            raise CatalogUnavailableError(f"{self.service_name} timeout: {e}") from e
        except httpx.TransportError as e:
            self._log.error("request_connection_error", method=method, path=path, error=str(e))
            raise CatalogUnavailableError(f"Failed to connect to {self.service_name}: {e}") from e

        if response.is_success:
            return response

        detail = extract_detail(response)
        self._log.warning(
            "request_failed",
            method=method,
            path=path,
            status_code=response.status_code,
            detail=detail[:200],
        )

        if response.status_code >= 500:
            raise CatalogUnavailableError(
                f"{self.service_name} unavailable (HTTP {response.status_code})",
                details={"status_code": response.status_code, "detail": detail},
            )
        if response.status_code in VALIDATION_STATUS_CODES:
            raise DestinationValidationError(detail, details={"status_code": response.status_code})
        raise CatalogClientError(
            f"Unexpected response: HTTP {response.status_code} - {detail}",
            details={"status_code": response.status_code},
        )

"""GEKO catalog feed client."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from catalog_sync.config import settings

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when the catalog document cannot be downloaded."""

    def __init__(self, message: str, url: str, status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


@dataclass
class FetchResult:
    """A downloaded catalog document.

    Attributes:
        url: URL the document was fetched from
        content: Raw XML text
        size_bytes: Size of the response body in bytes
        status_code: HTTP status code of the response
    """

    url: str
    content: str
    size_bytes: int
    status_code: int = 200


class GekoClient:
    """Async client for the GEKO XML catalog feed.

    A single GET per fetch with a hard timeout; retrying is left to the
    caller (scheduler tick or Celery task).
    """

    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GEKO client.

        Args:
            api_url: Catalog feed URL. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            transport: Optional httpx transport (used for testing).
        """
        self.api_url = api_url or settings.geko_api_url
        self.timeout = timeout if timeout is not None else settings.geko_fetch_timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GekoClient":
        """Enter async context manager."""
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers={"Accept": "application/xml"},
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def _client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context manager."""
        if self._http_client is None:
            raise RuntimeError("GekoClient must be used as an async context manager")
        return self._http_client

    async def fetch_catalog(self, url: str | None = None) -> FetchResult:
        """Download the catalog XML.

        Args:
            url: Feed URL overriding the client's default.

        Returns:
            FetchResult with the XML text and its size.

        Raises:
            FetchError: On network errors, timeouts or non-2xx responses.
        """
        url = url or self.api_url
        logger.info("Fetching GEKO catalog from %s", url)

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "GEKO catalog request failed: %s %s",
                e.response.status_code,
                e.response.text[:500],
            )
            raise FetchError(
                f"Catalog request failed with status {e.response.status_code}",
                url,
                e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            logger.error("GEKO catalog request timed out after %.0fs: %s", self.timeout, url)
            raise FetchError(f"Catalog request timed out after {self.timeout:.0f}s", url) from e
        except httpx.RequestError as e:
            logger.error("GEKO catalog request error: %s", e)
            raise FetchError(f"Catalog request failed: {e}", url) from e

        size_bytes = len(response.content)
        logger.info("Fetched GEKO catalog: %d bytes", size_bytes)
        return FetchResult(
            url=url,
            content=response.text,
            size_bytes=size_bytes,
            status_code=response.status_code,
        )


async def fetch_catalog(url: str | None = None, timeout: float | None = None) -> FetchResult:
    """Fetch the catalog with a short-lived client."""
    async with GekoClient(api_url=url, timeout=timeout) as client:
        return await client.fetch_catalog()

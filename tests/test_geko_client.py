"""Tests for the GEKO catalog feed client."""

import httpx
import pytest

from catalog_sync.services.geko_client import FetchError, GekoClient

FEED_URL = "https://api.geko.com/products"


def transport_returning(status_code: int, body: str = "") -> httpx.MockTransport:
    """Mock transport answering every request with a fixed response."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=body)

    return httpx.MockTransport(handler)


def transport_raising(exc_type: type[httpx.RequestError]) -> httpx.MockTransport:
    """Mock transport raising a transport error for every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_type("boom", request=request)

    return httpx.MockTransport(handler)


class TestGekoClient:
    """Tests for GekoClient."""

    async def test_context_manager_required(self) -> None:
        """Test that the client must be used as an async context manager."""
        client = GekoClient(api_url=FEED_URL)
        with pytest.raises(RuntimeError, match="async context manager"):
            await client.fetch_catalog()

    async def test_fetch_success(self, sample_catalog: str) -> None:
        """Test downloading the catalog document."""
        async with GekoClient(FEED_URL, transport=transport_returning(200, sample_catalog)) as client:
            result = await client.fetch_catalog()

        assert result.url == FEED_URL
        assert result.content == sample_catalog
        assert result.size_bytes == len(sample_catalog.encode("utf-8"))
        assert result.status_code == 200

    async def test_requests_xml(self) -> None:
        """Test that the request asks for XML."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<geko/>")

        async with GekoClient(FEED_URL, transport=httpx.MockTransport(handler)) as client:
            await client.fetch_catalog("https://mirror.example.com/feed.xml")

        assert str(seen[0].url) == "https://mirror.example.com/feed.xml"
        assert seen[0].headers["accept"] == "application/xml"

    async def test_http_error(self) -> None:
        """Test that non-2xx responses raise FetchError with the status."""
        async with GekoClient(FEED_URL, transport=transport_returning(503, "down")) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.fetch_catalog()

        assert exc_info.value.status_code == 503
        assert exc_info.value.url == FEED_URL

    async def test_timeout(self) -> None:
        """Test that timeouts raise FetchError."""
        transport = transport_raising(httpx.ReadTimeout)
        async with GekoClient(FEED_URL, timeout=5, transport=transport) as client:
            with pytest.raises(FetchError, match="timed out after 5s"):
                await client.fetch_catalog()

    async def test_network_error(self) -> None:
        """Test that connection errors raise FetchError."""
        async with GekoClient(FEED_URL, transport=transport_raising(httpx.ConnectError)) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.fetch_catalog()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

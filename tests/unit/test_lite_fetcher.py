"""Unit tests for taskcal_lite.lite_fetcher module."""

from pathlib import Path

import httpx
import pytest

from taskcal_lite.exceptions import RefreshError
from taskcal_lite.lite_fetcher import FeedFetcher, is_remote_source, normalize_source_url

pytestmark = pytest.mark.unit

ICS_BODY = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR\r\n"


class TestSourceNormalization:
    @pytest.mark.parametrize(
        ("source", "expected"),
        [
            ("webcal://example.com/cal.ics", "https://example.com/cal.ics"),
            ("WEBCALS://example.com/cal.ics", "https://example.com/cal.ics"),
            ("https://example.com/cal.ics", "https://example.com/cal.ics"),
            ("  /tmp/cal.ics ", "/tmp/cal.ics"),
        ],
    )
    def test_normalize_source_url(self, source: str, expected: str) -> None:
        assert normalize_source_url(source) == expected

    def test_is_remote_source(self) -> None:
        assert is_remote_source("webcal://example.com/cal.ics")
        assert is_remote_source("http://example.com/cal.ics")
        assert not is_remote_source("/home/me/cal.ics")
        assert not is_remote_source("file:///home/me/cal.ics")


def _fetcher(handler, **kwargs) -> FeedFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = FeedFetcher(client=client, **kwargs)
    # No real sleeping between retries
    fetcher._calculate_backoff = lambda attempt: 0.0  # type: ignore[method-assign]
    return fetcher


class TestRemoteFetch:
    @pytest.mark.asyncio
    async def test_fetch_when_200_then_returns_text(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, text=ICS_BODY)

        fetcher = _fetcher(handler)

        assert await fetcher.fetch("webcal://example.com/team.ics") == ICS_BODY
        assert seen == ["https://example.com/team.ics"]
        await fetcher.client.aclose()  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_fetch_when_404_then_raises_without_retry(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404)

        fetcher = _fetcher(handler)

        with pytest.raises(RefreshError) as exc_info:
            await fetcher.fetch("https://example.com/missing.ics")

        assert exc_info.value.status_code == 404
        assert calls == 1

    @pytest.mark.asyncio
    async def test_fetch_when_5xx_then_retries_and_succeeds(self) -> None:
        responses = [httpx.Response(503), httpx.Response(502), httpx.Response(200, text=ICS_BODY)]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        fetcher = _fetcher(handler, max_retries=3)

        assert await fetcher.fetch("https://example.com/flaky.ics") == ICS_BODY
        assert responses == []

    @pytest.mark.asyncio
    async def test_fetch_when_5xx_persists_then_raises_with_status(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        fetcher = _fetcher(handler, max_retries=2)

        with pytest.raises(RefreshError) as exc_info:
            await fetcher.fetch("https://example.com/down.ics")

        assert exc_info.value.status_code == 500
        assert calls == 2

    @pytest.mark.asyncio
    async def test_fetch_when_network_error_then_raises_refresh_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = _fetcher(handler, max_retries=2)

        with pytest.raises(RefreshError) as exc_info:
            await fetcher.fetch("https://unreachable.example.com/cal.ics")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_fetch_when_protocol_error_then_retries_and_raises_refresh_error(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.RemoteProtocolError("peer closed connection", request=request)

        fetcher = _fetcher(handler, max_retries=2)

        with pytest.raises(RefreshError, match="peer closed connection"):
            await fetcher.fetch("https://example.com/cal.ics")

        assert calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [httpx.TooManyRedirects, httpx.DecodingError])
    async def test_fetch_when_other_http_error_then_raises_without_retry(self, error: type) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise error("broken response", request=request)

        fetcher = _fetcher(handler, max_retries=3)

        with pytest.raises(RefreshError):
            await fetcher.fetch("https://example.com/cal.ics")

        assert calls == 1


class TestLocalFetch:
    @pytest.mark.asyncio
    async def test_fetch_local_path(self, tmp_path: Path) -> None:
        path = tmp_path / "cal.ics"
        path.write_text(ICS_BODY, encoding="utf-8")

        assert await FeedFetcher().fetch(str(path)) == ICS_BODY

    @pytest.mark.asyncio
    async def test_fetch_file_url(self, tmp_path: Path) -> None:
        path = tmp_path / "cal.ics"
        path.write_text(ICS_BODY, encoding="utf-8")

        assert await FeedFetcher().fetch(path.as_uri()) == ICS_BODY

    @pytest.mark.asyncio
    async def test_fetch_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(RefreshError, match="Failed to read"):
            await FeedFetcher().fetch(str(tmp_path / "absent.ics"))

    @pytest.mark.asyncio
    async def test_fetch_unsupported_scheme_raises(self) -> None:
        with pytest.raises(RefreshError, match="scheme"):
            await FeedFetcher().fetch("ftp://example.com/cal.ics")


@pytest.mark.asyncio
async def test_context_manager_owns_and_closes_client() -> None:
    async with FeedFetcher() as fetcher:
        client = fetcher.client
        assert client is not None

    assert client.is_closed
    assert fetcher.client is None


@pytest.mark.asyncio
async def test_aclose_leaves_shared_client_open() -> None:
    client = httpx.AsyncClient()
    fetcher = FeedFetcher(client=client)

    await fetcher.aclose()

    assert not client.is_closed
    await client.aclose()

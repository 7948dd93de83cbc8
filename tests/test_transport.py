"""Tests for the HTTP transport."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from docsync.errors import ConnectionFailure, TransportError
from docsync.sync import HttpTransport


def mock_client(responses):
    """Create an AsyncClient stand-in answering POSTs from ``responses``."""
    client = MagicMock()
    client.post = AsyncMock(side_effect=responses)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


@pytest.fixture
def transport():
    return HttpTransport("http://remote:8080/", max_retries=3, timeout=5.0)


@pytest.fixture
def no_sleep():
    with patch("docsync.sync.transport.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestHttpTransport:
    """Tests for HttpTransport requests and retries."""

    def test_init(self, transport):
        """Test HttpTransport initialization."""
        assert transport.url == "http://remote:8080/"
        assert transport.max_retries == 3
        assert transport.timeout == 5.0

    @pytest.mark.asyncio
    async def test_push_posts_documents(self, transport, no_sleep):
        """Test that push posts documents to /push."""
        client = mock_client([httpx.Response(200, json={"ok": True})])

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            await transport.push([{"id": "a"}])

        client.post.assert_awaited_once_with(
            "http://remote:8080/push", json={"documents": [{"id": "a"}]}
        )

    @pytest.mark.asyncio
    async def test_pull_returns_documents(self, transport, no_sleep):
        """Test that pull posts the last document and returns the page."""
        client = mock_client(
            [httpx.Response(200, json={"documents": [{"id": "b"}]})]
        )

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            documents = await transport.pull({"id": "a"}, 10)

        assert documents == [{"id": "b"}]
        client.post.assert_awaited_once_with(
            "http://remote:8080/pull", json={"lastDocument": {"id": "a"}, "limit": 10}
        )

    @pytest.mark.asyncio
    async def test_pull_malformed_response(self, transport, no_sleep):
        """Test that a pull response without documents raises TransportError."""
        client = mock_client([httpx.Response(200, json={"items": []})])

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError):
                await transport.pull(None, 10)

    @pytest.mark.asyncio
    async def test_pull_rejects_non_object_documents(self, transport, no_sleep):
        """Test that pulled documents which are not objects are rejected."""
        client = mock_client([httpx.Response(200, json={"documents": [{"id": "a"}, "b"]})])

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError) as exc_info:
                await transport.pull(None, 10)

        assert exc_info.value.reason == "malformed"

    @pytest.mark.asyncio
    async def test_server_error_retried(self, transport, no_sleep):
        """Test that a server error is retried after a backoff."""
        client = mock_client(
            [
                httpx.Response(503, text="busy"),
                httpx.Response(200, json={"ok": True}),
            ]
        )

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            await transport.push([])

        assert client.post.await_count == 2
        no_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, transport, no_sleep):
        """Test that a client error fails without retry."""
        client = mock_client([httpx.Response(400, text="bad request")])

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError) as exc_info:
                await transport.push([])

        assert "HTTP 400" in str(exc_info.value)
        assert client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_unreachable_after_retries(self, transport, no_sleep):
        """Test that repeated connect errors raise ConnectionFailure."""
        client = mock_client([httpx.ConnectError("refused")] * 3)

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(ConnectionFailure):
                await transport.push([])

        assert client.post.await_count == 3
        # Exponential backoff between attempts
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_unreachable(self, transport, no_sleep):
        """Test that repeated timeouts raise ConnectionFailure."""
        client = mock_client([httpx.ReadTimeout("slow")] * 3)

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(ConnectionFailure):
                await transport.pull(None, 10)

    @pytest.mark.asyncio
    async def test_persistent_server_error(self, transport, no_sleep):
        """Test that repeated server errors raise TransportError."""
        client = mock_client([httpx.Response(500, text="boom")] * 3)

        with patch("docsync.sync.transport.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError) as exc_info:
                await transport.push([])

        assert not isinstance(exc_info.value, ConnectionFailure)
        assert exc_info.value.reason == "server_error"

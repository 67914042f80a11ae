"""Tests for the outbound chat channel sender via httpx."""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from engage.core.errors import ChannelError
from engage.interface.channel_sender import (
    CHANNEL_NOT_CONFIGURED_ERROR,
    build_send_payload,
    deliver_message,
    get_access_token,
    send_message,
)
from engage.services import project_service


@pytest.fixture(autouse=True)
def mock_asyncio_sleep() -> Generator[AsyncMock, None, None]:
    """Mock asyncio.sleep to avoid actual delays in retry tests."""
    with patch("engage.interface.channel_sender.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def mock_token() -> Generator[AsyncMock, None, None]:
    with patch("engage.interface.channel_sender.get_access_token", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = "tok-123"
        yield mock_get


def _response(status_code: int, text: str = "") -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = text
    response.request = MagicMock()
    return response


@pytest.mark.unit
class TestBuildSendPayload:
    def test_text_payload(self) -> None:
        payload = build_send_payload(subscriber_id="sub-1", text="Olá")

        assert payload["subscriber_id"] == "sub-1"
        assert payload["message_tag"] == "ACCOUNT_UPDATE"
        assert payload["data"]["content"] == {"type": "text", "text": "Olá"}


@pytest.mark.unit
class TestGetAccessToken:
    async def test_returns_project_token(self, project) -> None:
        await project_service.set_channel_connection(project_id=project.id, access_token="secret")

        assert await get_access_token(project_id=project.id) == "secret"

    async def test_other_provider_not_used(self, project) -> None:
        await project_service.set_channel_connection(project_id=project.id, access_token="secret", provider="other")

        assert await get_access_token(project_id=project.id) is None


@pytest.mark.unit
class TestSendMessage:
    """Test sending text messages through the provider API."""

    async def test_success(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200)

            result = await send_message(project_id="1", subscriber_id="sub-1", text="Hello")

        assert result.success is True
        assert result.error is None
        assert result.attempts == 1

        mock_post.assert_called_once()
        call_args = mock_post.call_args
        assert call_args.args[0].endswith("/fb/sending/sendContent")
        assert call_args.kwargs["headers"]["Authorization"] == "Bearer tok-123"
        assert call_args.kwargs["json"]["subscriber_id"] == "sub-1"

    async def test_client_error_not_retried(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(400, "Bad Request")

            result = await send_message(project_id="1", subscriber_id="sub-1", text="Hi", max_retries=3)

        assert result.success is False
        assert "Client error 400" in result.error
        assert "Bad Request" in result.error
        assert result.attempts == 1
        assert mock_post.call_count == 1

    async def test_server_error_retried(self, mock_token: AsyncMock, mock_asyncio_sleep: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(500)

            result = await send_message(
                project_id="1", subscriber_id="sub-1", text="Hi", max_retries=3, retry_delay=0.5
            )

        assert result.success is False
        assert result.error == "Failed after retries: Server error: 500"
        assert result.attempts == 3
        assert mock_post.call_count == 3
        assert [c.args[0] for c in mock_asyncio_sleep.call_args_list] == [0.5, 1.0]

    async def test_transport_error_then_success(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = [httpx.ConnectError("refused"), _response(200)]

            result = await send_message(project_id="1", subscriber_id="sub-1", text="Hi", max_retries=2)

        assert result.success is True
        assert result.attempts == 2

    async def test_single_attempt_by_default(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.HTTPError("boom")

            result = await send_message(project_id="1", subscriber_id="sub-1", text="Hi")

        assert result.success is False
        assert mock_post.call_count == 1

    async def test_missing_connection(self, project) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            result = await send_message(project_id=project.id, subscriber_id="sub-1", text="Hi")

        assert result.success is False
        assert result.error == CHANNEL_NOT_CONFIGURED_ERROR
        assert result.attempts == 0
        mock_post.assert_not_called()


@pytest.mark.unit
class TestDeliverMessage:
    async def test_returns_result_on_success(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200)

            result = await deliver_message(project_id="1", subscriber_id="sub-1", text="Hi")

        assert result.success is True

    async def test_raises_channel_error_with_attempts(self, mock_token: AsyncMock) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(503)

            with pytest.raises(ChannelError, match="Server error: 503") as exc_info:
                await deliver_message(project_id="1", subscriber_id="sub-1", text="Hi", max_retries=2)

        assert exc_info.value.attempts == 2

    async def test_missing_connection_raises(self, project) -> None:
        with pytest.raises(ChannelError, match=CHANNEL_NOT_CONFIGURED_ERROR) as exc_info:
            await deliver_message(project_id=project.id, subscriber_id="sub-1", text="Hi")

        assert exc_info.value.attempts == 0

"""Pytest configuration and fixtures for unit tests."""

from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest

from engage.interface.channel_sender import SendMessageResult


@pytest.fixture
def mock_send() -> Generator[AsyncMock, None, None]:
    """Replace the outbound channel with a mock that always succeeds."""
    with patch(
        "engage.services.dispatch_service.channel_sender.send_message",
        new_callable=AsyncMock,
        return_value=SendMessageResult(success=True, attempts=1),
    ) as mock:
        yield mock

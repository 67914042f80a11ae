"""Outbound chat channel sender with retry logic (ManyChat-style sendContent API)."""

import asyncio
import logging

import httpx
from pydantic import BaseModel, Field

from engage.core import db_client
from engage.core.config import constants, settings
from engage.core.errors import ChannelError


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500

CHANNEL_NOT_CONFIGURED_ERROR = "channel not configured"


class SendMessageResult(BaseModel):
    """Result of sending a message to one subscriber."""

    success: bool = Field(..., description="Whether the message was accepted by the provider")
    message_id: str | None = Field(None, description="Provider message ID if returned")
    error: str | None = Field(None, description="Error message if failed")
    attempts: int = Field(default=0, description="HTTP attempts made")


async def get_access_token(*, project_id: str, provider: str | None = None) -> str | None:
    """Look up the provider access token configured for a project.

    Args:
        project_id: Project whose credentials to use
        provider: Provider key (defaults to settings.channel_provider)

    Returns:
        The access token, or None if the project has no connection
    """
    provider = provider or settings.channel_provider
    record = await db_client.get_first_record(
        collection="channel_connections",
        filter_query=(
            f'provider = "{db_client.sanitize_param(provider)}" && '
            f'project_id = "{db_client.sanitize_param(project_id)}"'
        ),
    )
    if not record or not record.get("access_token"):
        return None
    return record["access_token"]


def build_send_payload(*, subscriber_id: str, text: str) -> dict:
    """Build the sendContent request body for a plain text message."""
    return {
        "subscriber_id": subscriber_id,
        "message_tag": settings.channel_message_tag,
        "data": {
            "version": "v2",
            "content": {
                "type": "text",
                "text": text,
            },
        },
    }


async def _post_with_retry(
    *,
    token: str,
    payload: dict,
    max_retries: int,
    retry_delay: float,
) -> SendMessageResult:
    """Core message sending logic with retry."""
    url = f"{settings.channel_base_url}/fb/sending/sendContent"
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    last_error = "Max retries exceeded"

    for attempt in range(max_retries):
        attempts = attempt + 1
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(url, json=payload, headers=headers)

                if response.is_success:
                    return SendMessageResult(success=True, attempts=attempts)

                if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                    return SendMessageResult(
                        success=False,
                        error=f"Client error {response.status_code}: {response.text}",
                        attempts=attempts,
                    )

                raise httpx.HTTPStatusError(
                    f"Server error: {response.status_code}", request=response.request, response=response
                )
        except httpx.HTTPError as e:
            last_error = str(e)
            logger.warning(
                "Channel send failed",
                extra={"attempt": attempts, "max_retries": max_retries, "error": last_error},
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))

    return SendMessageResult(success=False, error=f"Failed after retries: {last_error}", attempts=max_retries)


async def send_message(
    *,
    project_id: str,
    subscriber_id: str,
    text: str,
    max_retries: int = 1,
    retry_delay: float = 1.0,
) -> SendMessageResult:
    """Send a text message to a chat subscriber using the project's credentials.

    Args:
        project_id: Project whose channel connection is used
        subscriber_id: Recipient's subscriber ID in the provider
        text: Message text
        max_retries: Total attempts allowed for retryable failures (5xx, transport errors)
        retry_delay: Base delay for exponential backoff

    Returns:
        SendMessageResult; never raises for provider failures
    """
    token = await get_access_token(project_id=project_id)
    if not token:
        logger.warning("No channel connection configured", extra={"project_id": project_id})
        return SendMessageResult(success=False, error=CHANNEL_NOT_CONFIGURED_ERROR, attempts=0)

    payload = build_send_payload(subscriber_id=subscriber_id, text=text)
    return await _post_with_retry(
        token=token,
        payload=payload,
        max_retries=max(1, max_retries),
        retry_delay=retry_delay,
    )


async def deliver_message(
    *,
    project_id: str,
    subscriber_id: str,
    text: str,
    max_retries: int = 1,
    retry_delay: float = 1.0,
) -> SendMessageResult:
    """Send a message, raising when the provider did not accept it.

    Raises:
        ChannelError: With the provider error and the attempts made
    """
    result = await send_message(
        project_id=project_id,
        subscriber_id=subscriber_id,
        text=text,
        max_retries=max_retries,
        retry_delay=retry_delay,
    )
    if not result.success:
        raise ChannelError(result.error or "message not accepted", attempts=result.attempts)
    return result

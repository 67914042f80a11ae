"""Inbound chat webhook payload parser.

The chat provider delivers two payload shapes depending on how the flow was
built. Both are modelled explicitly and normalized into one InboundSubmission.

SubscriberEnvelope::

    {"subscriber": {"id": "123", "phone": "+55...", "name": "Ana"},
     "message": {"text": "done!", "attachments": [{"type": "image", "url": "https://..."}]},
     "meta": {"projectId": "1", "dayNumber": 3}}

UserEnvelope::

    {"user": {"id": "123", "phone_number": "+55...", "fullName": "Ana"},
     "text": "done!", "attachments": [...], "projectId": "1", "dayNumber": 3}
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


logger = logging.getLogger(__name__)


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChannelAttachment(_Lenient):
    """One attachment on an inbound message."""

    type: str | None = None
    mime: str | None = None
    url: str | None = None
    file_url: str | None = Field(default=None, alias="fileUrl")

    @property
    def is_image(self) -> bool:
        """Whether the attachment is a photo."""
        return "image" in (self.type or "").lower() or (self.mime or "").lower().startswith("image")

    @property
    def ref(self) -> str | None:
        """Reference to store for the attachment."""
        return self.url or self.file_url


class ChannelContact(_Lenient):
    """Sender identity as reported by the provider."""

    id: str | None = None
    phone: str | None = None
    phone_number: str | None = None
    msisdn: str | None = None
    name: str | None = None
    full_name: str | None = Field(default=None, alias="fullName")

    @field_validator("id", "phone", "phone_number", "msisdn", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> str | None:  # noqa: ANN401
        """Provider IDs and numbers may arrive as JSON numbers."""
        if v is None or v == "":
            return None
        return str(v)

    @property
    def resolved_phone(self) -> str | None:
        return self.phone or self.phone_number or self.msisdn

    @property
    def resolved_name(self) -> str | None:
        return self.name or self.full_name


class ChannelMessage(_Lenient):
    """Message body of a SubscriberEnvelope."""

    text: str | None = None
    attachments: list[ChannelAttachment] = Field(default_factory=list)
    media: list[ChannelAttachment] = Field(default_factory=list)


class ChannelMeta(_Lenient):
    """Routing hints set by the chat flow."""

    project_id: str | None = Field(default=None, alias="projectId")
    day_number: int | None = Field(default=None, alias="dayNumber")

    @field_validator("project_id", mode="before")
    @classmethod
    def coerce_project_id(cls, v: Any) -> str | None:  # noqa: ANN401
        return None if v is None or v == "" else str(v)


class ChannelProjectRef(_Lenient):
    id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:  # noqa: ANN401
        return None if v is None or v == "" else str(v)


class _EnvelopeRouting(ChannelMeta):
    """Top-level routing fields shared by both envelopes."""

    project: ChannelProjectRef | None = None
    meta: ChannelMeta | None = None
    metadata: ChannelMeta | None = None
    text: str | None = None
    attachments: list[ChannelAttachment] = Field(default_factory=list)

    @property
    def resolved_meta(self) -> ChannelMeta:
        return self.meta or self.metadata or ChannelMeta()

    def resolve_project_id(self) -> str | None:
        return self.resolved_meta.project_id or self.project_id or (self.project.id if self.project else None)

    def resolve_day_number(self) -> int | None:
        return self.resolved_meta.day_number or self.day_number


class SubscriberEnvelope(_EnvelopeRouting):
    """Payload carrying ``subscriber`` and a nested ``message`` object."""

    subscriber: ChannelContact
    message: ChannelMessage | str | None = None


class UserEnvelope(_EnvelopeRouting):
    """Payload carrying ``user`` with text and attachments at the top level."""

    user: ChannelContact


class InboundSubmission(BaseModel):
    """Normalized submission extracted from any supported payload shape."""

    external_id: str | None = Field(None, description="Sender's subscriber ID in the provider")
    phone: str | None = Field(None, description="Sender's phone number")
    name: str | None = Field(None, description="Sender's display name")
    text: str = Field(default="", description="Message text")
    media_refs: list[str] = Field(default_factory=list, description="Image attachment references, in order")
    project_id: str | None = Field(None, description="Explicit project, if the flow set one")
    day_number: int | None = Field(None, description="Explicit project day, if the flow set one")

    @property
    def notes(self) -> str | None:
        """Submission notes derived from the message text."""
        return self.text or None


def _normalize(envelope: SubscriberEnvelope | UserEnvelope) -> InboundSubmission:
    contact = envelope.subscriber if isinstance(envelope, SubscriberEnvelope) else envelope.user

    text = envelope.text or ""
    attachments = list(envelope.attachments)
    if isinstance(envelope, SubscriberEnvelope):
        message = envelope.message
        if isinstance(message, ChannelMessage):
            text = message.text or text
            attachments = message.attachments or message.media or attachments
        elif isinstance(message, str):
            text = message or text

    media_refs = [a.ref for a in attachments if a.is_image and a.ref]

    return InboundSubmission(
        external_id=contact.id,
        phone=contact.resolved_phone,
        name=contact.resolved_name,
        text=text.strip(),
        media_refs=media_refs,
        project_id=envelope.resolve_project_id(),
        day_number=envelope.resolve_day_number(),
    )


def parse_channel_webhook(data: dict[str, Any]) -> InboundSubmission | None:
    """Parse an inbound chat webhook payload.

    Args:
        data: Raw JSON payload

    Returns:
        InboundSubmission, or None if the payload matches no known shape
    """
    if not isinstance(data, dict):
        return None

    envelope: SubscriberEnvelope | UserEnvelope
    try:
        if isinstance(data.get("subscriber"), dict):
            envelope = SubscriberEnvelope.model_validate(data)
        elif isinstance(data.get("user"), dict):
            envelope = UserEnvelope.model_validate(data)
        else:
            return None
    except ValidationError as e:
        logger.warning("Unrecognized channel payload", extra={"error": str(e)})
        return None

    return _normalize(envelope)

"""Scheduled dispatch domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field


class DispatchStatus(StrEnum):
    """Dispatch task lifecycle. Moves forward only."""

    SCHEDULED = "SCHEDULED"
    SENDING = "SENDING"
    DONE = "DONE"


class DispatchOutcome(StrEnum):
    """Per-recipient delivery outcome."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    FAILED_PERMANENT = "FAILED_PERMANENT"


class DispatchTask(BaseModel):
    """Message scheduled for delivery to every active subscriber of a project."""

    id: str = Field(..., description="Unique task ID from database")
    project_id: str = Field(..., description="Project whose subscribers receive the message")
    title: str = Field(..., description="Task title (used as fallback message text)")
    content: str = Field(default="", description="Message body")
    scheduled_at: str = Field(..., description="When the task becomes due (ISO format, UTC)")
    status: DispatchStatus = Field(default=DispatchStatus.SCHEDULED, description="Lifecycle state")
    repeat_cron: str | None = Field(default=None, description="CRON expression for the next occurrence")
    created_at: str | None = Field(default=None, description="Creation timestamp (ISO format)")

    @property
    def message_text(self) -> str:
        """Text sent to recipients."""
        return self.content or f"Nova tarefa disponível: {self.title}"


class DispatchLog(BaseModel):
    """Append-only record of one delivery attempt to one recipient."""

    id: str = Field(..., description="Unique log ID from database")
    task_id: str = Field(..., description="Dispatch task ID")
    user_id: str = Field(..., description="Recipient user ID")
    outcome: DispatchOutcome = Field(..., description="Delivery outcome")
    error: str | None = Field(default=None, description="Error text for failed deliveries")
    attempts: int = Field(default=0, ge=0, description="Send attempts made")
    created_at: str | None = Field(default=None, description="Creation timestamp (ISO format)")


class DispatchTaskCreate(BaseModel):
    """Pydantic model for creating a dispatch task."""

    project_id: str = Field(..., description="Project whose subscribers receive the message")
    title: str = Field(..., min_length=1, description="Task title")
    content: str = Field(default="", description="Message body")
    scheduled_at: str = Field(..., description="When the task becomes due (ISO format)")
    repeat_cron: str | None = Field(default=None, description="CRON expression for recurring tasks")

"""Project, organization and subscription domain models."""

from pydantic import BaseModel, Field


class Organization(BaseModel):
    """Organization data transfer object."""

    id: str = Field(..., description="Unique organization ID from database")
    name: str = Field(..., description="Organization display name")


class Project(BaseModel):
    """Time-boxed engagement project (a 21-day challenge by default)."""

    id: str = Field(..., description="Unique project ID from database")
    name: str = Field(..., description="Project display name")
    organization_id: str | None = Field(default=None, description="Owning organization ID")
    total_days: int | None = Field(default=None, ge=1, description="Project length in days (unset means default)")
    start_date: str | None = Field(default=None, description="First project day (ISO date)")
    is_active: bool = Field(default=True, description="Whether the project accepts submissions")
    created_at: str | None = Field(default=None, description="Creation timestamp (ISO format)")


class ProjectSubscriber(BaseModel):
    """Enrollment of a user in a project's outbound messaging."""

    id: str = Field(..., description="Unique subscription ID from database")
    project_id: str = Field(..., description="Project the user is subscribed to")
    user_id: str = Field(..., description="Subscribed user ID")
    active: bool = Field(default=True, description="Inactive subscribers receive no dispatches")


class ChannelConnection(BaseModel):
    """Per-project credentials for the outbound chat provider."""

    id: str = Field(..., description="Unique connection ID from database")
    provider: str = Field(..., description="Provider key (e.g., 'manychat')")
    project_id: str = Field(..., description="Project these credentials belong to")
    access_token: str = Field(..., description="Bearer token for the provider API")

"""User domain models."""

from pydantic import BaseModel, Field, field_validator


# Constants for validation
MAX_NAME_LENGTH = 120


class User(BaseModel):
    """User data transfer object."""

    id: str = Field(..., description="Unique user ID from database")
    name: str = Field(..., description="Display name of the user")
    email: str | None = Field(default=None, description="Email address")
    phone: str | None = Field(default=None, description="Phone number as reported by the chat channel")
    organization_id: str | None = Field(default=None, description="Organization the user belongs to")
    external_id: str | None = Field(
        default=None,
        description="Subscriber ID in the chat provider; users without one cannot receive dispatches",
    )


class UserCreate(BaseModel):
    """Pydantic model for creating a user record."""

    name: str = Field(..., description="Display name of the user")
    email: str | None = Field(default=None, description="Email address")
    phone: str | None = Field(default=None, description="Phone number")
    organization_id: str | None = Field(default=None, description="Organization the user belongs to")
    external_id: str | None = Field(default=None, description="Subscriber ID in the chat provider")

    @field_validator("name")
    @classmethod
    def validate_name_usable(cls, v: str) -> str:
        """Validate name is non-empty and reasonably short."""
        v = v.strip()

        if not v:
            raise ValueError("Name cannot be empty")

        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"Name too long (max {MAX_NAME_LENGTH} characters)")

        return v

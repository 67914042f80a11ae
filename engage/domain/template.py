"""Day template domain models."""

from pydantic import BaseModel, Field

from engage.core.config import Constants


class DayTemplate(BaseModel):
    """Per-project, per-day configuration of the micro-action users complete."""

    id: str | None = Field(default=None, description="Database ID (None for synthesized templates)")
    project_id: str = Field(..., description="Project this day belongs to")
    day_number: int = Field(..., ge=1, description="1-based day within the project")
    title: str = Field(..., description="Short title shown to participants")
    description: str = Field(default="", description="Instructions for the day")
    category: str = Field(default="", description="Free-form grouping label")
    points_base: int = Field(default=Constants.DEFAULT_POINTS_BASE, ge=0, description="Points for completing the day")
    requires_photo: bool = Field(default=False, description="Whether a submission must carry media")


class DayTemplateInput(BaseModel):
    """One day in an admin batch upsert."""

    day_number: int = Field(..., ge=1, description="1-based day within the project")
    title: str = Field(..., min_length=1, description="Short title shown to participants")
    description: str = Field(default="", description="Instructions for the day")
    category: str = Field(default="", description="Free-form grouping label")
    points_base: int = Field(default=Constants.DEFAULT_POINTS_BASE, ge=0, description="Points for completing the day")
    requires_photo: bool = Field(default=False, description="Whether a submission must carry media")

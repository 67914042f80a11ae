"""Ranking aggregate domain model."""

from pydantic import BaseModel, Field


class RankingAggregate(BaseModel):
    """Running totals of approved completions for one (user, project) pair."""

    id: str = Field(..., description="Unique aggregate ID from database")
    user_id: str = Field(..., description="User ID")
    project_id: str = Field(..., description="Project ID")
    total_points: int = Field(default=0, ge=0, description="Sum of points over approved records")
    completed_days: int = Field(default=0, ge=0, description="Count of days ever approved")
    completion_rate: float = Field(default=0.0, ge=0, le=100, description="Percentage of project days completed")
    updated_at: str | None = Field(default=None, description="Last update timestamp (ISO format)")

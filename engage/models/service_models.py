"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from pydantic import BaseModel

from engage.domain.completion import CompletionRecord


class SubmissionResult(BaseModel):
    """Outcome of a submit or evaluate call on the completion ledger."""

    record: CompletionRecord
    points_delta: int
    is_new_completion: bool


class UserRankingEntry(BaseModel):
    """User entry in the points leaderboard."""

    user_id: str
    name: str
    total_points: int
    completed_days: int


class OrganizationRankingEntry(BaseModel):
    """Organization entry in the points leaderboard."""

    org_id: str
    name: str
    total_points: int
    average_points: float
    member_count: int


class ProjectLeaderboard(BaseModel):
    """Top of a project's ranking plus the requesting user's standing."""

    top: list[UserRankingEntry]
    user_position: int | None = None


class ProjectSummary(BaseModel):
    """Participation statistics for a project."""

    project_id: str
    participants: int
    completed_all: int


class DispatchRunSummary(BaseModel):
    """Result of sending one dispatch task to its recipients."""

    task_id: str
    sent: int
    failed: int
    next_task_id: str | None = None


"""Completion ledger domain models and enums."""

import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CompletionStatus(StrEnum):
    """Lifecycle of one (user, project, day) completion.

    NOT_STARTED -> PENDING_REVIEW -> APPROVED | REJECTED.
    REJECTED -> PENDING_REVIEW on resubmission. APPROVED is terminal.
    """

    NOT_STARTED = "NOT_STARTED"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class EvaluationDecision(StrEnum):
    """Supervisor verdict on a pending submission."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def normalize_media_refs(raw: Any) -> list[str]:  # noqa: ANN401
    """Turn any stored or submitted media value into an ordered list of references.

    Accepts None, an empty string, a bare path/URL, a JSON array string, or a
    list. Blank entries are dropped and order is preserved.

    Args:
        raw: The value to normalize

    Returns:
        Ordered list of non-empty reference strings
    """
    if raw is None:
        return []

    if isinstance(raw, list | tuple):
        return [str(item).strip() for item in raw if item is not None and str(item).strip()]

    text = str(raw).strip()
    if not text:
        return []

    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            return [text]
        if isinstance(decoded, list):
            return normalize_media_refs(decoded)

    return [text]


class CompletionRecord(BaseModel):
    """Ledger entry for one user's work on one project day."""

    id: str = Field(..., description="Unique record ID from database")
    user_id: str = Field(..., description="Submitting user ID")
    project_id: str = Field(..., description="Project ID")
    day_number: int = Field(..., ge=1, description="1-based project day")
    status: CompletionStatus = Field(..., description="Current lifecycle state")
    points_awarded: int = Field(default=0, ge=0, description="Points this record is worth")
    media_refs: list[str] = Field(default_factory=list, description="Ordered media references (photo URLs/paths)")
    notes: str | None = Field(default=None, description="Submitter or evaluator notes")
    submitted_at: str | None = Field(default=None, description="Last submission timestamp (ISO format)")
    evaluated_at: str | None = Field(default=None, description="Last evaluation timestamp (ISO format)")
    first_approved_at: str | None = Field(default=None, description="First approval timestamp (ISO format)")

    @field_validator("media_refs", mode="before")
    @classmethod
    def decode_media_refs(cls, v: Any) -> list[str]:  # noqa: ANN401
        """Accept the JSON column as stored as well as legacy single-path values."""
        return normalize_media_refs(v)

    @property
    def contribution(self) -> int:
        """Points this record adds to the ranking aggregate (only while approved)."""
        return self.points_awarded if self.status == CompletionStatus.APPROVED else 0

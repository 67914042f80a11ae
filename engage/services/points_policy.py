"""Points policy: the single definition of how many points a completion is worth."""

from engage.core.config import settings
from engage.domain.template import DayTemplate


def submission_points(*, template: DayTemplate, media_present: bool) -> int:
    """Points recorded when a user submits a day.

    Args:
        template: The day being submitted
        media_present: Whether the submission carries at least one media reference

    Returns:
        Template base points, plus the media bonus when media is present
    """
    if media_present:
        return template.points_base + settings.media_bonus_points
    return template.points_base


def approval_points(*, template: DayTemplate, submitted_points: int) -> int:
    """Points a record is worth once approved.

    Re-derived from the template base by default; keeps the submission-time
    amount (including any media bonus) when approval_points_source is "submitted".
    """
    if settings.approval_points_source == "submitted":
        return submitted_points
    return template.points_base


def rejection_points() -> int:
    """Rejected records are worth nothing."""
    return 0

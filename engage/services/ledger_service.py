"""Completion ledger service: idempotent submission and evaluation of project days.

Key Concepts:
- One record per (user, project, day). Resubmitting replaces points, notes and
  media; it never creates a second record or accumulates points.
- A record contributes its points to the ranking aggregate only while APPROVED.
  Every write computes the change in contribution and applies it as a delta in
  the same transaction, so the aggregate always matches the ledger.
- APPROVED is terminal. REJECTED records may be resubmitted.
"""

import logging
from datetime import UTC, datetime

from engage.core import db_client
from engage.core.config import settings
from engage.core.errors import ConfigurationError, InvalidStateTransitionError, NotFoundError, ValidationError
from engage.core.logging import span
from engage.domain.completion import CompletionRecord, CompletionStatus, EvaluationDecision, normalize_media_refs
from engage.domain.template import DayTemplate
from engage.models.service_models import SubmissionResult
from engage.services import points_policy, project_service, ranking_service, template_service


logger = logging.getLogger(__name__)


def _key_filter(*, user_id: str, project_id: str, day_number: int) -> str:
    return (
        f'user_id = "{db_client.sanitize_param(user_id)}" && '
        f'project_id = "{db_client.sanitize_param(project_id)}" && '
        f'day_number = "{int(day_number)}"'
    )


async def _resolve_template(*, project_id: str, day_number: int) -> DayTemplate:
    """Find the day's template, synthesizing one from dispatch tasks when that mode is on.

    Raises:
        ConfigurationError: If the day has no template
    """
    template = await template_service.get_template(project_id=project_id, day_number=day_number)
    if template is None and settings.template_fallback_from_tasks:
        template = await template_service.synthesize_from_tasks(project_id=project_id, day_number=day_number)
    if template is None:
        msg = f"Day {day_number} is not configured for project {project_id}"
        raise ConfigurationError(msg)
    return template


async def _apply_contribution_change(
    *,
    before: CompletionRecord | None,
    after: CompletionRecord,
    is_new_completion: bool,
) -> int:
    """Push the record's change in contribution into the ranking aggregate."""
    old_contribution = before.contribution if before else 0
    points_delta = after.contribution - old_contribution
    if points_delta or is_new_completion:
        await ranking_service.apply_delta(
            user_id=after.user_id,
            project_id=after.project_id,
            points_delta=points_delta,
            is_new_completion=is_new_completion,
        )
    return points_delta


async def submit_completion(
    *,
    user_id: str,
    project_id: str,
    day_number: int,
    media_refs: list[str] | str | None = None,
    notes: str | None = None,
) -> SubmissionResult:
    """Record (or replace) a user's submission for one project day.

    Args:
        user_id: Submitting user
        project_id: Project the day belongs to
        day_number: 1-based project day
        media_refs: Photo references (list, or a legacy single path/JSON string)
        notes: Free-text notes from the submitter

    Returns:
        SubmissionResult with the stored record, now PENDING_REVIEW

    Raises:
        ConfigurationError: If the project or the day's template is not configured
        ValidationError: If the day is outside the project or a required photo is missing
        InvalidStateTransitionError: If the day was already approved
        NotFoundError: If the user does not exist
    """
    with span("ledger_service.submit_completion"):
        project = await project_service.find_project(project_id=project_id)
        if project is None:
            msg = f"Project {project_id} is not configured"
            raise ConfigurationError(msg)

        total_days = project_service.effective_total_days(project)
        if not 1 <= day_number <= total_days:
            msg = f"Day {day_number} is outside project {project_id} (1..{total_days})"
            raise ValidationError(msg)

        await project_service.get_user(user_id=user_id)
        template = await _resolve_template(project_id=project_id, day_number=day_number)

        refs = normalize_media_refs(media_refs)
        if template.requires_photo and not refs:
            msg = f"Day {day_number} ('{template.title}') requires a photo. Attach an image and submit again."
            raise ValidationError(msg)

        points = points_policy.submission_points(template=template, media_present=bool(refs))

        async with db_client.transaction():
            existing = await db_client.get_first_record(
                collection="completion_records",
                filter_query=_key_filter(user_id=user_id, project_id=project_id, day_number=day_number),
            )
            before = CompletionRecord(**existing) if existing else None
            if before is not None and before.status == CompletionStatus.APPROVED:
                msg = f"Day {day_number} was already approved and cannot be resubmitted"
                raise InvalidStateTransitionError(msg)

            stored = await db_client.upsert_record(
                collection="completion_records",
                conflict_fields=("user_id", "project_id", "day_number"),
                data={
                    "user_id": user_id,
                    "project_id": project_id,
                    "day_number": day_number,
                    "status": CompletionStatus.PENDING_REVIEW,
                    "points_awarded": points,
                    "media_refs": refs,
                    "notes": notes,
                    "submitted_at": datetime.now(UTC).isoformat(),
                },
            )
            record = CompletionRecord(**stored)
            points_delta = await _apply_contribution_change(before=before, after=record, is_new_completion=False)

        if points_delta:
            await ranking_service.invalidate_leaderboard_cache()

        logger.info(
            "Recorded submission",
            extra={
                "record_id": record.id,
                "user_id": user_id,
                "project_id": project_id,
                "day_number": day_number,
                "points": points,
                "resubmission": before is not None,
            },
        )
        return SubmissionResult(record=record, points_delta=points_delta, is_new_completion=False)


async def evaluate_completion(
    *,
    record_id: str,
    decision: EvaluationDecision,
    notes: str | None = None,
) -> SubmissionResult:
    """Approve or reject a pending submission.

    Args:
        record_id: Completion record to evaluate
        decision: APPROVED or REJECTED
        notes: Optional evaluator notes (replace the submitter's notes when given)

    Returns:
        SubmissionResult with the evaluated record and the aggregate delta applied

    Raises:
        NotFoundError: If the record does not exist
        InvalidStateTransitionError: If the record is not pending review
        ConfigurationError: If the day's template has since been removed
    """
    with span("ledger_service.evaluate_completion"):
        async with db_client.transaction():
            before = await get_record(record_id=record_id)
            if before.status != CompletionStatus.PENDING_REVIEW:
                msg = f"Completion {record_id} is {before.status} and cannot be evaluated"
                raise InvalidStateTransitionError(msg)

            now = datetime.now(UTC).isoformat()
            is_new_completion = False
            if decision == EvaluationDecision.APPROVED:
                template = await _resolve_template(project_id=before.project_id, day_number=before.day_number)
                is_new_completion = before.first_approved_at is None
                changes = {
                    "status": CompletionStatus.APPROVED,
                    "points_awarded": points_policy.approval_points(
                        template=template, submitted_points=before.points_awarded
                    ),
                    "evaluated_at": now,
                    "first_approved_at": before.first_approved_at or now,
                }
            else:
                changes = {
                    "status": CompletionStatus.REJECTED,
                    "points_awarded": points_policy.rejection_points(),
                    "evaluated_at": now,
                }
            if notes is not None:
                changes["notes"] = notes

            updated = await db_client.update_record_if(
                collection="completion_records",
                record_id=record_id,
                data=changes,
                expected={"status": CompletionStatus.PENDING_REVIEW},
            )
            if updated is None:
                msg = f"Completion {record_id} changed while being evaluated"
                raise InvalidStateTransitionError(msg)

            record = CompletionRecord(**updated)
            points_delta = await _apply_contribution_change(
                before=before, after=record, is_new_completion=is_new_completion
            )

        if points_delta or is_new_completion:
            await ranking_service.invalidate_leaderboard_cache()

        logger.info(
            "Evaluated submission",
            extra={
                "record_id": record_id,
                "decision": decision,
                "points_delta": points_delta,
                "is_new_completion": is_new_completion,
            },
        )
        return SubmissionResult(record=record, points_delta=points_delta, is_new_completion=is_new_completion)


async def get_record(*, record_id: str) -> CompletionRecord:
    """Get a completion record by ID.

    Raises:
        NotFoundError: If the record does not exist
    """
    try:
        record = await db_client.get_record(collection="completion_records", record_id=record_id)
    except KeyError as e:
        msg = f"Completion {record_id} not found"
        raise NotFoundError(msg) from e
    return CompletionRecord(**record)


async def list_user_progress(*, user_id: str, project_id: str) -> list[CompletionRecord]:
    """List a user's records in a project ordered by day."""
    records = await db_client.list_all_records(
        collection="completion_records",
        filter_query=(
            f'user_id = "{db_client.sanitize_param(user_id)}" && '
            f'project_id = "{db_client.sanitize_param(project_id)}"'
        ),
        sort="day_number",
    )
    return [CompletionRecord(**r) for r in records]


async def list_pending_reviews(*, project_id: str) -> list[CompletionRecord]:
    """List a project's submissions awaiting evaluation, oldest first."""
    records = await db_client.list_all_records(
        collection="completion_records",
        filter_query=(
            f'project_id = "{db_client.sanitize_param(project_id)}" && '
            f'status = "{CompletionStatus.PENDING_REVIEW.value}"'
        ),
        sort="submitted_at",
    )
    return [CompletionRecord(**r) for r in records]

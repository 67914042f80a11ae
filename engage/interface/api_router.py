"""HTTP API for completions, rankings, templates and dispatch tasks."""

import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from engage.core.config import Constants
from engage.core.errors import (
    ConfigurationError,
    EngageError,
    NotFoundError,
    ValidationError,
    classify_error_with_response,
)
from engage.domain.completion import CompletionRecord, EvaluationDecision
from engage.domain.dispatch import DispatchLog, DispatchTask, DispatchTaskCreate
from engage.domain.template import DayTemplate, DayTemplateInput
from engage.models.service_models import (
    OrganizationRankingEntry,
    ProjectLeaderboard,
    ProjectSummary,
    SubmissionResult,
    UserRankingEntry,
)
from engage.services import dispatch_service, ledger_service, ranking_service, template_service


router = APIRouter(tags=["engage"])
logger = logging.getLogger(__name__)


class SubmissionRequest(BaseModel):
    """Body of a completion submission."""

    user_id: str = Field(..., description="Submitting user")
    media_refs: list[str] = Field(default_factory=list, description="Photo references, in order")
    notes: str | None = Field(default=None, description="Free-text notes")


class EvaluationRequest(BaseModel):
    """Body of a supervisor evaluation."""

    decision: EvaluationDecision = Field(..., description="APPROVED or REJECTED")
    notes: str | None = Field(default=None, description="Evaluator notes")


class TemplateBatchRequest(BaseModel):
    """Body of a day template batch upsert."""

    templates: list[DayTemplateInput] = Field(..., description="Days to create or replace")


def _status_code_for(exc: EngageError) -> int:
    if isinstance(exc, ValidationError):
        return Constants.HTTP_BAD_REQUEST
    if isinstance(exc, ConfigurationError):
        return Constants.HTTP_UNPROCESSABLE
    if isinstance(exc, NotFoundError):
        return Constants.HTTP_NOT_FOUND
    return Constants.HTTP_SERVER_ERROR


async def engage_error_handler(request: Request, exc: EngageError) -> JSONResponse:
    """Translate domain errors into JSON error responses."""
    status_code = _status_code_for(exc)
    response = classify_error_with_response(exc)
    logger.info(
        "Request rejected",
        extra={"path": request.url.path, "code": response.code, "status_code": status_code},
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": response.message,
            "code": response.code,
            "suggestion": response.suggestion,
        },
    )


@router.post("/projects/{project_id}/days/{day_number}/completions")
async def submit_completion(project_id: str, day_number: int, body: SubmissionRequest) -> SubmissionResult:
    """Submit (or resubmit) a project day for review."""
    return await ledger_service.submit_completion(
        user_id=body.user_id,
        project_id=project_id,
        day_number=day_number,
        media_refs=body.media_refs,
        notes=body.notes,
    )


@router.post("/completions/{record_id}/evaluation")
async def evaluate_completion(record_id: str, body: EvaluationRequest) -> SubmissionResult:
    """Approve or reject a pending submission."""
    return await ledger_service.evaluate_completion(record_id=record_id, decision=body.decision, notes=body.notes)


@router.get("/completions/{record_id}")
async def get_completion(record_id: str) -> CompletionRecord:
    return await ledger_service.get_record(record_id=record_id)


@router.get("/projects/{project_id}/users/{user_id}/progress")
async def get_user_progress(project_id: str, user_id: str) -> list[CompletionRecord]:
    return await ledger_service.list_user_progress(user_id=user_id, project_id=project_id)


@router.get("/projects/{project_id}/pending-reviews")
async def get_pending_reviews(project_id: str) -> list[CompletionRecord]:
    return await ledger_service.list_pending_reviews(project_id=project_id)


@router.get("/rankings/users")
async def get_user_ranking(
    limit: int = Query(default=Constants.LEADERBOARD_SIZE, ge=1, le=Constants.MAX_PER_PAGE_LIMIT),
    project_id: str | None = None,
) -> list[UserRankingEntry]:
    """Rank users by total points."""
    return await ranking_service.get_user_ranking(limit=limit, project_id=project_id)


@router.get("/rankings/organizations")
async def get_organization_ranking(project_id: str | None = None) -> list[OrganizationRankingEntry]:
    """Rank organizations by their members' total points."""
    return await ranking_service.get_organization_ranking(project_id=project_id)


@router.get("/projects/{project_id}/ranking")
async def get_project_ranking(project_id: str, user_id: str | None = None) -> ProjectLeaderboard:
    """Top of a project's leaderboard plus the caller's position."""
    return await ranking_service.get_project_leaderboard(project_id=project_id, user_id=user_id)


@router.get("/projects/{project_id}/summary")
async def get_project_summary(project_id: str) -> ProjectSummary:
    return await ranking_service.get_project_summary(project_id=project_id)


@router.put("/projects/{project_id}/templates")
async def put_templates(project_id: str, body: TemplateBatchRequest) -> list[DayTemplate]:
    """Create or replace day templates; all days are written or none."""
    return await template_service.upsert_templates(project_id=project_id, templates=body.templates)


@router.get("/projects/{project_id}/templates")
async def get_templates(project_id: str) -> list[DayTemplate]:
    return await template_service.list_templates(project_id=project_id)


@router.post("/dispatch/tasks")
async def create_dispatch_task(body: DispatchTaskCreate) -> DispatchTask:
    """Schedule a message for a project's subscribers."""
    return await dispatch_service.create_task(task=body)


@router.get("/dispatch/tasks/{task_id}")
async def get_dispatch_task(task_id: str) -> DispatchTask:
    return await dispatch_service.get_task(task_id=task_id)


@router.get("/dispatch/tasks/{task_id}/logs")
async def get_dispatch_task_logs(task_id: str) -> list[DispatchLog]:
    """Per-recipient delivery log of a task."""
    return await dispatch_service.list_task_logs(task_id=task_id)

"""Inbound chat webhook: turns provider messages into ledger submissions."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from engage.core.config import settings
from engage.core.errors import ConfigurationError
from engage.core.logging import span
from engage.domain.completion import EvaluationDecision
from engage.domain.project import Project
from engage.interface import channel_parser
from engage.models.service_models import SubmissionResult
from engage.services import ledger_service, project_service


router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)


async def _resolve_project(project_id: str | None) -> Project:
    """Use the project named in the payload, or the oldest active project."""
    if project_id:
        project = await project_service.find_project(project_id=project_id)
        if project is None:
            msg = f"Project {project_id} is not configured"
            raise ConfigurationError(msg)
        return project

    project = await project_service.get_oldest_active_project()
    if project is None:
        msg = "No active project found and no project given in the payload"
        raise ConfigurationError(msg)
    logger.info("Payload named no project, defaulting to oldest active", extra={"project_id": project.id})
    return project


async def process_channel_submission(submission: channel_parser.InboundSubmission) -> SubmissionResult:
    """Route a normalized inbound message into the completion ledger.

    Args:
        submission: Parsed webhook payload

    Returns:
        The ledger result (already approved when auto-approval is on)
    """
    with span("webhook.process_channel_submission"):
        user = await project_service.get_or_create_channel_user(
            external_id=submission.external_id,
            phone=submission.phone,
            name=submission.name,
        )
        project = await _resolve_project(submission.project_id)
        day_number = submission.day_number or project_service.resolve_day_number(project)

        result = await ledger_service.submit_completion(
            user_id=user.id,
            project_id=project.id,
            day_number=day_number,
            media_refs=submission.media_refs,
            notes=submission.notes,
        )

        if settings.auto_approve_channel_submissions:
            result = await ledger_service.evaluate_completion(
                record_id=result.record.id,
                decision=EvaluationDecision.APPROVED,
            )

        logger.info(
            "Processed channel submission",
            extra={
                "user_id": user.id,
                "project_id": project.id,
                "day_number": day_number,
                "record_id": result.record.id,
                "status": result.record.status,
            },
        )
        return result


@router.post("/channel")
async def receive_channel_webhook(request: Request) -> dict[str, Any]:
    """Receive a chat provider webhook POST.

    Returns:
        Status dictionary; "ignored" for payloads of unknown shape

    Raises:
        HTTPException: If the body is not valid JSON
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    submission = channel_parser.parse_channel_webhook(payload)
    if submission is None:
        return {"status": "ignored"}

    result = await process_channel_submission(submission)
    return {
        "status": "received",
        "record_id": result.record.id,
        "completion_status": result.record.status,
        "points_awarded": result.record.points_awarded,
    }

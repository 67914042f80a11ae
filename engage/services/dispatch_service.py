"""Dispatch service: scheduled fan-out of messages to project subscribers.

Key Concepts:
- Tick: one scheduler invocation. It runs only while holding the storage
  lease, so overlapping ticks (same process or another one) are no-ops.
- Claim: each due task moves SCHEDULED -> SENDING through a conditional update;
  only the worker whose update matched sends it.
- Per-recipient isolation: every recipient gets exactly one DispatchLog row per
  run, and a failure for one recipient never stops the others.
"""

import json
import logging
import uuid
from datetime import UTC, datetime

from croniter import croniter

from engage.core import db_client
from engage.core.config import Constants, settings
from engage.core.errors import ChannelError, NotFoundError, ValidationError
from engage.core.logging import span
from engage.core.scheduler_tracker import job_tracker
from engage.domain.dispatch import DispatchLog, DispatchOutcome, DispatchStatus, DispatchTask, DispatchTaskCreate
from engage.domain.user import User
from engage.interface import channel_sender
from engage.models.service_models import DispatchRunSummary
from engage.services import lease_service, project_service


logger = logging.getLogger(__name__)


def _to_utc_iso(value: str | datetime) -> str:
    """Normalize a timestamp to the ISO/UTC form used for due-date comparisons."""
    parsed = datetime.fromisoformat(value) if isinstance(value, str) else value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat()


def _error_text(error: object) -> str:
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error, default=str)
    except (TypeError, ValueError):
        return repr(error)


async def create_task(*, task: DispatchTaskCreate) -> DispatchTask:
    """Schedule a message for a project's subscribers.

    Raises:
        NotFoundError: If the project does not exist
        ValidationError: If scheduled_at or repeat_cron cannot be parsed
    """
    with span("dispatch_service.create_task"):
        await project_service.get_project(project_id=task.project_id)

        try:
            scheduled_at = _to_utc_iso(task.scheduled_at)
        except ValueError as e:
            msg = f"Invalid scheduled_at: {task.scheduled_at}"
            raise ValidationError(msg) from e

        if task.repeat_cron and not croniter.is_valid(task.repeat_cron):
            msg = f"Invalid repeat_cron expression: {task.repeat_cron}"
            raise ValidationError(msg)

        record = await db_client.create_record(
            collection="dispatch_tasks",
            data={
                "project_id": task.project_id,
                "title": task.title,
                "content": task.content,
                "scheduled_at": scheduled_at,
                "status": DispatchStatus.SCHEDULED,
                "repeat_cron": task.repeat_cron,
            },
        )
        logger.info(
            "Scheduled dispatch task",
            extra={"task_id": record["id"], "project_id": task.project_id, "scheduled_at": scheduled_at},
        )
        return DispatchTask(**record)


async def get_task(*, task_id: str) -> DispatchTask:
    """Get a dispatch task by ID.

    Raises:
        NotFoundError: If the task does not exist
    """
    try:
        record = await db_client.get_record(collection="dispatch_tasks", record_id=task_id)
    except KeyError as e:
        msg = f"Dispatch task {task_id} not found"
        raise NotFoundError(msg) from e
    return DispatchTask(**record)


async def list_tasks(*, project_id: str | None = None, status: DispatchStatus | None = None) -> list[DispatchTask]:
    """List dispatch tasks ordered by scheduled time."""
    filters = []
    if project_id is not None:
        filters.append(f'project_id = "{db_client.sanitize_param(project_id)}"')
    if status is not None:
        filters.append(f'status = "{status.value}"')

    records = await db_client.list_all_records(
        collection="dispatch_tasks",
        filter_query=" && ".join(filters),
        sort="scheduled_at",
    )
    return [DispatchTask(**r) for r in records]


async def list_task_logs(*, task_id: str) -> list[DispatchLog]:
    """List the delivery log of a task in write order.

    Raises:
        NotFoundError: If the task does not exist
    """
    await get_task(task_id=task_id)
    records = await db_client.list_all_records(
        collection="dispatch_logs",
        filter_query=f'task_id = "{db_client.sanitize_param(task_id)}"',
    )
    return [DispatchLog(**r) for r in records]


async def _claim(task: DispatchTask) -> bool:
    """Move a task SCHEDULED -> SENDING; False if another worker got there first."""
    claimed = await db_client.update_record_if(
        collection="dispatch_tasks",
        record_id=task.id,
        data={"status": DispatchStatus.SENDING},
        expected={"status": DispatchStatus.SCHEDULED},
    )
    return claimed is not None


async def _record_outcome(
    *,
    task: DispatchTask,
    recipient: User,
    outcome: DispatchOutcome,
    error: str | None,
    attempts: int,
) -> None:
    await db_client.create_record(
        collection="dispatch_logs",
        data={
            "task_id": task.id,
            "user_id": recipient.id,
            "outcome": outcome,
            "error": error,
            "attempts": attempts,
        },
    )


async def _deliver(*, task: DispatchTask, recipient: User) -> bool:
    """Send one task to one recipient and log the outcome. Never raises for send failures."""
    max_attempts = settings.dispatch_max_attempts

    if not recipient.external_id:
        await _record_outcome(
            task=task,
            recipient=recipient,
            outcome=DispatchOutcome.FAILURE,
            error=Constants.RECIPIENT_NOT_CONNECTED_ERROR,
            attempts=0,
        )
        return False

    try:
        result = await channel_sender.deliver_message(
            project_id=task.project_id,
            subscriber_id=recipient.external_id,
            text=task.message_text,
            max_retries=max_attempts,
            retry_delay=settings.dispatch_retry_delay_seconds,
        )
        success, error, attempts = True, None, result.attempts
    except ChannelError as e:
        logger.warning(
            "Channel rejected message",
            extra={"task_id": task.id, "user_id": recipient.id, "error": str(e), "attempts": e.attempts},
        )
        success, error, attempts = False, str(e), e.attempts
    except Exception as e:
        logger.exception("Channel send raised", extra={"task_id": task.id, "user_id": recipient.id})
        success, error, attempts = False, _error_text(e.args[0] if len(e.args) == 1 else str(e)), 1

    if success:
        outcome = DispatchOutcome.SUCCESS
    elif max_attempts > 1 and attempts >= max_attempts:
        outcome = DispatchOutcome.FAILED_PERMANENT
    else:
        outcome = DispatchOutcome.FAILURE

    await _record_outcome(
        task=task,
        recipient=recipient,
        outcome=outcome,
        error=None if success else _error_text(error),
        attempts=attempts,
    )
    return success


async def _schedule_next_occurrence(task: DispatchTask) -> str | None:
    """Create the next SCHEDULED copy of a recurring task."""
    if not task.repeat_cron:
        return None

    base = max(datetime.fromisoformat(task.scheduled_at), datetime.now(UTC))
    next_run = croniter(task.repeat_cron, base).get_next(datetime)
    record = await db_client.create_record(
        collection="dispatch_tasks",
        data={
            "project_id": task.project_id,
            "title": task.title,
            "content": task.content,
            "scheduled_at": _to_utc_iso(next_run),
            "status": DispatchStatus.SCHEDULED,
            "repeat_cron": task.repeat_cron,
        },
    )
    logger.info("Scheduled next occurrence", extra={"task_id": task.id, "next_task_id": record["id"]})
    return record["id"]


async def send_task(task: DispatchTask) -> DispatchRunSummary:
    """Fan a claimed task out to every active subscriber, then mark it DONE."""
    with span("dispatch_service.send_task"):
        recipients = await project_service.list_active_subscribers(project_id=task.project_id)

        sent = 0
        failed = 0
        for recipient in recipients:
            try:
                delivered = await _deliver(task=task, recipient=recipient)
            except Exception:
                # Logging the outcome itself failed; keep going with the rest
                logger.exception("Failed to record delivery", extra={"task_id": task.id, "user_id": recipient.id})
                delivered = False
            if delivered:
                sent += 1
            else:
                failed += 1

        await db_client.update_record(
            collection="dispatch_tasks",
            record_id=task.id,
            data={"status": DispatchStatus.DONE},
        )
        next_task_id = await _schedule_next_occurrence(task)

        logger.info(
            "Dispatch task done",
            extra={"task_id": task.id, "recipients": len(recipients), "sent": sent, "failed": failed},
        )
        return DispatchRunSummary(task_id=task.id, sent=sent, failed=failed, next_task_id=next_task_id)


async def process_due_tasks(*, now: datetime | None = None) -> list[DispatchRunSummary]:
    """Send every SCHEDULED task whose time has come, oldest first.

    Args:
        now: Cut-off time (defaults to UTC now)

    Returns:
        One summary per task this call claimed and sent
    """
    with span("dispatch_service.process_due_tasks"):
        cutoff = _to_utc_iso(now or datetime.now(UTC))
        records = await db_client.list_all_records(
            collection="dispatch_tasks",
            filter_query=f'status = "{DispatchStatus.SCHEDULED.value}" && scheduled_at <= "{cutoff}"',
            sort="scheduled_at",
        )

        summaries = []
        for record in records:
            task = DispatchTask(**record)
            if not await _claim(task):
                logger.info("Task claimed by another worker", extra={"task_id": task.id})
                continue
            summaries.append(await send_task(task))

        if summaries:
            logger.info("Processed due dispatch tasks", extra={"count": len(summaries)})
        return summaries


async def tick() -> list[DispatchRunSummary]:
    """Run one dispatch cycle under the dispatch lease.

    Safe to call concurrently: a tick that cannot take the lease returns
    immediately. Errors are logged and recorded in the job tracker, never raised,
    so the scheduler keeps firing.

    Returns:
        Summaries of the tasks sent (empty when skipped or failed)
    """
    holder = uuid.uuid4().hex
    job_name = Constants.DISPATCH_JOB_NAME
    acquired = False

    try:
        acquired = await lease_service.acquire(
            name=Constants.DISPATCH_LEASE_NAME,
            holder=holder,
            ttl_seconds=settings.dispatch_lease_ttl_seconds,
        )
        if not acquired:
            return []

        await job_tracker.record_job_start(job_name)
        summaries = await process_due_tasks()
    except Exception as e:
        logger.exception("Dispatch tick failed", extra={"lease_acquired": acquired})
        await job_tracker.record_job_failure(job_name, str(e))
        return []
    else:
        await job_tracker.record_job_success(job_name)
        return summaries
    finally:
        if acquired:
            await lease_service.release(name=Constants.DISPATCH_LEASE_NAME, holder=holder)

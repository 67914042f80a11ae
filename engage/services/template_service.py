"""Day template service: per-project, per-day configuration."""

import logging

from engage.core import db_client
from engage.core.config import Constants
from engage.core.errors import ValidationError
from engage.core.logging import span
from engage.domain.template import DayTemplate, DayTemplateInput
from engage.services import project_service


logger = logging.getLogger(__name__)


async def get_template(*, project_id: str, day_number: int) -> DayTemplate | None:
    """Get the template for one project day, or None if it is not configured."""
    record = await db_client.get_first_record(
        collection="day_templates",
        filter_query=(f'project_id = "{db_client.sanitize_param(project_id)}" && day_number = "{int(day_number)}"'),
    )
    return DayTemplate(**record) if record else None


async def list_templates(*, project_id: str) -> list[DayTemplate]:
    """List a project's templates ordered by day."""
    records = await db_client.list_all_records(
        collection="day_templates",
        filter_query=f'project_id = "{db_client.sanitize_param(project_id)}"',
        sort="day_number",
    )
    return [DayTemplate(**r) for r in records]


async def upsert_templates(*, project_id: str, templates: list[DayTemplateInput]) -> list[DayTemplate]:
    """Create or replace a batch of day templates atomically.

    Either every day in the batch is written or none is.

    Args:
        project_id: Project the templates belong to
        templates: Days to write, keyed by day_number

    Returns:
        The stored templates ordered by day

    Raises:
        NotFoundError: If the project does not exist
        ValidationError: If a day repeats within the batch or lies outside the project
    """
    with span("template_service.upsert_templates"):
        project = await project_service.get_project(project_id=project_id)
        total_days = project_service.effective_total_days(project)

        seen: set[int] = set()
        for template in templates:
            if template.day_number in seen:
                msg = f"Day {template.day_number} appears more than once in the batch"
                raise ValidationError(msg)
            if template.day_number > total_days:
                msg = f"Day {template.day_number} is outside project {project_id} (1..{total_days})"
                raise ValidationError(msg)
            seen.add(template.day_number)

        stored: list[DayTemplate] = []
        async with db_client.transaction():
            for template in templates:
                record = await db_client.upsert_record(
                    collection="day_templates",
                    conflict_fields=("project_id", "day_number"),
                    data={"project_id": project_id, **template.model_dump()},
                )
                stored.append(DayTemplate(**record))

        logger.info("Upserted day templates", extra={"project_id": project_id, "count": len(stored)})
        return sorted(stored, key=lambda t: t.day_number)


async def synthesize_from_tasks(*, project_id: str, day_number: int) -> DayTemplate | None:
    """Build a stand-in template from the project's ``day_number``-th dispatch task.

    Compatibility path for projects that configure days only through dispatch
    tasks. The result has default base points and no photo requirement.

    Returns:
        The synthesized template, or None if the project has fewer tasks
    """
    tasks = await db_client.list_records(
        collection="dispatch_tasks",
        filter_query=f'project_id = "{db_client.sanitize_param(project_id)}"',
        sort="scheduled_at",
        page=day_number,
        per_page=1,
    )
    if not tasks:
        return None

    task = tasks[0]
    logger.warning(
        "Synthesized day template from dispatch task",
        extra={"project_id": project_id, "day_number": day_number, "task_id": task["id"]},
    )
    return DayTemplate(
        project_id=project_id,
        day_number=day_number,
        title=task["title"],
        description=task.get("content") or "",
        points_base=Constants.DEFAULT_POINTS_BASE,
        requires_photo=False,
    )

"""Project service for projects, organizations, participants and channel credentials."""

import logging
from datetime import UTC, date, datetime

from engage.core import db_client
from engage.core.config import Constants, settings
from engage.core.errors import NotFoundError, ValidationError
from engage.core.logging import span
from engage.domain.project import ChannelConnection, Organization, Project, ProjectSubscriber
from engage.domain.user import User, UserCreate


logger = logging.getLogger(__name__)

PLACEHOLDER_USER_NAME = "Participante"


async def create_organization(*, name: str) -> Organization:
    """Create an organization."""
    with span("project_service.create_organization"):
        record = await db_client.create_record(collection="organizations", data={"name": name})
        return Organization(**record)


async def get_organization(*, organization_id: str) -> Organization:
    """Get an organization by ID.

    Raises:
        NotFoundError: If the organization does not exist
    """
    try:
        record = await db_client.get_record(collection="organizations", record_id=organization_id)
    except KeyError as e:
        msg = f"Organization {organization_id} not found"
        raise NotFoundError(msg) from e
    return Organization(**record)


async def create_project(
    *,
    name: str,
    organization_id: str | None = None,
    total_days: int | None = Constants.DEFAULT_TOTAL_DAYS,
    start_date: str | None = None,
    is_active: bool = True,
) -> Project:
    """Create a project.

    Args:
        name: Project display name
        organization_id: Owning organization
        total_days: Project length in days (None leaves it unset)
        start_date: First project day (ISO date)
        is_active: Whether the project accepts submissions

    Returns:
        The created project
    """
    with span("project_service.create_project"):
        if total_days is not None and total_days < 1:
            msg = "total_days must be at least 1"
            raise ValidationError(msg)

        record = await db_client.create_record(
            collection="projects",
            data={
                "name": name,
                "organization_id": organization_id,
                "total_days": total_days,
                "start_date": start_date,
                "is_active": is_active,
            },
        )
        logger.info("Created project", extra={"project_id": record["id"], "project_name": name})
        return Project(**record)


async def find_project(*, project_id: str) -> Project | None:
    """Get a project by ID, or None if it does not exist."""
    try:
        record = await db_client.get_record(collection="projects", record_id=project_id)
    except KeyError:
        return None
    return Project(**record)


async def get_project(*, project_id: str) -> Project:
    """Get a project by ID.

    Raises:
        NotFoundError: If the project does not exist
    """
    project = await find_project(project_id=project_id)
    if project is None:
        msg = f"Project {project_id} not found"
        raise NotFoundError(msg)
    return project


async def get_oldest_active_project() -> Project | None:
    """Return the earliest-created active project, used when a caller does not name one."""
    record = await db_client.get_first_record(
        collection="projects",
        filter_query='is_active = "true"',
        sort="created_at",
    )
    return Project(**record) if record else None


def effective_total_days(project: Project | None) -> int:
    """Return the project's length, falling back to the default when unset."""
    if project is None or not project.total_days:
        logger.warning(
            "Project total_days unset, using default",
            extra={
                "project_id": project.id if project else None,
                "default_total_days": Constants.DEFAULT_TOTAL_DAYS,
            },
        )
        return Constants.DEFAULT_TOTAL_DAYS
    return project.total_days


def resolve_day_number(project: Project, *, today: date | None = None) -> int:
    """Compute the current project day from its start date, capped at the project length.

    Raises:
        ValidationError: If the project has no start date or has not started yet
    """
    if not project.start_date:
        msg = "Project has no start date; the day number must be provided explicitly"
        raise ValidationError(msg)

    today = today or datetime.now(UTC).date()
    start = date.fromisoformat(project.start_date[:10])
    day_number = (today - start).days + 1
    if day_number < 1:
        msg = f"Project {project.id} starts on {start.isoformat()}"
        raise ValidationError(msg)
    return min(day_number, effective_total_days(project))


async def create_user(*, user: UserCreate) -> User:
    """Create a participant."""
    with span("project_service.create_user"):
        record = await db_client.create_record(collection="users", data=user.model_dump())
        logger.info("Created user", extra={"user_id": record["id"]})
        return User(**record)


async def get_user(*, user_id: str) -> User:
    """Get a user by ID.

    Raises:
        NotFoundError: If the user does not exist
    """
    try:
        record = await db_client.get_record(collection="users", record_id=user_id)
    except KeyError as e:
        msg = f"User {user_id} not found"
        raise NotFoundError(msg) from e
    return User(**record)


async def find_user_by_external_id(*, external_id: str) -> User | None:
    """Find a user by chat provider subscriber ID."""
    record = await db_client.get_first_record(
        collection="users",
        filter_query=f'external_id = "{db_client.sanitize_param(external_id)}"',
    )
    return User(**record) if record else None


async def find_user_by_phone(*, phone: str) -> User | None:
    """Find a user by phone number."""
    record = await db_client.get_first_record(
        collection="users",
        filter_query=f'phone = "{db_client.sanitize_param(phone)}"',
    )
    return User(**record) if record else None


async def get_or_create_channel_user(
    *,
    external_id: str | None,
    phone: str | None,
    name: str | None,
) -> User:
    """Resolve the sender of an inbound chat message, creating a placeholder participant if unknown.

    Lookup order is subscriber ID, then phone. A user found by phone without a
    subscriber ID gets it linked so future dispatches reach them.

    Raises:
        ValidationError: If the payload carries neither a subscriber ID nor a phone
    """
    with span("project_service.get_or_create_channel_user"):
        if not external_id and not phone:
            msg = "User not identified in payload"
            raise ValidationError(msg)

        user = await find_user_by_external_id(external_id=external_id) if external_id else None
        if user is None and phone:
            user = await find_user_by_phone(phone=phone)
            if user is not None and external_id and not user.external_id:
                record = await db_client.update_record(
                    collection="users",
                    record_id=user.id,
                    data={"external_id": external_id},
                )
                user = User(**record)

        if user is not None:
            return user

        user = await create_user(
            user=UserCreate(name=name or PLACEHOLDER_USER_NAME, phone=phone, external_id=external_id),
        )
        logger.info(
            "Created placeholder user for inbound message",
            extra={"user_id": user.id, "external_id": external_id, "phone": phone},
        )
        return user


async def subscribe(*, project_id: str, user_id: str, active: bool = True) -> ProjectSubscriber:
    """Enroll a user in a project's dispatches (or toggle an existing enrollment)."""
    with span("project_service.subscribe"):
        record = await db_client.upsert_record(
            collection="project_subscribers",
            conflict_fields=("project_id", "user_id"),
            data={"project_id": project_id, "user_id": user_id, "active": active},
        )
        return ProjectSubscriber(**record)


async def list_active_subscribers(*, project_id: str) -> list[User]:
    """List users actively subscribed to a project, in enrollment order."""
    rows = await db_client.fetch_all(
        """
        SELECT u.* FROM project_subscribers s
        JOIN users u ON u.id = s.user_id
        WHERE s.project_id = ? AND s.active = 1
        ORDER BY s.id
        """,
        (int(project_id),),
    )
    return [User(**row) for row in rows]


async def set_channel_connection(
    *,
    project_id: str,
    access_token: str,
    provider: str | None = None,
) -> ChannelConnection:
    """Store (or replace) the outbound channel credentials of a project."""
    with span("project_service.set_channel_connection"):
        record = await db_client.upsert_record(
            collection="channel_connections",
            conflict_fields=("provider", "project_id"),
            data={
                "provider": provider or settings.channel_provider,
                "project_id": project_id,
                "access_token": access_token,
            },
        )
        logger.info("Stored channel connection", extra={"project_id": project_id, "provider": record["provider"]})
        return ChannelConnection(**record)

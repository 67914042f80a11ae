"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest

from engage.core import db_client
from engage.core.config import settings
from engage.core.scheduler_tracker import job_tracker
from engage.domain.project import Organization, Project
from engage.domain.template import DayTemplateInput
from engage.domain.user import User, UserCreate
from engage.services import project_service, template_service


@pytest.fixture
async def db(tmp_path, monkeypatch) -> AsyncIterator[None]:
    """Point the app at a fresh SQLite file with the full schema."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "engage_test.db"))
    job_tracker.reset()

    await db_client.init_db()
    yield
    await db_client.close_connection()


@pytest.fixture
async def organization(db) -> Organization:
    return await project_service.create_organization(name="Acme")


@pytest.fixture
async def project(organization) -> Project:
    """A 21-day project that started today."""
    return await project_service.create_project(
        name="21 Day Challenge",
        organization_id=organization.id,
        total_days=21,
        start_date=datetime.now(UTC).date().isoformat(),
    )


@pytest.fixture
async def user(organization) -> User:
    return await project_service.create_user(
        user=UserCreate(name="Ana", organization_id=organization.id, external_id="sub-ana", phone="+5511999990001"),
    )


@pytest.fixture
async def templates(project) -> None:
    """Day 1 plain, day 3 requires a photo, days 2 and 4..21 plain."""
    await template_service.upsert_templates(
        project_id=project.id,
        templates=[
            DayTemplateInput(day_number=day, title=f"Day {day}", points_base=10, requires_photo=day == 3)
            for day in range(1, 22)
        ],
    )

"""Tests for ranking aggregates and leaderboards."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from engage.core.errors import NotFoundError
from engage.domain.completion import EvaluationDecision
from engage.domain.template import DayTemplateInput
from engage.domain.user import UserCreate
from engage.models.service_models import UserRankingEntry
from engage.services import ledger_service, project_service, ranking_service, template_service


async def _approve(*, user_id: str, project_id: str, day_number: int) -> None:
    submitted = await ledger_service.submit_completion(user_id=user_id, project_id=project_id, day_number=day_number)
    await ledger_service.evaluate_completion(record_id=submitted.record.id, decision=EvaluationDecision.APPROVED)


@pytest.mark.unit
class TestApplyDelta:
    """Tests for the atomic aggregate update."""

    async def test_creates_aggregate(self, user, project):
        aggregate = await ranking_service.apply_delta(
            user_id=user.id, project_id=project.id, points_delta=10, is_new_completion=True
        )

        assert aggregate.total_points == 10
        assert aggregate.completed_days == 1
        assert aggregate.completion_rate == pytest.approx(4.76)

    async def test_accumulates(self, user, project):
        for _ in range(3):
            aggregate = await ranking_service.apply_delta(
                user_id=user.id, project_id=project.id, points_delta=10, is_new_completion=True
            )

        assert aggregate.total_points == 30
        assert aggregate.completed_days == 3
        assert aggregate.completion_rate == pytest.approx(14.29)

    async def test_points_floor_at_zero(self, user, project):
        await ranking_service.apply_delta(user_id=user.id, project_id=project.id, points_delta=5, is_new_completion=True)

        aggregate = await ranking_service.apply_delta(
            user_id=user.id, project_id=project.id, points_delta=-20, is_new_completion=False
        )

        assert aggregate.total_points == 0
        assert aggregate.completed_days == 1

    async def test_first_delta_negative(self, user, project):
        aggregate = await ranking_service.apply_delta(
            user_id=user.id, project_id=project.id, points_delta=-5, is_new_completion=False
        )

        assert aggregate.total_points == 0
        assert aggregate.completed_days == 0

    async def test_rate_capped_at_100(self, organization, user):
        short = await project_service.create_project(name="Sprint", organization_id=organization.id, total_days=2)

        for _ in range(3):
            aggregate = await ranking_service.apply_delta(
                user_id=user.id, project_id=short.id, points_delta=10, is_new_completion=True
            )

        assert aggregate.completed_days == 3
        assert aggregate.completion_rate == 100

    async def test_unset_total_days_uses_default(self, organization, user):
        open_ended = await project_service.create_project(name="Open", organization_id=organization.id, total_days=None)

        aggregate = await ranking_service.apply_delta(
            user_id=user.id, project_id=open_ended.id, points_delta=10, is_new_completion=True
        )

        assert aggregate.completion_rate == pytest.approx(4.76)

    async def test_leaves_cache_to_caller(self, user, project):
        with patch(
            "engage.services.ranking_service.redis_client.delete_pattern", new_callable=AsyncMock
        ) as mock_delete:
            await ranking_service.apply_delta(
                user_id=user.id, project_id=project.id, points_delta=10, is_new_completion=True
            )

        mock_delete.assert_not_called()

    async def test_invalidate_leaderboard_cache(self, db):
        with patch(
            "engage.services.ranking_service.redis_client.delete_pattern", new_callable=AsyncMock
        ) as mock_delete:
            await ranking_service.invalidate_leaderboard_cache()

        mock_delete.assert_awaited_once_with("engage:leaderboard:*")


@pytest.mark.unit
class TestUserRanking:
    """Tests for user leaderboards."""

    @pytest.fixture
    async def bruno(self, organization):
        return await project_service.create_user(
            user=UserCreate(name="Bruno", organization_id=organization.id, external_id="sub-bruno"),
        )

    async def test_orders_by_points(self, user, bruno, project, templates):
        await _approve(user_id=bruno.id, project_id=project.id, day_number=1)
        await _approve(user_id=bruno.id, project_id=project.id, day_number=2)
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        ranking = await ranking_service.get_user_ranking()

        assert [(e.name, e.total_points, e.completed_days) for e in ranking] == [("Bruno", 20, 2), ("Ana", 10, 1)]

    async def test_ties_keep_first_arrival(self, user, bruno, project, templates):
        await _approve(user_id=bruno.id, project_id=project.id, day_number=1)
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        ranking = await ranking_service.get_user_ranking()

        assert [e.user_id for e in ranking] == [bruno.id, user.id]

    async def test_limit(self, user, bruno, project, templates):
        await _approve(user_id=bruno.id, project_id=project.id, day_number=1)
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        ranking = await ranking_service.get_user_ranking(limit=1)

        assert len(ranking) == 1

    async def test_project_filter(self, organization, user, bruno, project, templates):
        other = await project_service.create_project(name="Other", organization_id=organization.id)
        await ranking_service.apply_delta(user_id=bruno.id, project_id=other.id, points_delta=50, is_new_completion=True)
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        in_project = await ranking_service.get_user_ranking(project_id=project.id)
        overall = await ranking_service.get_user_ranking()

        assert [e.user_id for e in in_project] == [user.id]
        assert [e.user_id for e in overall] == [bruno.id, user.id]

    async def test_uses_cache_when_present(self, db):
        cached = json.dumps([{"user_id": "7", "name": "Cached", "total_points": 99, "completed_days": 9}])
        with patch("engage.services.ranking_service.redis_client.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = cached
            ranking = await ranking_service.get_user_ranking()

        assert ranking == [UserRankingEntry(user_id="7", name="Cached", total_points=99, completed_days=9)]

    async def test_ignores_corrupt_cache(self, user, project, templates):
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        with patch("engage.services.ranking_service.redis_client.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = "{not json"
            ranking = await ranking_service.get_user_ranking()

        assert [e.user_id for e in ranking] == [user.id]


@pytest.mark.unit
class TestOrganizationRanking:
    async def test_sums_members_and_lists_empty_orgs(self, organization, user, project, templates):
        empty = await project_service.create_organization(name="Empty Co")
        rival = await project_service.create_organization(name="Rival")
        rival_user = await project_service.create_user(user=UserCreate(name="Rita", organization_id=rival.id))
        await project_service.create_user(user=UserCreate(name="Teo", organization_id=organization.id))

        await _approve(user_id=user.id, project_id=project.id, day_number=1)
        await _approve(user_id=user.id, project_id=project.id, day_number=2)
        await _approve(user_id=rival_user.id, project_id=project.id, day_number=1)

        ranking = await ranking_service.get_organization_ranking()

        assert [e.org_id for e in ranking] == [organization.id, rival.id, empty.id]
        acme = ranking[0]
        assert acme.total_points == 20
        assert acme.member_count == 2
        assert acme.average_points == 10.0
        assert ranking[2].total_points == 0
        assert ranking[2].average_points == 0.0


@pytest.mark.unit
class TestProjectViews:
    async def test_leaderboard_position(self, organization, user, project, templates):
        bruno = await project_service.create_user(user=UserCreate(name="Bruno", organization_id=organization.id))
        await _approve(user_id=bruno.id, project_id=project.id, day_number=1)
        await _approve(user_id=bruno.id, project_id=project.id, day_number=2)
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        board = await ranking_service.get_project_leaderboard(project_id=project.id, user_id=user.id)

        assert [e.user_id for e in board.top] == [bruno.id, user.id]
        assert board.user_position == 2

    async def test_leaderboard_position_unknown_user(self, user, project, templates):
        await _approve(user_id=user.id, project_id=project.id, day_number=1)

        board = await ranking_service.get_project_leaderboard(project_id=project.id, user_id="999")

        assert board.user_position is None

    async def test_summary(self, organization, user):
        short = await project_service.create_project(name="Sprint", organization_id=organization.id, total_days=2)

        await template_service.upsert_templates(
            project_id=short.id,
            templates=[DayTemplateInput(day_number=d, title=f"Day {d}") for d in (1, 2)],
        )
        bruno = await project_service.create_user(user=UserCreate(name="Bruno", organization_id=organization.id))
        await _approve(user_id=user.id, project_id=short.id, day_number=1)
        await _approve(user_id=user.id, project_id=short.id, day_number=2)
        await ledger_service.submit_completion(user_id=bruno.id, project_id=short.id, day_number=1)

        summary = await ranking_service.get_project_summary(project_id=short.id)

        assert summary.participants == 2
        assert summary.completed_all == 1

    @pytest.mark.parametrize("project_id", ["abc", "999"])
    async def test_unknown_project(self, db, project_id):
        with pytest.raises(NotFoundError):
            await ranking_service.get_project_summary(project_id=project_id)
        with pytest.raises(NotFoundError):
            await ranking_service.get_project_leaderboard(project_id=project_id)
        with pytest.raises(NotFoundError):
            await ranking_service.get_user_ranking(project_id=project_id)
        with pytest.raises(NotFoundError):
            await ranking_service.get_organization_ranking(project_id=project_id)

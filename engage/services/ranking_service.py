"""Ranking service: per-(user, project) aggregates and leaderboards.

Key Concepts:
- Aggregate: one row per (user, project) holding total points, completed days
  and completion rate. It always equals the sum/count over APPROVED ledger
  records for the pair, because the ledger applies every change as a delta in
  the same transaction as the record write.
- Completed days only ever grow: a day counts once, on its first approval.
- Leaderboards are read-through cached in Redis. Callers invalidate the cache
  once the transaction that applied a delta has committed.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from engage.core import db_client
from engage.core.config import Constants
from engage.core.logging import span
from engage.core.redis_client import redis_client
from engage.domain.ranking import RankingAggregate
from engage.models.service_models import (
    OrganizationRankingEntry,
    ProjectLeaderboard,
    ProjectSummary,
    UserRankingEntry,
)
from engage.services import project_service


logger = logging.getLogger(__name__)

_CACHE_KEY_PREFIX = "engage:leaderboard"

_APPLY_DELTA_SQL = """
    INSERT INTO ranking_aggregates (user_id, project_id, total_points, completed_days, completion_rate, updated_at)
    VALUES (?, ?, MAX(0, ?), ?, MIN(100.0, ROUND(? * 100.0 / ?, 2)), ?)
    ON CONFLICT (user_id, project_id) DO UPDATE SET
        total_points = MAX(0, ranking_aggregates.total_points + ?),
        completed_days = ranking_aggregates.completed_days + ?,
        completion_rate = MIN(100.0, ROUND((ranking_aggregates.completed_days + ?) * 100.0 / ?, 2)),
        updated_at = excluded.updated_at
"""


async def invalidate_leaderboard_cache() -> None:
    """Invalidate all leaderboard cache entries.

    Failures are logged but never raised; a stale entry lives at most
    CACHE_TTL_LEADERBOARD_SECONDS.
    """
    try:
        removed = await redis_client.delete_pattern(f"{_CACHE_KEY_PREFIX}:*")
        if removed:
            logger.debug("Invalidated %d leaderboard cache entries", removed)
    except Exception as e:
        logger.warning("Failed to invalidate leaderboard cache: %s", e)


async def apply_delta(
    *,
    user_id: str,
    project_id: str,
    points_delta: int,
    is_new_completion: bool,
) -> RankingAggregate:
    """Apply a points/completion delta to a user's aggregate in one atomic statement.

    Creates the row on first use. Points are floored at zero and the completion
    rate is recomputed from the just-updated day count, capped at 100.
    Leaves the leaderboard cache alone; callers invalidate it after their
    transaction commits.

    Args:
        user_id: User whose aggregate changes
        project_id: Project the aggregate belongs to
        points_delta: Signed change in total points
        is_new_completion: Whether this change is the first approval of a day

    Returns:
        The aggregate after the update
    """
    with span("ranking_service.apply_delta"):
        project = await project_service.find_project(project_id=project_id)
        total_days = project_service.effective_total_days(project)
        days_delta = 1 if is_new_completion else 0
        now = datetime.now(UTC).isoformat()

        await db_client.execute(
            _APPLY_DELTA_SQL,
            (
                int(user_id),
                int(project_id),
                points_delta,
                days_delta,
                days_delta,
                total_days,
                now,
                points_delta,
                days_delta,
                days_delta,
                total_days,
            ),
        )

        aggregate = await get_aggregate(user_id=user_id, project_id=project_id)
        if aggregate is None:
            msg = f"Ranking aggregate missing after upsert for user {user_id} in project {project_id}"
            raise RuntimeError(msg)

        logger.info(
            "Applied ranking delta",
            extra={
                "user_id": user_id,
                "project_id": project_id,
                "points_delta": points_delta,
                "is_new_completion": is_new_completion,
                "total_points": aggregate.total_points,
            },
        )

    return aggregate


async def get_aggregate(*, user_id: str, project_id: str) -> RankingAggregate | None:
    """Get a user's aggregate for one project, or None if they have none yet."""
    record = await db_client.get_first_record(
        collection="ranking_aggregates",
        filter_query=(
            f'user_id = "{db_client.sanitize_param(user_id)}" && '
            f'project_id = "{db_client.sanitize_param(project_id)}"'
        ),
    )
    return RankingAggregate(**record) if record else None


async def _project_row_id(project_id: str | None) -> int | None:
    """Resolve an optional project filter to its row id.

    Raises:
        NotFoundError: If a project is named but does not exist
    """
    if project_id is None:
        return None
    project = await project_service.get_project(project_id=project_id)
    return int(project.id)


async def _rank_all_users(*, project_row_id: int | None) -> list[UserRankingEntry]:
    """Rank every user with an aggregate, optionally within one project."""
    where = "WHERE a.project_id = ?" if project_row_id is not None else ""
    params = (project_row_id,) if project_row_id is not None else ()
    rows = await db_client.fetch_all(
        f"""
        SELECT u.id AS user_id, u.name AS name,
               SUM(a.total_points) AS total_points,
               SUM(a.completed_days) AS completed_days,
               MIN(a.id) AS first_seen
        FROM ranking_aggregates a
        JOIN users u ON u.id = a.user_id
        {where}
        GROUP BY u.id, u.name
        ORDER BY total_points DESC, completed_days DESC, first_seen ASC
        """,  # noqa: S608 - where clause is a fixed fragment
        params,
    )
    return [
        UserRankingEntry(
            user_id=row["user_id"],
            name=row["name"],
            total_points=row["total_points"] or 0,
            completed_days=row["completed_days"] or 0,
        )
        for row in rows
    ]


async def _read_cache(cache_key: str, model: type[BaseModel]) -> list[Any] | None:
    """Return a cached leaderboard, or None on miss or undecodable data."""
    try:
        cached_value = await redis_client.get(cache_key)
        if cached_value:
            return [model(**entry) for entry in json.loads(cached_value)]
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning("Failed to deserialize cached leaderboard: %s", e)
    return None


async def _write_cache(cache_key: str, entries: list[UserRankingEntry] | list[OrganizationRankingEntry]) -> None:
    cache_value = json.dumps([entry.model_dump() for entry in entries])
    await redis_client.set(cache_key, cache_value, Constants.CACHE_TTL_LEADERBOARD_SECONDS)


async def get_user_ranking(
    *,
    limit: int = Constants.LEADERBOARD_SIZE,
    project_id: str | None = None,
) -> list[UserRankingEntry]:
    """Rank users by total points.

    Ties are broken by completed days, then by who reached the ranking first.

    Args:
        limit: Maximum entries to return
        project_id: Restrict to one project (None ranks across all projects)

    Returns:
        Ranking entries, best first

    Raises:
        NotFoundError: If project_id names no project
    """
    project_row_id = await _project_row_id(project_id)
    cache_key = f"{_CACHE_KEY_PREFIX}:users:{project_row_id or 'all'}:{limit}"
    cached = await _read_cache(cache_key, UserRankingEntry)
    if cached is not None:
        logger.debug("Returning cached user ranking", extra={"cache_key": cache_key})
        return cached

    with span("ranking_service.get_user_ranking"):
        ranking = (await _rank_all_users(project_row_id=project_row_id))[:limit]

    await _write_cache(cache_key, ranking)
    return ranking


async def get_organization_ranking(*, project_id: str | None = None) -> list[OrganizationRankingEntry]:
    """Rank organizations by the total points of their members.

    Organizations without members are listed with zero points and a zero average.

    Args:
        project_id: Restrict points to one project (None sums across all projects)

    Returns:
        Ranking entries, best first

    Raises:
        NotFoundError: If project_id names no project
    """
    project_row_id = await _project_row_id(project_id)
    cache_key = f"{_CACHE_KEY_PREFIX}:organizations:{project_row_id or 'all'}"
    cached = await _read_cache(cache_key, OrganizationRankingEntry)
    if cached is not None:
        return cached

    with span("ranking_service.get_organization_ranking"):
        join_filter = "AND a.project_id = ?" if project_row_id is not None else ""
        params = (project_row_id,) if project_row_id is not None else ()
        rows = await db_client.fetch_all(
            f"""
            SELECT o.id AS org_id, o.name AS name,
                   COALESCE(SUM(a.total_points), 0) AS total_points,
                   COUNT(DISTINCT u.id) AS member_count
            FROM organizations o
            LEFT JOIN users u ON u.organization_id = o.id
            LEFT JOIN ranking_aggregates a ON a.user_id = u.id {join_filter}
            GROUP BY o.id, o.name
            ORDER BY total_points DESC, o.id ASC
            """,  # noqa: S608 - join filter is a fixed fragment
            params,
        )

        ranking = [
            OrganizationRankingEntry(
                org_id=row["org_id"],
                name=row["name"],
                total_points=row["total_points"],
                member_count=row["member_count"],
                average_points=round(row["total_points"] / row["member_count"], 2) if row["member_count"] else 0.0,
            )
            for row in rows
        ]

    await _write_cache(cache_key, ranking)
    return ranking


async def get_project_leaderboard(*, project_id: str, user_id: str | None = None) -> ProjectLeaderboard:
    """Return a project's top entries plus the caller's 1-based position.

    The position is None when the user has no aggregate in the project.
    """
    with span("ranking_service.get_project_leaderboard"):
        ranking = await _rank_all_users(project_row_id=await _project_row_id(project_id))
        position = None
        if user_id is not None:
            position = next((index + 1 for index, entry in enumerate(ranking) if entry.user_id == user_id), None)
        return ProjectLeaderboard(top=ranking[: Constants.LEADERBOARD_SIZE], user_position=position)


async def get_project_summary(*, project_id: str) -> ProjectSummary:
    """Count a project's participants and how many of them completed every day."""
    with span("ranking_service.get_project_summary"):
        project_row_id = await _project_row_id(project_id)
        participants = await db_client.fetch_all(
            "SELECT COUNT(DISTINCT user_id) AS n FROM completion_records WHERE project_id = ?",
            (project_row_id,),
        )
        completed_all = await db_client.fetch_all(
            "SELECT COUNT(*) AS n FROM ranking_aggregates WHERE project_id = ? AND completion_rate >= 100",
            (project_row_id,),
        )
        return ProjectSummary(
            project_id=project_id,
            participants=participants[0]["n"],
            completed_all=completed_all[0]["n"],
        )

"""Tests for scheduled dispatch of messages to project subscribers."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest

from engage.core.config import Constants, settings
from engage.core.errors import NotFoundError, ValidationError
from engage.core.scheduler_tracker import job_tracker
from engage.domain.dispatch import DispatchOutcome, DispatchStatus, DispatchTaskCreate
from engage.domain.user import UserCreate
from engage.interface.channel_sender import SendMessageResult
from engage.services import dispatch_service, lease_service, project_service


PAST = "2026-01-01T09:00:00+00:00"


@pytest.fixture
async def subscribers(organization, user, project):
    """Ana (connected), Bruno (no subscriber ID) and Carla (connected), all enrolled."""
    bruno = await project_service.create_user(user=UserCreate(name="Bruno", organization_id=organization.id))
    carla = await project_service.create_user(
        user=UserCreate(name="Carla", organization_id=organization.id, external_id="sub-carla"),
    )
    for member in (user, bruno, carla):
        await project_service.subscribe(project_id=project.id, user_id=member.id)
    return user, bruno, carla


async def _task(project_id: str, **overrides):
    data = {"project_id": project_id, "title": "Dia 1", "scheduled_at": PAST, **overrides}
    return await dispatch_service.create_task(task=DispatchTaskCreate(**data))


@pytest.mark.unit
class TestCreateTask:
    async def test_normalizes_schedule_to_utc(self, project):
        task = await _task(project.id, scheduled_at="2026-01-01T06:00:00-03:00")

        assert task.scheduled_at == PAST
        assert task.status == DispatchStatus.SCHEDULED

    async def test_naive_schedule_is_utc(self, project):
        task = await _task(project.id, scheduled_at="2026-01-01T09:00:00")

        assert task.scheduled_at == PAST

    async def test_invalid_schedule(self, project):
        with pytest.raises(ValidationError):
            await _task(project.id, scheduled_at="tomorrow")

    async def test_invalid_cron(self, project):
        with pytest.raises(ValidationError):
            await _task(project.id, repeat_cron="every day")

    async def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            await _task("999")

    async def test_listing(self, project):
        later = await _task(project.id, scheduled_at="2026-02-01T09:00:00+00:00")
        earlier = await _task(project.id)

        tasks = await dispatch_service.list_tasks(project_id=project.id, status=DispatchStatus.SCHEDULED)

        assert [t.id for t in tasks] == [earlier.id, later.id]


@pytest.mark.unit
class TestProcessDueTasks:
    """Tests for sending due tasks."""

    async def test_sends_to_each_recipient_and_logs(self, project, subscribers, mock_send):
        ana, bruno, carla = subscribers
        task = await _task(project.id, content="Bom dia!")

        summaries = await dispatch_service.process_due_tasks()

        assert len(summaries) == 1
        assert (summaries[0].sent, summaries[0].failed) == (2, 1)
        assert [c.kwargs["subscriber_id"] for c in mock_send.call_args_list] == ["sub-ana", "sub-carla"]
        assert mock_send.call_args.kwargs["text"] == "Bom dia!"

        logs = await dispatch_service.list_task_logs(task_id=task.id)
        by_user = {log.user_id: log for log in logs}
        assert len(logs) == 3
        assert by_user[ana.id].outcome == DispatchOutcome.SUCCESS
        assert by_user[bruno.id].outcome == DispatchOutcome.FAILURE
        assert by_user[bruno.id].error == Constants.RECIPIENT_NOT_CONNECTED_ERROR
        assert by_user[bruno.id].attempts == 0
        assert by_user[carla.id].outcome == DispatchOutcome.SUCCESS

        stored = await dispatch_service.get_task(task_id=task.id)
        assert stored.status == DispatchStatus.DONE

    async def test_title_used_when_no_content(self, project, subscribers, mock_send):
        await _task(project.id, title="Beber água")

        await dispatch_service.process_due_tasks()

        assert mock_send.call_args.kwargs["text"] == "Nova tarefa disponível: Beber água"

    async def test_one_recipient_failing_does_not_stop_others(self, project, subscribers, mock_send):
        ana, _, carla = subscribers
        mock_send.side_effect = [RuntimeError({"code": 130, "message": "blocked"}), SendMessageResult(success=True)]
        task = await _task(project.id)

        summaries = await dispatch_service.process_due_tasks()

        assert summaries[0].sent == 1
        logs = {log.user_id: log for log in await dispatch_service.list_task_logs(task_id=task.id)}
        assert logs[ana.id].outcome == DispatchOutcome.FAILURE
        assert logs[ana.id].error == '{"code": 130, "message": "blocked"}'
        assert logs[carla.id].outcome == DispatchOutcome.SUCCESS

    async def test_middle_recipient_raising_does_not_stop_neighbours(self, organization, project, mock_send):
        members = []
        for name in ("Dora", "Edu", "Fabi"):
            member = await project_service.create_user(
                user=UserCreate(name=name, organization_id=organization.id, external_id=f"sub-{name.lower()}"),
            )
            await project_service.subscribe(project_id=project.id, user_id=member.id)
            members.append(member)
        ok = SendMessageResult(success=True, attempts=1)
        mock_send.side_effect = [ok, RuntimeError("connection reset"), ok]
        task = await _task(project.id)

        summaries = await dispatch_service.process_due_tasks()

        assert (summaries[0].sent, summaries[0].failed) == (2, 1)
        assert [c.kwargs["subscriber_id"] for c in mock_send.call_args_list] == ["sub-dora", "sub-edu", "sub-fabi"]
        logs = {log.user_id: log for log in await dispatch_service.list_task_logs(task_id=task.id)}
        assert [logs[m.id].outcome for m in members] == [
            DispatchOutcome.SUCCESS,
            DispatchOutcome.FAILURE,
            DispatchOutcome.SUCCESS,
        ]
        assert logs[members[1].id].error == "connection reset"
        assert (await dispatch_service.get_task(task_id=task.id)).status == DispatchStatus.DONE

    async def test_exhausted_retries_are_permanent(self, project, subscribers, mock_send, monkeypatch):
        ana, _, _ = subscribers
        monkeypatch.setattr(settings, "dispatch_max_attempts", 3)
        mock_send.return_value = SendMessageResult(success=False, error="Failed after retries: 503", attempts=3)
        task = await _task(project.id)

        await dispatch_service.process_due_tasks()

        assert mock_send.call_args.kwargs["max_retries"] == 3
        logs = {log.user_id: log for log in await dispatch_service.list_task_logs(task_id=task.id)}
        assert logs[ana.id].outcome == DispatchOutcome.FAILED_PERMANENT
        assert logs[ana.id].attempts == 3

    async def test_single_attempt_failure_is_not_permanent(self, project, subscribers, mock_send):
        ana, _, _ = subscribers
        mock_send.return_value = SendMessageResult(success=False, error="Client error 400: bad", attempts=1)
        task = await _task(project.id)

        await dispatch_service.process_due_tasks()

        logs = {log.user_id: log for log in await dispatch_service.list_task_logs(task_id=task.id)}
        assert logs[ana.id].outcome == DispatchOutcome.FAILURE

    async def test_future_tasks_wait(self, project, subscribers, mock_send):
        await _task(project.id, scheduled_at="2026-01-05T09:00:00+00:00")

        summaries = await dispatch_service.process_due_tasks(now=datetime(2026, 1, 4, tzinfo=UTC))

        assert summaries == []
        mock_send.assert_not_called()

    async def test_due_tasks_in_schedule_order(self, project, subscribers, mock_send):
        second = await _task(project.id, scheduled_at="2026-01-02T09:00:00+00:00")
        first = await _task(project.id)

        summaries = await dispatch_service.process_due_tasks()

        assert [s.task_id for s in summaries] == [first.id, second.id]

    async def test_done_tasks_are_not_resent(self, project, subscribers, mock_send):
        await _task(project.id)
        await dispatch_service.process_due_tasks()
        mock_send.reset_mock()

        assert await dispatch_service.process_due_tasks() == []
        mock_send.assert_not_called()

    async def test_task_claimed_elsewhere_is_skipped(self, project, subscribers, mock_send):
        task = await _task(project.id)

        with patch("engage.services.dispatch_service._claim", new_callable=AsyncMock, return_value=False):
            summaries = await dispatch_service.process_due_tasks()

        assert summaries == []
        mock_send.assert_not_called()
        assert (await dispatch_service.get_task(task_id=task.id)).status == DispatchStatus.SCHEDULED

    async def test_claim_succeeds_once(self, project):
        task = await _task(project.id)

        assert await dispatch_service._claim(task) is True
        assert await dispatch_service._claim(task) is False

    async def test_recurring_task_schedules_next_occurrence(self, project, subscribers, mock_send):
        task = await _task(project.id, repeat_cron="0 9 * * *")

        summaries = await dispatch_service.process_due_tasks()

        next_task = await dispatch_service.get_task(task_id=summaries[0].next_task_id)
        assert next_task.status == DispatchStatus.SCHEDULED
        assert next_task.repeat_cron == "0 9 * * *"
        assert next_task.title == task.title
        assert next_task.scheduled_at > datetime.now(UTC).isoformat()
        assert next_task.scheduled_at.endswith("T09:00:00+00:00")

    async def test_project_without_subscribers(self, project, mock_send):
        task = await _task(project.id)

        summaries = await dispatch_service.process_due_tasks()

        assert (summaries[0].sent, summaries[0].failed) == (0, 0)
        assert (await dispatch_service.get_task(task_id=task.id)).status == DispatchStatus.DONE


@pytest.mark.unit
class TestTick:
    """Tests for the scheduled tick and its lease."""

    async def test_overlapping_ticks_send_once(self, project, subscribers, mock_send):
        async def slow_send(**kwargs):
            await asyncio.sleep(0.05)
            return SendMessageResult(success=True, attempts=1)

        mock_send.side_effect = slow_send
        await _task(project.id)

        first, second = await asyncio.gather(dispatch_service.tick(), dispatch_service.tick())

        assert sorted([len(first), len(second)]) == [0, 1]
        assert mock_send.await_count == 2

    async def test_skips_while_lease_held(self, project, subscribers, mock_send):
        await _task(project.id)
        await lease_service.acquire(name=Constants.DISPATCH_LEASE_NAME, holder="other-worker", ttl_seconds=300)

        assert await dispatch_service.tick() == []
        mock_send.assert_not_called()

    async def test_releases_lease_and_records_success(self, project, subscribers, mock_send):
        await _task(project.id)

        await dispatch_service.tick()

        status = await job_tracker.get_job_status(Constants.DISPATCH_JOB_NAME)
        assert status["success_count"] == 1
        assert status["currently_running"] is False
        assert await lease_service.acquire(name=Constants.DISPATCH_LEASE_NAME, holder="next", ttl_seconds=300)

    async def test_failure_is_recorded_not_raised(self, db):
        with patch(
            "engage.services.dispatch_service.process_due_tasks",
            new_callable=AsyncMock,
            side_effect=RuntimeError("database is locked"),
        ):
            assert await dispatch_service.tick() == []

        status = await job_tracker.get_job_status(Constants.DISPATCH_JOB_NAME)
        assert status["consecutive_failures"] == 1
        assert status["last_error"] == "database is locked"
        assert await lease_service.acquire(name=Constants.DISPATCH_LEASE_NAME, holder="next", ttl_seconds=300)

    async def test_lease_storage_error_is_recorded_not_raised(self, db):
        with (
            patch(
                "engage.services.dispatch_service.lease_service.acquire",
                new_callable=AsyncMock,
                side_effect=RuntimeError("Failed to execute statement: database is locked"),
            ),
            patch("engage.services.dispatch_service.lease_service.release", new_callable=AsyncMock) as mock_release,
        ):
            assert await dispatch_service.tick() == []

        mock_release.assert_not_called()
        status = await job_tracker.get_job_status(Constants.DISPATCH_JOB_NAME)
        assert status["consecutive_failures"] == 1
        assert status["last_error"] == "Failed to execute statement: database is locked"
        assert status["currently_running"] is False

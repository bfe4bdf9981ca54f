"""Unit tests for JobScheduler and TemporalJobDispatcher."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from mbs_catalog.schemas.jobs import JobKind, JobState
from mbs_catalog.services.jobs.policies import JOB_POLICIES
from mbs_catalog.services.jobs.scheduler import JobScheduler, TemporalJobDispatcher
from mbs_catalog.temporal.constants import CATALOG_JOB_WORKFLOW

NOW = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


class TestJobScheduler:
    """Tests for one scheduling pass."""

    @pytest.fixture
    def job_repo(self):
        repo = MagicMock()
        repo.lock_queued = AsyncMock(return_value=[])
        repo.get_many = AsyncMock(return_value={})
        repo.count_active_by_kind = AsyncMock(return_value={})
        repo.mark_active = AsyncMock()
        repo.finish = AsyncMock(return_value=True)
        repo.requeue = AsyncMock()
        repo.purge_terminal = AsyncMock(return_value=0)
        return repo

    @pytest.fixture
    def dispatcher(self):
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock()
        return dispatcher

    def _scheduler(self, session_factory, dispatcher, job_repo):
        return JobScheduler(
            session_factory,
            dispatcher,
            job_repository_factory=lambda session: job_repo,
            claim_batch_size=10,
            clock=lambda: NOW,
        )

    async def test_empty_queue(self, session_factory, dispatcher, job_repo):
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)

        assert await scheduler.tick() == 0
        dispatcher.dispatch.assert_not_awaited()

    async def test_tick_resolves_dependencies(self, session_factory, dispatcher, job_repo, job_factory):
        done_parent = job_factory(state="completed")
        failed_parent = job_factory(state="failed")
        running_parent = job_factory(kind="ingest", state="active")

        ready = job_factory(kind="ingest")
        unblocked = job_factory(kind="embed", parent_job_id=done_parent.id)
        blocked = job_factory(kind="reindex", parent_job_id=failed_parent.id)
        waiting = job_factory(kind="reindex", parent_job_id=running_parent.id)
        job_repo.lock_queued.return_value = [ready, unblocked, blocked, waiting]
        job_repo.get_many.return_value = {
            job.id: job for job in (done_parent, failed_parent, running_parent)
        }
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)

        dispatched = await scheduler.tick()

        assert dispatched == 2
        assert [call.args[0] for call in dispatcher.dispatch.await_args_list] == [ready, unblocked]
        job_repo.finish.assert_awaited_once()
        finish_call = job_repo.finish.await_args
        assert finish_call.args == (blocked.id, JobState.FAILED)
        assert "failed" in finish_call.kwargs["failure_reason"]
        job_repo.lock_queued.assert_awaited_once_with(10)

    async def test_tick_respects_kind_concurrency(self, session_factory, dispatcher, job_repo, job_factory):
        first, second = job_factory(kind="ingest"), job_factory(kind="ingest")
        embed = job_factory(kind="embed")
        job_repo.lock_queued.return_value = [first, second, embed]
        job_repo.count_active_by_kind.return_value = {"embed": 1}
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)

        dispatched = await scheduler.tick()

        assert dispatched == 1
        dispatcher.dispatch.assert_awaited_once_with(first)
        assert job_repo.mark_active.await_args.args == (first, f"catalog-job-{first.id}")

    async def test_dispatch_failure_requeues(self, session_factory, dispatcher, job_repo, job_factory):
        job = job_factory(kind="ingest")
        job_repo.lock_queued.return_value = [job]
        dispatcher.dispatch.side_effect = RuntimeError("temporal unreachable")
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)

        dispatched = await scheduler.tick()

        assert dispatched == 0
        job_repo.requeue.assert_awaited_once_with(job.id)

    async def test_purge_uses_retention_per_kind(self, session_factory, dispatcher, job_repo):
        job_repo.purge_terminal.return_value = 1
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)

        purged = await scheduler.purge_expired()

        assert purged == len(JOB_POLICIES)
        first = job_repo.purge_terminal.await_args_list[0]
        assert first.kwargs["completed_before"] == NOW - timedelta(hours=24)
        assert first.kwargs["failed_before"] == NOW - timedelta(days=7)

    async def test_stop_ends_run_loop(self, session_factory, dispatcher, job_repo):
        scheduler = self._scheduler(session_factory, dispatcher, job_repo)
        scheduler.stop()

        await scheduler.run_forever(poll_interval_seconds=0.01)

        job_repo.lock_queued.assert_not_awaited()


class TestTemporalJobDispatcher:
    """Tests for workflow start parameters."""

    @pytest.fixture
    def temporal_client(self):
        client = MagicMock()
        client.start_workflow = AsyncMock()
        return client

    async def test_dispatch_starts_workflow(self, temporal_client, job_factory):
        job = job_factory(kind="embed", payload={"item_ids": [1, 2]}, max_attempts=2, initial_backoff_seconds=5.0)
        dispatcher = TemporalJobDispatcher(AsyncMock(return_value=temporal_client), task_queue="test-queue")

        await dispatcher.dispatch(job)

        call = temporal_client.start_workflow.await_args
        assert call.args == (CATALOG_JOB_WORKFLOW,)
        job_id, kind, payload, retry = call.kwargs["args"]
        assert (job_id, kind, payload) == (str(job.id), "embed", {"item_ids": [1, 2]})
        assert retry["max_attempts"] == 2
        assert retry["initial_backoff_seconds"] == 5.0
        assert retry["start_to_close_seconds"] == JOB_POLICIES[JobKind.EMBED].start_to_close_timeout.total_seconds()
        assert call.kwargs["id"] == f"catalog-job-{job.id}"
        assert call.kwargs["task_queue"] == "test-queue"
        assert call.kwargs["id_reuse_policy"] == WorkflowIDReusePolicy.REJECT_DUPLICATE

    async def test_duplicate_start_is_ignored(self, temporal_client, job_factory):
        job = job_factory(kind="ingest")
        temporal_client.start_workflow.side_effect = WorkflowAlreadyStartedError(
            f"catalog-job-{job.id}", CATALOG_JOB_WORKFLOW
        )
        dispatcher = TemporalJobDispatcher(AsyncMock(return_value=temporal_client), task_queue="test-queue")

        await dispatcher.dispatch(job)

        temporal_client.start_workflow.assert_awaited_once()

"""Tests for catalog job activities run in a Temporal activity environment."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from temporalio.exceptions import ApplicationError
from temporalio.testing import ActivityEnvironment

from mbs_catalog.schemas.jobs import JobState
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.services.indexing.embedding_service import EmbeddingService
from mbs_catalog.temporal.activities import catalog_jobs
from mbs_catalog.temporal.activities.catalog_jobs import (
    _raise_on_failure,
    mark_job_failed_activity,
    mark_job_finished_activity,
    run_embed_job_activity,
    run_ingest_job_activity,
    run_reindex_job_activity,
)

MODULE = "mbs_catalog.temporal.activities.catalog_jobs"


class TestRaiseOnFailure:

    def test_success_returns_result_dict(self):
        result = ProcessingResult(success=True, items_processed=2, items_updated=2, processing_time_ms=5)

        assert _raise_on_failure("job", result)["items_updated"] == 2

    def test_permanent_failure_is_non_retryable(self):
        result = ProcessingResult(success=False, error_message="too big", error_type="FileTooLargeError")

        with pytest.raises(ApplicationError) as exc_info:
            _raise_on_failure("job", result)

        assert exc_info.value.type == "FileTooLargeError"
        assert exc_info.value.non_retryable is True

    def test_transient_failure_is_retryable(self):
        result = ProcessingResult(success=False, error_message="db down", error_type="PersistenceError")

        with pytest.raises(ApplicationError) as exc_info:
            _raise_on_failure("job", result)

        assert exc_info.value.non_retryable is False


class TestCatalogJobActivities:
    """Activities with the database and services patched."""

    @pytest.fixture
    def job_repo(self):
        repo = MagicMock()
        repo.record_attempt = AsyncMock()
        repo.update_progress = AsyncMock(return_value=False)
        repo.finish = AsyncMock(return_value=True)
        return repo

    @pytest.fixture(autouse=True)
    def patched_database(self, session_factory, job_repo):
        with patch(f"{MODULE}.async_session_maker", session_factory), \
                patch(f"{MODULE}.JobRepository", return_value=job_repo):
            yield

    async def test_reindex_activity(self, job_repo):
        job_id = str(uuid4())
        service = MagicMock()
        service.reindex = AsyncMock(
            return_value=ProcessingResult(success=True, items_processed=4, items_updated=4, processing_time_ms=1)
        )

        with patch(f"{MODULE}.LexicalIndexService", return_value=service):
            result = await ActivityEnvironment().run(run_reindex_job_activity, job_id, {"item_ids": [1, 2]})

        assert result["items_updated"] == 4
        service.reindex.assert_awaited_once_with(item_ids=[1, 2])
        job_repo.record_attempt.assert_awaited_once()

    async def test_embed_without_provider_completes(self):
        catalog_repo = MagicMock()
        catalog_repo.count = AsyncMock(return_value=4)
        catalog_repo.fetch_embedding_targets = AsyncMock()

        def build_service(sf, client):
            return EmbeddingService(sf, client, catalog_repository_factory=lambda session: catalog_repo)

        with patch(f"{MODULE}.get_embedding_client", return_value=None), \
                patch(f"{MODULE}.EmbeddingService", side_effect=build_service):
            result = await ActivityEnvironment().run(run_embed_job_activity, str(uuid4()), {})

        assert result["success"] is True
        assert result["skipped"] is True
        assert result["items_failed"] == 4
        catalog_repo.fetch_embedding_targets.assert_not_awaited()

    async def test_ingest_checkpoint_reports_cancel(self, job_repo):
        job_id = str(uuid4())
        job_repo.update_progress.return_value = True
        heartbeats = []
        seen = {}

        async def ingest(file_path, file_name, force_reprocess, checkpoint):
            seen["continue"] = await checkpoint(50)
            return ProcessingResult(success=True, items_processed=1, cancelled=not seen["continue"])

        service = MagicMock()
        service.ingest = AsyncMock(side_effect=ingest)
        env = ActivityEnvironment()
        env.on_heartbeat = lambda *details: heartbeats.append(details)

        with patch(f"{MODULE}.IngestionService", return_value=service):
            result = await env.run(
                run_ingest_job_activity, job_id, {"file_path": "/data/mbs.xml", "file_name": "mbs.xml"}
            )

        assert seen["continue"] is False
        assert result["cancelled"] is True
        assert heartbeats == [(50,)]

    async def test_mark_finished(self, job_repo):
        job_id = uuid4()

        await ActivityEnvironment().run(mark_job_finished_activity, str(job_id), "completed", {"ok": True})

        job_repo.finish.assert_awaited_once_with(job_id, JobState.COMPLETED, result={"ok": True})

    async def test_mark_failed(self, job_repo):
        job_id = uuid4()

        await ActivityEnvironment().run(mark_job_failed_activity, str(job_id), "boom")

        job_repo.finish.assert_awaited_once_with(job_id, JobState.FAILED, failure_reason="boom")


def test_activity_registry():
    assert len(catalog_jobs.CATALOG_JOB_ACTIVITIES) == 5

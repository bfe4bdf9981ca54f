"""Tests for the command-line interface."""

import json
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from mbs_catalog.cli import app
from mbs_catalog.core.exceptions import QueueUnavailableError
from mbs_catalog.schemas.jobs import PipelineJobs
from mbs_catalog.services.contracts import ProcessingResult

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_database_close():
    with patch("mbs_catalog.cli.close_database", new=AsyncMock()) as close:
        yield close


@pytest.fixture
def xml_file(tmp_path, sample_xml):
    path = tmp_path / "mbs.xml"
    path.write_bytes(sample_xml)
    return path


def test_ingest_reports_result(xml_file, no_database_close):
    service = MagicMock()
    service.ingest = AsyncMock(
        return_value=ProcessingResult(success=True, items_processed=2, items_inserted=2, processing_time_ms=3)
    )

    with patch("mbs_catalog.cli.IngestionService", return_value=service):
        result = runner.invoke(app, ["ingest", str(xml_file), "--force"])

    assert result.exit_code == 0
    assert "ingest: ok" in result.output
    service.ingest.assert_awaited_once_with(str(xml_file), "mbs.xml", force_reprocess=True)
    no_database_close.assert_awaited_once()


def test_ingest_failure_exit_code(xml_file):
    service = MagicMock()
    service.ingest = AsyncMock(
        return_value=ProcessingResult(success=False, error_message="bad", error_type="MalformedXmlError")
    )

    with patch("mbs_catalog.cli.IngestionService", return_value=service):
        result = runner.invoke(app, ["ingest", str(xml_file)])

    assert result.exit_code == 1


def test_ingest_with_embeddings_without_provider_still_reindexes(xml_file):
    ingestion = MagicMock()
    ingestion.ingest = AsyncMock(return_value=ProcessingResult(success=True, items_processed=2))
    lexical = MagicMock()
    lexical.reindex = AsyncMock(return_value=ProcessingResult(success=True, items_updated=2))

    with patch("mbs_catalog.cli.IngestionService", return_value=ingestion), \
            patch("mbs_catalog.cli.LexicalIndexService", return_value=lexical), \
            patch("mbs_catalog.cli.get_embedding_client", return_value=None):
        result = runner.invoke(app, ["ingest", str(xml_file), "--with-embeddings"])

    assert result.exit_code == 0
    assert "embed: skipped" in result.output
    lexical.reindex.assert_awaited_once()


def test_enqueue_pipeline_prints_job_ids():
    jobs = PipelineJobs(ingest_job_id=uuid4(), embed_job_id=uuid4(), reindex_job_id=uuid4())
    queue = MagicMock()
    queue.enqueue_pipeline = AsyncMock(return_value=jobs)

    with patch("mbs_catalog.cli.JobQueueService", return_value=queue):
        result = runner.invoke(app, ["enqueue-pipeline", "/data/mbs.xml"])

    assert result.exit_code == 0
    assert json.loads(result.output)["reindex_job_id"] == str(jobs.reindex_job_id)
    queue.enqueue_pipeline.assert_awaited_once_with("/data/mbs.xml", "mbs.xml", False)


def test_enqueue_pipeline_queue_unavailable():
    queue = MagicMock()
    queue.enqueue_pipeline = AsyncMock(side_effect=QueueUnavailableError("Job store unreachable"))

    with patch("mbs_catalog.cli.JobQueueService", return_value=queue):
        result = runner.invoke(app, ["enqueue-pipeline", "/data/mbs.xml"])

    assert result.exit_code == 2


def test_job_status_not_found():
    queue = MagicMock()
    queue.get_job_status = AsyncMock(return_value=None)

    with patch("mbs_catalog.cli.JobQueueService", return_value=queue):
        result = runner.invoke(app, ["job-status", str(uuid4())])

    assert result.exit_code == 1

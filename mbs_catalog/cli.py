"""
MBS Catalog CLI

Command-line interface for loading the catalog and operating the job queue.
"""

import asyncio
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import typer

from mbs_catalog.core.config import settings
from mbs_catalog.core.database import async_session_maker, close_database, init_database
from mbs_catalog.core.embedding_client import get_embedding_client
from mbs_catalog.core.exceptions import QueueUnavailableError
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.services.indexing.embedding_service import EmbeddingService
from mbs_catalog.services.indexing.lexical_index_service import LexicalIndexService
from mbs_catalog.services.ingestion.ingestion_service import IngestionService
from mbs_catalog.services.jobs.job_queue_service import JobQueueService

app = typer.Typer(
    name="mbs-catalog",
    help="MBS catalog ingestion, indexing and job queue tools",
    add_completion=False,
)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _echo_result(stage: str, result: ProcessingResult) -> None:
    typer.echo(f"{stage}: {'ok' if result.success else 'failed'}")
    _echo_json(result.to_dict())


async def _run_ingest(file: Path, force: bool, with_embeddings: bool) -> bool:
    ingestion = IngestionService(async_session_maker)
    result = await ingestion.ingest(str(file), file.name, force_reprocess=force)
    _echo_result("ingest", result)
    if not result.success or result.skipped or not with_embeddings:
        return result.success

    embedding_client = get_embedding_client()
    if embedding_client is None:
        typer.echo("embed: skipped (no embedding provider configured)")
    else:
        embedded = await EmbeddingService(async_session_maker, embedding_client).generate(
            batch_size=settings.embedding.batch_size
        )
        _echo_result("embed", embedded)
        if not embedded.success:
            return False

    reindexed = await LexicalIndexService(async_session_maker).reindex()
    _echo_result("reindex", reindexed)
    return reindexed.success


async def _with_database(coro):
    try:
        return await coro
    finally:
        await close_database()


@app.command()
def ingest(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="MBS XML file to ingest"),
    force: bool = typer.Option(False, "--force", "-f", help="Reprocess even if this file was already ingested"),
    with_embeddings: bool = typer.Option(
        False, "--with-embeddings", help="Generate embeddings and rebuild the lexical index afterwards"
    ),
):
    """
    Ingest an MBS XML file directly, without the job queue.
    """
    ok = asyncio.run(_with_database(_run_ingest(file, force, with_embeddings)))
    raise typer.Exit(code=0 if ok else 1)


@app.command("enqueue-pipeline")
def enqueue_pipeline(
    file: Path = typer.Argument(..., help="MBS XML file path as seen by the worker"),
    force: bool = typer.Option(False, "--force", "-f", help="Reprocess even if this file was already ingested"),
):
    """
    Enqueue ingest, embed and reindex jobs as one dependency chain.
    """
    queue = JobQueueService(async_session_maker)
    try:
        jobs = asyncio.run(_with_database(queue.enqueue_pipeline(str(file), file.name, force)))
    except QueueUnavailableError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    _echo_json(jobs.model_dump(mode="json"))


@app.command("job-status")
def job_status(job_id: UUID = typer.Argument(..., help="Job id returned by an enqueue call")):
    """
    Show the status of a queued job.
    """
    queue = JobQueueService(async_session_maker)
    try:
        status = asyncio.run(_with_database(queue.get_job_status(job_id)))
    except QueueUnavailableError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    if status is None:
        typer.echo(f"Job {job_id} not found", err=True)
        raise typer.Exit(code=1)
    _echo_json(status.model_dump(mode="json"))


@app.command()
def worker():
    """
    Run the Temporal worker together with the job scheduler.
    """
    from mbs_catalog.temporal.worker import run

    run()


@app.command("init-db")
def init_db():
    """
    Create the pgvector extension and all catalog tables.
    """
    asyncio.run(_with_database(init_database(auto_migrate=True)))
    typer.echo("Database initialized")


if __name__ == "__main__":
    app()

"""Fixtures for job orchestration tests."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from mbs_catalog.database.models import CatalogJob


def make_job(kind: str = "ingest", state: str = "queued", parent_job_id=None, **overrides) -> CatalogJob:
    values = {
        "id": uuid4(),
        "kind": kind,
        "payload": {},
        "priority": 0,
        "state": state,
        "parent_job_id": parent_job_id,
        "max_attempts": 3,
        "initial_backoff_seconds": 2.0,
        "backoff_coefficient": 2.0,
        "max_backoff_seconds": 60.0,
        "attempts_made": 0,
        "progress": 0,
        "cancel_requested": False,
        "result": None,
        "failure_reason": None,
        "temporal_workflow_id": None,
        "created_at": datetime(2024, 7, 1, tzinfo=timezone.utc),
        "processed_at": None,
        "finished_at": None,
    }
    values.update(overrides)
    return CatalogJob(**values)


@pytest.fixture
def job_factory():
    """Build detached ``CatalogJob`` rows."""
    return make_job

"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time.
os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("DATABASE_AUTO_MIGRATE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from mbs_catalog.database.models import CatalogItem
from mbs_catalog.main import app


class FakeSessionFactory:
    """Stand-in for ``async_sessionmaker`` that hands out one mock session.

    ``session.begin()`` is an async context manager; commits and rollbacks
    are recorded on the mock.
    """

    def __init__(self):
        self.session = MagicMock()
        self.session.commit = AsyncMock()
        self.session.rollback = AsyncMock()
        self.session.close = AsyncMock()
        self.session.begin = self._begin
        self.opened = 0

    @asynccontextmanager
    async def _begin(self):
        yield self.session

    @asynccontextmanager
    async def _open(self):
        self.opened += 1
        yield self.session

    def __call__(self):
        return self._open()


def make_item(item_number: int, item_id: int = None, **overrides) -> CatalogItem:
    values = {
        "id": item_id if item_id is not None else item_number,
        "item_number": item_number,
        "description": f"Professional attendance item {item_number}",
        "short_description": None,
        "category": "1",
        "sub_category": None,
        "group_name": "A1",
        "sub_group": None,
        "provider_type": "G",
        "service_type": "Consultation",
        "schedule_fee": Decimal("41.40"),
        "benefit_75": None,
        "benefit_85": Decimal("35.20"),
        "benefit_100": Decimal("41.40"),
        "has_anaesthetic": False,
        "anaesthetic_basic_units": None,
        "derived_fee_description": None,
        "start_date": date(2020, 1, 1),
        "end_date": None,
        "is_active": True,
    }
    values.update(overrides)
    return CatalogItem(**values)


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def sample_xml() -> bytes:
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<MBS_XML>
  <Data>
    <ItemNum>23</ItemNum>
    <Descriptor>Professional attendance by a general practitioner, level B</Descriptor>
    <Category>1</Category>
    <Group>A1</Group>
    <ProviderType>G</ProviderType>
    <ScheduleFee>41.40</ScheduleFee>
    <Benefit100>41.40</Benefit100>
    <ItemStartDate>01.11.2019</ItemStartDate>
  </Data>
  <Data>
    <ItemNum>36</ItemNum>
    <Descriptor>Professional attendance by a general practitioner, level C</Descriptor>
    <Category>1</Category>
    <Group>A1</Group>
    <ScheduleFee>80.10</ScheduleFee>
    <ItemEndDate>30.06.2001</ItemEndDate>
  </Data>
  <Data>
    <Descriptor>Missing item number</Descriptor>
  </Data>
</MBS_XML>
"""


@pytest.fixture
def item_factory():
    """Build detached ``CatalogItem`` rows."""
    return make_item

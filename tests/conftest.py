"""
Shared test fixtures for the pipeline backend.

Provides an in-memory CloudStorage, sample pipeline entries, an admin and a
non-admin actor, and a TestClient wired to both through dependency overrides.
"""

import asyncio
import copy

import pytest
from fastapi.testclient import TestClient

from pipelinehub.core.auth import get_current_user
from pipelinehub.core.config import settings
from pipelinehub.main import app
from pipelinehub.models.pipeline import PipelineEntry
from pipelinehub.models.user import AuthenticatedUser
from pipelinehub.models.workflow import AppState
from pipelinehub.routers.overhead import current_overhead_employees
from pipelinehub.services.storage_service import CloudStorage, get_storage


class MemoryStorage(CloudStorage):
    """CloudStorage backed by a dict instead of the user_storage table."""

    def __init__(self, values=None, fail_writes=False):
        super().__init__("test-workspace")
        self.backing = copy.deepcopy(values or {})
        self.fail_writes = fail_writes
        self.writes = []

    async def _read_all(self):
        return copy.deepcopy(self.backing)

    async def _write(self, key, value):
        if self.fail_writes:
            raise ConnectionError("database unavailable")
        self.backing[key] = copy.deepcopy(value)
        self.writes.append(key)

    async def _delete(self, key):
        if self.fail_writes:
            raise ConnectionError("database unavailable")
        self.backing.pop(key, None)


@pytest.fixture(autouse=True)
def pinned_year(monkeypatch):
    """Forecasts and project codes are computed for 2025 regardless of today's date."""
    monkeypatch.setattr(settings, "forecast_year", 2025)
    return 2025


@pytest.fixture
def admin():
    return AuthenticatedUser(uid="admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def planner():
    return AuthenticatedUser(uid="pm-1", email="pm@example.com", role="pm")


@pytest.fixture
def make_entry():
    def _make(code, **fields):
        data = {
            "projectCode": code,
            "owner": "Sam",
            "client": "Acme",
            "programName": "Spring Launch",
            "startDate": "2025-01-01",
            "endDate": "2025-06-30",
            "totalFees": 12000,
            "status": "open",
        }
        data.update(fields)
        return PipelineEntry.model_validate(data)

    return _make


@pytest.fixture
def pipeline_state(make_entry):
    """Three entries: an open one (Jan-Jun), a confirmed one (Feb-Apr) and a high pitch (Mar)."""
    return AppState(
        entries=[
            make_entry("P0001-25"),
            make_entry(
                "P0002-25",
                client="Beta",
                programName="Retail Refresh",
                status="confirmed",
                startDate="2025-02-01",
                endDate="2025-04-30",
                totalFees=9000,
            ),
            make_entry(
                "P0003-25",
                programName="Summer Pitch",
                status="high-pitch",
                startDate="2025-03-01",
                endDate="2025-03-31",
                totalFees=4000,
            ),
        ],
        projectCounter=4,
    )


@pytest.fixture
def make_storage():
    def _make(values=None, fail_writes=False):
        storage = MemoryStorage(values, fail_writes=fail_writes)
        asyncio.run(storage.hydrate())
        return storage

    return _make


@pytest.fixture
def api_client():
    """Returns a factory building a TestClient that acts as `user` against `storage`."""

    def _client(user, storage, employees=()):
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_storage] = lambda: storage
        app.dependency_overrides[current_overhead_employees] = lambda: list(employees)
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()

from datetime import date

import pytest

from appointease.db.repository import InMemorySlotRepository
from appointease.reconcile import SchedulingController

TODAY = date(2030, 3, 14)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    # Keep tests off any real slot API configured in the environment
    monkeypatch.setenv("SLOT_BACKEND", "memory")
    monkeypatch.delenv("SLOT_API_BASE_URL", raising=False)
    yield


@pytest.fixture
def repository():
    return InMemorySlotRepository()


@pytest.fixture
def controller(repository):
    return SchedulingController(repository, today=lambda: TODAY)

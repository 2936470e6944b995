from __future__ import annotations

import os

import pytest

# Ensure required settings exist during import-time settings validation.
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("TASK_SIGNING_SECRET", "test-signing-secret")

from src.core.settings import get_settings
from src.db.mongo import Mongo
from tests.fakes import FakeClient


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def mongo(fake_client) -> Mongo:
    return Mongo("mongodb://fake", client=fake_client, transactions=False)


@pytest.fixture
def settings():
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()

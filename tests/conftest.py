"""
Shared fixtures: in-memory store, scripted gateway and a wired BatchService.
"""

from __future__ import annotations

import pytest

from batch_settlement.adapters.store.sqlite import SQLiteBatchStore
from batch_settlement.config.settings import Settings
from batch_settlement.domain.models import Client
from batch_settlement.services.batch_service import BatchService
from tests.mocks import RecordingNotifier, ScriptedGateway, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def store(settings):
    store = SQLiteBatchStore(settings)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def client(store) -> Client:
    client = Client(client_ref="CL-001", name="Acme Ltd", account_number="ACC-0001", active=True)
    await store.upsert_client(client)
    return client


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(settings, store, gateway) -> BatchService:
    return BatchService(settings, store, gateway)

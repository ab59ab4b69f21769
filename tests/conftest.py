"""Shared pytest fixtures for forkchat tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from forkchat.db.connection import Database
from forkchat.generation.service import GenerationService
from forkchat.main import app
from forkchat.providers.registry import clear_providers, register_provider
from forkchat.store.local import LocalNodeStore
from forkchat.store.sqlite import SQLiteNodeStore
from forkchat.trees.router import get_generation_service, get_tree_service
from forkchat.trees.service import TreeService
from tests.fixtures import FailingProvider, FakeProvider, GatedProvider


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
def sqlite_store(db):
    return SQLiteNodeStore(db)


@pytest.fixture
def local_store():
    """Fallback store with nothing persisted to disk."""
    return LocalNodeStore()


@pytest.fixture(params=["sqlite", "local"])
async def store(request):
    """Each test using this fixture runs once per backend."""
    if request.param == "sqlite":
        database = await Database.connect(":memory:")
        yield SQLiteNodeStore(database)
        await database.close()
    else:
        yield LocalNodeStore()


@pytest.fixture
def providers():
    """Fake, failing and gated providers registered for the test."""
    clear_providers()
    fake, failing, gated = FakeProvider(), FailingProvider(), GatedProvider()
    for provider in (fake, failing, gated):
        register_provider(provider)
    yield {"fake": fake, "failing": failing, "gated": gated}
    gated.release()
    clear_providers()


@pytest.fixture
def tree_service(store):
    return TreeService(store, default_model="test-model", default_provider="fake")


@pytest.fixture
async def gen_service(tree_service, providers):
    service = GenerationService(tree_service)
    yield service
    providers["gated"].release()
    await service.aclose()


@pytest.fixture
async def client(local_store, providers):
    """Async test client with an in-memory store wired into the app."""
    service = TreeService(local_store, default_model="test-model", default_provider="fake")
    gen_service = GenerationService(service)
    app.dependency_overrides[get_tree_service] = lambda: service
    app.dependency_overrides[get_generation_service] = lambda: gen_service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    providers["gated"].release()
    await gen_service.aclose()
    app.dependency_overrides.clear()

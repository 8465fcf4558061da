import pytest
import pytest_asyncio

from src.schedule_sync.config import SyncConfig
from src.schedule_sync.engine import ScheduleSyncEngine
from src.schedule_sync.identity import StaticIdentityProvider
from src.schedule_sync.stores.memory import InMemoryDocumentStore
from tests.helpers import GatedPutStore


@pytest.fixture
def config():
    return SyncConfig(_env_file=None, app_id="test-app", store_backend="memory")


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def engine(store, config):
    engine = ScheduleSyncEngine(store, StaticIdentityProvider("user-1"), config=config)
    await engine.start()
    yield engine
    engine.close()


@pytest.fixture
def gated_store():
    return GatedPutStore()


@pytest_asyncio.fixture
async def gated_engine(gated_store, config):
    engine = ScheduleSyncEngine(gated_store, StaticIdentityProvider("user-1"), config=config)
    await engine.start()
    yield engine
    engine.close()

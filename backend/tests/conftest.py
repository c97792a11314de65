import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from invoicer.config import settings
from invoicer.database import Base, get_db, seed_counters
from invoicer.main import app
from invoicer.models import db_models  # noqa: F401
from invoicer.models.db_models import BusinessSettings, Client
from invoicer.services.autosave import DraftSessionRegistry

# Short debounce window so auto-save tests finish quickly
TEST_AUTOSAVE_DELAY = 0.05


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "data_dir", tmp_path / "data")
    return tmp_path / "data"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        await seed_counters(session)
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def profile(session_factory):
    async with session_factory() as session:
        row = BusinessSettings(id=1, business_name="Acme", currency="MYR")
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def bob(session_factory):
    async with session_factory() as session:
        client = Client(name="Bob", company="Bob & Co", email="bob@example.com")
        session.add(client)
        await session.commit()
    return client


@pytest.fixture
async def registry(session_factory):
    registry = DraftSessionRegistry(session_factory, delay=TEST_AUTOSAVE_DELAY)
    yield registry
    await registry.discard_all()


@pytest.fixture
async def api(session_factory, registry):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.drafts = registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

import pytest

from infra.db.session import create_db_engine, create_session_factory, init_db
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository
from tests.fakes import FakeIndex


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def files_repo(session_factory):
    return FilesRepository(session_factory)


@pytest.fixture
def jobs_repo(session_factory):
    return JobsRepository(session_factory)


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("infra.retry.sleep", fake_sleep)
    return delays

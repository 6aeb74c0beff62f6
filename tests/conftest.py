import pytest
from fastapi.testclient import TestClient

from finmon.config import Settings
from finmon.database import Database, DataSource


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'finmon.db'}", secret_key="test-secret")


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def source(database):
    return DataSource(database, user_id="user-1")


@pytest.fixture
def broken_source(tmp_path):
    # a database without tables: every query fails
    db = Database(f"sqlite:///{tmp_path / 'empty.db'}")
    yield DataSource(db, user_id="user-1")
    db.dispose()


@pytest.fixture
def seed(database):
    def add(*rows):
        with database.session_scope() as db:
            db.add_all(rows)
            db.flush()
            return [row.id for row in rows]
    return add


@pytest.fixture
def client(settings, database):
    from finmon.main import create_app

    app = create_app(settings, database)
    with TestClient(app) as test_client:
        yield test_client

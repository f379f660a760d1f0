import os

# must be set before inspection_api.db builds its module-level engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table
from sqlalchemy.pool import StaticPool

from inspection_api.app_factory import create_app
from inspection_api.db import Settings, build_engine
from inspection_api.external_source import SourceConnection, get_source


def memory_engine():
    return build_engine("sqlite://", poolclass=StaticPool)


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        DIALECT="sqlite",
        CORS_ORIGINS=["http://localhost:5173"],
        ENGINE_CREATE_TABLES=True,
        ENGINE_SCHEMA_STRICT=False,
        SOURCE_DATABASE_URL=None,
        SOURCE_SYNC_MINUTES=None,
        UPLOAD_MAX_IMAGE_BYTES=1024,
        UPLOAD_MAX_FILES=3,
    )


@pytest.fixture
def db_engine():
    eng = memory_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def app(settings, db_engine):
    return create_app(settings=settings, db_engine=db_engine)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


SOURCE_METADATA = MetaData()

Table(
    "CheckIn", SOURCE_METADATA,
    Column("Id", String(50), primary_key=True),
    Column("LineNoId", String(50)),
    Column("WorkShiftId", String(50)),
    Column("GrCode", String(50)),
    Column("Username", String(100)),
    Column("Firstname", String(200)),
    Column("CreatedOn", DateTime),
    Column("CheckedOut", DateTime),
    Column("DateTimeStartWork", DateTime),
    Column("DateTimeOffWork", DateTime),
    Column("TimeStartWork", String(20)),
    Column("TimeOffWork", String(20)),
    Column("Group", String(50)),
    Column("Team", String(50)),
)

Table(
    "Input", SOURCE_METADATA,
    Column("Id", Integer, primary_key=True, autoincrement=False),
    Column("LotNo", String(50)),
    Column("PartSite", String(10)),
    Column("ItemNo", String(50)),
    Column("Model", String(100)),
    Column("Version", String(20)),
    Column("InputDate", DateTime),
    Column("FinishOn", DateTime),
)


@pytest.fixture
def source_engine():
    """Stand-in for the plant interface database."""
    eng = memory_engine()
    SOURCE_METADATA.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def source_tables():
    return SOURCE_METADATA.tables


@pytest.fixture
def source(app, source_engine):
    connection = SourceConnection(engine=source_engine, schema=None, batch_limit=500)
    app.dependency_overrides[get_source] = lambda: connection
    yield connection
    app.dependency_overrides.pop(get_source, None)

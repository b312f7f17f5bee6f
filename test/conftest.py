"""
Shared fixtures.

Connector tests run against the in-memory emulator: the DataSource's httpx
client is mounted on the emulator app through httpx.ASGITransport, so no
CouchDB server or network access is needed. Tests are plain functions that
drive the async API with asyncio.run.
"""

import uuid

import httpx
import pytest

from src.connector.config import ConnectorConfig
from src.connector.datasource import DataSource
from src.emulator.document_table import DocumentServer
from src.emulator.service import create_app

BASE_URL = "http://couchdb.test"

PERSON_PROPERTIES = {
    "id": {"type": str, "id": True},
    "name": str,
    "age": "number",
}

PERSONS = [
    {"id": "0", "name": "Charlie", "age": 24},
    {"id": "1", "name": "Mary", "age": 24},
    {"id": "2", "name": "David", "age": 24},
    {"name": "Jason", "age": 44},
]


def random_db_name() -> str:
    return "db" + uuid.uuid4().hex[:14]


@pytest.fixture
def store() -> DocumentServer:
    return DocumentServer()


@pytest.fixture
def make_datasource(store):
    """
    Factory for DataSources bound to the emulator.

    Keyword arguments override ConnectorConfig fields; each call gets a
    fresh random database name unless one is given.
    """
    app = create_app(store)

    def factory(**settings) -> DataSource:
        settings.setdefault("database", random_db_name())
        config = ConnectorConfig(url=BASE_URL, **settings)
        http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)
        return DataSource(config, http_client=http_client)

    return factory


@pytest.fixture
def persons():
    return [dict(p) for p in PERSONS]


@pytest.fixture
def person_properties():
    return dict(PERSON_PROPERTIES)

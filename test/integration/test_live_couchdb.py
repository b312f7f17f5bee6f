"""
Live CouchDB tests.

Run against a real server by exporting COUCH_URL (and COUCH_USERNAME /
COUCH_PASSWORD if the server requires auth):

    COUCH_URL=http://127.0.0.1:5984 COUCH_USERNAME=admin COUCH_PASSWORD=pw pytest test/integration
"""

import asyncio
import os
import uuid

import pytest
import requests

from src.connector.config import ConnectorConfig
from src.connector.datasource import DataSource
from src.connector.exceptions import ConflictError, NotFoundError

COUCH_URL = os.environ.get("COUCH_URL")

pytestmark = pytest.mark.skipif(not COUCH_URL, reason="COUCH_URL not set")


def auth():
    user = os.environ.get("COUCH_USERNAME")
    if not user:
        return None
    return (user, os.environ.get("COUCH_PASSWORD", ""))


@pytest.fixture
def database():
    name = "couchbridge_" + uuid.uuid4().hex[:12]
    r = requests.put(f"{COUCH_URL}/{name}", auth=auth(), timeout=5)
    r.raise_for_status()
    yield name
    requests.delete(f"{COUCH_URL}/{name}", auth=auth(), timeout=5)


def live_datasource(database, **settings):
    config = ConnectorConfig(
        url=COUCH_URL,
        database=database,
        username=os.environ.get("COUCH_USERNAME"),
        password=os.environ.get("COUCH_PASSWORD"),
        **settings,
    )
    return DataSource(config)


PERSON = {"id": {"type": str, "id": True}, "name": str, "age": "number"}


def test_live_crud(database):
    async def scenario():
        async with live_datasource(database) as ds:
            Person = ds.create_model("person", PERSON)
            await ds.autoupdate()

            await Person.create({"id": "0", "name": "Charlie", "age": 24})
            await Person.create({"id": "1", "name": "Mary", "age": 24})
            with pytest.raises(ConflictError):
                await Person.create({"id": "0", "name": "Dup"})

            person = await Person.find_by_id("0")
            person.name = "Charlie II"
            await person.save()
            assert (await Person.find_by_id("0")).to_dict() == {"id": "0", "name": "Charlie II", "age": 24}

            replaced = await Person.replace_by_id("0", {"name": "Charlie III"})
            assert "age" not in replaced
            with pytest.raises(NotFoundError):
                await Person.replace_by_id("lorem", {"name": "x"})

            assert len(await Person.find({"where": {"age": 24}})) == 1
            assert len(await Person.find_by_ids(["0", "1", "lorem"])) == 2
            assert await Person.remove({"id": {"inq": ["0", "1"]}}) == {"count": 2}
            assert await Person.remove({"id": {"inq": ["0", "1"]}}) == {"count": 0}

    asyncio.run(scenario())


def test_live_documents_carry_model_marker(database):
    async def scenario():
        async with live_datasource(database) as ds:
            Person = ds.create_model("person", PERSON)
            await Person.create({"id": "7", "name": "Rita"})

    asyncio.run(scenario())

    r = requests.get(f"{COUCH_URL}/{database}/7", auth=auth(), timeout=5)
    r.raise_for_status()
    doc = r.json()
    assert doc["docType"] == "person"
    assert doc["_rev"].startswith("1-")
    assert "id" not in doc

import asyncio

import pytest

from src.connector.exceptions import ConflictError, NotFoundError, ValidationError


async def seeded(make_datasource, person_properties, persons, **settings):
    ds = make_datasource(**settings)
    Person = ds.create_model("person", person_properties)
    await ds.autoupdate()
    for p in persons:
        await Person.create(p)
    return ds, Person


def test_count_and_exists(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)
        assert await Person.count() == 4
        assert await Person.count({"age": 24}) == 3
        assert await Person.count({"id": {"inq": ["0", "2", "lorem"]}}) == 2
        assert await Person.exists("1")
        assert not await Person.exists("lorem")

    asyncio.run(scenario())


def test_find_filters(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        async def names(filter):
            return sorted(p.name for p in await Person.find(filter))

        assert await names({"where": {"age": {"gt": 30}}}) == ["Jason"]
        assert await names({"where": {"age": {"between": [20, 30]}}}) == ["Charlie", "David", "Mary"]
        assert await names({"where": {"name": {"like": "Ma%"}}}) == ["Mary"]
        assert await names({"where": {"name": {"nlike": "%a%"}}}) == []
        assert await names({"where": {"name": {"inq": ["Mary", "David"]}}}) == ["David", "Mary"]
        assert await names({"where": {"name": {"nin": ["Mary", "David"]}}}) == ["Charlie", "Jason"]
        assert await names({"where": {"name": {"neq": "Mary"}, "age": 24}}) == ["Charlie", "David"]
        assert await names({"where": {"or": [{"name": "Mary"}, {"age": 44}]}}) == ["Jason", "Mary"]
        assert await names({"where": {"and": [{"age": 24}, {"id": {"inq": ["1", "2"]}}]}}) == ["David", "Mary"]

    asyncio.run(scenario())


def test_find_order_limit_skip(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        ordered = await Person.find({"order": "name ASC"})
        assert [p.name for p in ordered] == ["Charlie", "David", "Jason", "Mary"]

        ordered = await Person.find({"order": ["age DESC", "name ASC"], "skip": 1, "limit": 2})
        assert [p.name for p in ordered] == ["Charlie", "David"]

        # without an order, results come in id order
        page = await Person.find({"where": {"age": 24}, "limit": 2})
        assert [p.id for p in page] == ["0", "1"]
        page = await Person.find({"where": {"age": 24}, "skip": 2})
        assert [p.id for p in page] == ["2"]

        with pytest.raises(ValidationError):
            await Person.find({"order": "name SIDEWAYS"})

    asyncio.run(scenario())


def test_find_fields(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        found = await Person.find({"where": {"id": "1"}, "fields": ["id", "name"]})
        assert [p.to_dict() for p in found] == [{"id": "1", "name": "Mary"}]

        found = await Person.find({"where": {"id": "1"}, "fields": {"age": False}})
        assert [p.to_dict() for p in found] == [{"id": "1", "name": "Mary"}]

    asyncio.run(scenario())


def test_unbounded_find_pages_through_results(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons, page_size=2)
        for i in range(3, 8):
            await Person.create({"id": str(i), "name": f"P{i}", "age": i})

        assert len(await Person.find()) == 9
        assert await Person.count() == 9
        assert await Person.destroy_all({"age": {"lt": 10}}) == {"count": 5}
        assert await Person.count() == 4

    asyncio.run(scenario())


def test_find_one(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        person = await Person.find_one({"where": {"age": 44}})
        assert person.name == "Jason"
        person = await Person.find_one({"order": "name DESC"})
        assert person.name == "Mary"
        assert await Person.find_one({"where": {"age": 99}}) is None

    asyncio.run(scenario())


def test_update_attributes(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        person = await Person.find_by_id("0")
        await person.update_attributes({"age": 30, "city": "Oslo"})
        assert person.to_dict() == {"id": "0", "name": "Charlie", "age": 30, "city": "Oslo"}

        stored = await Person.find_by_id("0")
        assert stored.to_dict() == {"id": "0", "name": "Charlie", "age": 30, "city": "Oslo"}

        ghost = Person({"id": "lorem"})
        with pytest.raises(NotFoundError):
            await ghost.update_attributes({"age": 1})

    asyncio.run(scenario())


def test_update_or_create(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        person = await Person.update_or_create({"id": "0", "age": 99})
        assert person.to_dict() == {"id": "0", "name": "Charlie", "age": 99}

        person = await Person.update_or_create({"id": "9", "name": "Nina"})
        assert person.to_dict() == {"id": "9", "name": "Nina"}
        assert await Person.count() == 5

    asyncio.run(scenario())


def test_update_all(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        assert await Person.update_all({"age": 24}, {"age": 25}) == {"count": 3}
        assert await Person.count({"age": 25}) == 3
        assert (await Person.find_by_id("1")).name == "Mary"
        assert await Person.update_all({"age": 1000}, {"age": 1}) == {"count": 0}

        with pytest.raises(ValidationError):
            await Person.update_all({}, {"id": "x"})

    asyncio.run(scenario())


def test_models_sharing_a_database_are_isolated(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)
        Car = ds.create_model("car", {"make": str})
        await Car.create({"id": "c1", "make": "Volvo"})

        assert await Person.count() == 4
        assert await Car.count() == 1
        assert await Person.find_by_id("c1") is None
        assert await Car.find_by_id("0") is None
        assert await Car.destroy_by_id("0") == {"count": 0}
        assert await Person.destroy_all() == {"count": 4}
        assert await Car.count() == 1

        with pytest.raises(ConflictError):
            await Person.replace_or_create({"id": "c1", "name": "Impostor"})
        with pytest.raises(ConflictError):
            await Person.update_or_create({"id": "c1", "name": "Impostor"})

    asyncio.run(scenario())


def test_invalid_input_is_rejected(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)

        with pytest.raises(ValidationError):
            await Person.find_by_id("_design/find")
        with pytest.raises(ValidationError):
            await Person.create({"name": "Old", "age": "very"})
        with pytest.raises(ValidationError):
            await Person.create({"name": "Spy", "docType": "car"})
        with pytest.raises(ValidationError):
            await Person.replace_by_id("0", {"id": "1", "name": "Moved"})
        with pytest.raises(ValidationError):
            await Person.find({"where": {"$where": "1"}})
        with pytest.raises(ValidationError):
            await Person.find({"limit": -1})
        with pytest.raises(ValidationError):
            await Person.find({"include": "friends"})
        assert await Person.count() == 4

        # batch lookups skip malformed ids instead of rejecting them
        found = await Person.find_by_ids(["_design/find", "0"])
        assert [p.id for p in found] == ["0"]
        found = await Person.find({"where": {"id": {"inq": ["", "1"]}}})
        assert [p.id for p in found] == ["1"]

    asyncio.run(scenario())


def test_schema_lifecycle(make_datasource, person_properties, persons):
    async def scenario():
        ds, Person = await seeded(make_datasource, person_properties, persons)
        assert await ds.ping()

        # idempotent
        await ds.autoupdate()
        assert await Person.count() == 4

        await ds.automigrate()
        assert await Person.count() == 0

        assert await ds.destroy_database()
        assert not await ds.destroy_database()
        assert await ds.create_database()
        assert not await ds.create_database()

    asyncio.run(scenario())

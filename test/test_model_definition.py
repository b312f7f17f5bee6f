from typing import Any

import pytest

from src.connector import identity
from src.connector.exceptions import ValidationError
from src.connector.model import Model, ModelDefinition, normalize_properties


def test_identity_resolution():
    generated = identity.resolve_id()
    assert len(generated) == 32
    assert generated != identity.resolve_id()
    assert identity.resolve_id("abc") == "abc"
    assert identity.resolve_id(5) == "5"
    for bad in ("", "_design/x", True, 1.5, None, ["0"]):
        with pytest.raises(ValidationError):
            identity.validate_id(bad)


def test_id_field_defaults_and_overrides():
    assert ModelDefinition("person", {"name": str}).id_field == "id"
    custom = ModelDefinition("car", {"vin": {"type": "string", "id": True}, "make": str})
    assert custom.id_field == "vin"
    with pytest.raises(ValidationError):
        ModelDefinition("bad", {"a": {"type": str, "id": True}, "b": {"type": str, "id": True}})
    with pytest.raises(ValidationError):
        ModelDefinition("", {})
    with pytest.raises(ValidationError):
        ModelDefinition("bad", {"a": "complex"})


def test_validate_full_record():
    person = ModelDefinition("person", {
        "id": {"type": str, "id": True},
        "name": {"type": str, "required": True},
        "age": "number",
        "active": {"type": bool, "default": True},
        "tags": list,
    })

    assert person.validate({"id": "0", "name": "Charlie", "age": 24.5, "nickname": "C"}) == {
        "name": "Charlie",
        "age": 24.5,
        "active": True,
        "nickname": "C",
    }
    assert person.validate({"name": "Mary", "_rev": "1-a"}) == {"name": "Mary", "active": True}

    with pytest.raises(ValidationError) as exc_info:
        person.validate({"id": "3", "age": 1})
    assert exc_info.value.doc_id == "3"
    with pytest.raises(ValidationError):
        person.validate({"name": "Mary", "tags": "not a list"})


def test_validate_patch():
    person = ModelDefinition("person", {
        "name": {"type": str, "required": True},
        "active": {"type": bool, "default": True},
    })
    # required and default only apply to full records
    assert person.validate({"city": "Oslo"}, partial=True) == {"city": "Oslo"}
    with pytest.raises(ValidationError):
        person.validate({"active": "sometimes"}, partial=True)


def test_dates_are_stored_as_strings():
    event = ModelDefinition("event", {"at": "date"})
    assert event.validate({"at": "2024-01-02T03:04:05"}) == {"at": "2024-01-02T03:04:05"}


def test_untyped_properties_accept_anything():
    specs = {s.name: s for s in normalize_properties({"tags": {"required": False}, "meta": {"type": "any"}})}
    assert specs["tags"].type is Any
    assert specs["meta"].type is Any
    blob = ModelDefinition("blob", {"tags": {}, "meta": "any"})
    assert blob.validate({"tags": ["a", 1], "meta": {"x": None}}) == {"tags": ["a", 1], "meta": {"x": None}}


def test_instances_compare_by_fields_but_are_unhashable():
    a = Model({"id": "0", "name": "Charlie"})
    assert a == Model({"id": "0", "name": "Charlie"})
    assert a == {"id": "0", "name": "Charlie"}
    with pytest.raises(TypeError):
        hash(a)

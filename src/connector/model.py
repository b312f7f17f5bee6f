"""
Model layer.

A model is declared with loopback-style property definitions:

    Person = datasource.create_model("person", {
        "id": {"type": str, "id": True},
        "name": str,
        "age": "number",
    })

and gets the ORM surface as coroutines: ``await Person.create({...})``,
``await Person.find_by_id("0")``, ``await person.save()`` and so on. Declared
properties are validated with a pydantic model built from the definition;
undeclared fields are accepted as-is.
"""

import logging
from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Type, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, create_model

from src.connector.connector import REV, CouchConnector
from src.connector.exceptions import ValidationError

logger = logging.getLogger(__name__)

TYPE_NAMES: Dict[str, Any] = {
    "string": str,
    "number": Union[int, float],
    "boolean": bool,
    "date": datetime,
    "object": Dict[str, Any],
    "array": List[Any],
    "any": Any,
}

PY_TYPES: Dict[Any, Any] = {
    float: Union[int, float],
    dict: Dict[str, Any],
    list: List[Any],
    date: date,
}


def _resolve_type(spec: Any) -> Any:
    if isinstance(spec, str):
        try:
            return TYPE_NAMES[spec.lower()]
        except KeyError:
            raise ValidationError(message="Unknown property type", details=spec)
    return PY_TYPES.get(spec, spec)


class PropertySpec(BaseModel):
    """Normalized property definition."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    type: Any = Field(default=Any)
    id: bool = False
    required: bool = False
    default: Any = None


def normalize_properties(properties: Dict[str, Any]) -> List[PropertySpec]:
    specs = []
    for name, definition in properties.items():
        if isinstance(definition, dict):
            options = dict(definition)
            options["type"] = _resolve_type(options.get("type", Any))
            specs.append(PropertySpec(name=name, **options))
        else:
            specs.append(PropertySpec(name=name, type=_resolve_type(definition)))
    return specs


class ModelDefinition:
    """
    Schema of one model: its name, identity field and property validators.

    The identity field is not part of the pydantic schema; ids are strings
    owned by the identity resolver.
    """

    def __init__(self, name: str, properties: Optional[Dict[str, Any]] = None):
        if not name:
            raise ValidationError(message="Model name must not be empty")
        self.name = name
        self.properties = normalize_properties(properties or {})

        id_props = [p.name for p in self.properties if p.id]
        if len(id_props) > 1:
            raise ValidationError(message=f"{name} declares more than one id property", details=", ".join(id_props))
        self.id_field = id_props[0] if id_props else "id"

        declared = [p for p in self.properties if p.name != self.id_field]
        self.defaults = {p.name: p.default for p in declared if p.default is not None}
        config = ConfigDict(extra="allow")
        self.schema: Type[BaseModel] = create_model(
            f"{name.title()}Record",
            __config__=config,
            **{
                p.name: (p.type, ...) if p.required else (Optional[p.type], None)
                for p in declared
            },
        )
        self.patch_schema: Type[BaseModel] = create_model(
            f"{name.title()}Patch",
            __config__=config,
            **{p.name: (Optional[p.type], None) for p in declared},
        )

    def validate(self, data: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
        """
        Validate a record (or a patch when partial) and return its JSON-ready
        fields, without the identity field.

        Fields absent from data stay absent, except declared defaults on a
        full record.

        Raises:
            ValidationError: If a declared property has the wrong type or a
                required property is missing
        """
        values = {k: v for k, v in data.items() if k != self.id_field and k != REV}
        schema = self.patch_schema if partial else self.schema
        try:
            validated = schema.model_validate(values)
        except pydantic.ValidationError as e:
            raise ValidationError(
                message=f"Invalid {self.name} record",
                details=str(e),
                doc_id=None if data.get(self.id_field) is None else str(data.get(self.id_field)),
            )
        result = validated.model_dump(mode="json", exclude_unset=True)
        if not partial:
            for key, value in self.defaults.items():
                result.setdefault(key, value)
        return result


class hybridmethod:
    """
    Descriptor dispatching to a classmethod or an instance method by access.

    Lets ``Person.remove(where)`` and ``person.remove()`` coexist.
    """

    def __init__(self, class_func, instance_func):
        self.class_func = class_func
        self.instance_func = instance_func

    def __get__(self, instance, owner):
        if instance is None:
            return self.class_func.__get__(None, owner)
        return self.instance_func.__get__(instance, owner)


class Model:
    """
    Base class for model records.

    Subclasses are produced by DataSource.create_model and carry their
    definition and connector as class attributes; nothing is global.
    """

    definition: ClassVar[ModelDefinition]
    connector: ClassVar[CouchConnector]

    def __init__(self, data: Optional[Dict[str, Any]] = None, **fields: Any):
        values = dict(data or {})
        values.update(fields)
        object.__setattr__(self, "_data", values)
        object.__setattr__(self, "_rev", values.pop(REV, None))
        object.__setattr__(self, "_persisted", False)

    # ---------- record access ----------

    def __getattr__(self, name: str) -> Any:
        data = self.__dict__.get("_data", {})
        if name in data:
            return data[name]
        definition = getattr(type(self), "definition", None)
        if definition is not None and not name.startswith("_"):
            if name == definition.id_field or any(p.name == name for p in definition.properties):
                return None
        raise AttributeError(f"{type(self).__name__} has no field '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self._data[name] = value

    def __delattr__(self, name: str) -> None:
        self._data.pop(name, None)

    def __getitem__(self, name: str) -> Any:
        return self._data[name]

    def __contains__(self, name: str) -> bool:
        return name in self._data

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Model):
            return type(self) is type(other) and self._data == other._data
        if isinstance(other, dict):
            return self._data == other
        return NotImplemented

    # mutable records are unhashable
    __hash__ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    @property
    def is_new_record(self) -> bool:
        return not self._persisted

    @classmethod
    def _from_record(cls, record: Optional[Dict[str, Any]]):
        if record is None:
            return None
        instance = cls(record)
        instance._persisted = True
        return instance

    def _adopt(self, record: Dict[str, Any]) -> None:
        values = dict(record)
        self._rev = values.pop(REV, self._rev)
        self._data = values
        self._persisted = True

    # ---------- class-level operations ----------

    @classmethod
    async def create(cls, data: Union[Dict[str, Any], "Model"]):
        values = data.to_dict() if isinstance(data, Model) else data
        return cls._from_record(await cls.connector.create(cls.definition, values, include_rev=True))

    @classmethod
    async def find_by_id(cls, doc_id: Any, fields=None):
        return cls._from_record(
            await cls.connector.find_by_id(cls.definition, doc_id, fields=fields, include_rev=True)
        )

    @classmethod
    async def find_by_ids(cls, ids: Sequence[Any], fields=None):
        records = await cls.connector.find_by_ids(cls.definition, ids, fields=fields, include_rev=True)
        return [cls._from_record(r) for r in records]

    @classmethod
    async def find(cls, filter: Optional[Dict[str, Any]] = None):
        records = await cls.connector.find(cls.definition, filter, include_rev=True)
        return [cls._from_record(r) for r in records]

    @classmethod
    async def find_one(cls, filter: Optional[Dict[str, Any]] = None):
        return cls._from_record(await cls.connector.find_one(cls.definition, filter, include_rev=True))

    @classmethod
    async def count(cls, where: Optional[Dict[str, Any]] = None) -> int:
        return await cls.connector.count(cls.definition, where)

    @classmethod
    async def exists(cls, doc_id: Any) -> bool:
        return await cls.connector.exists(cls.definition, doc_id)

    @classmethod
    async def replace_by_id(cls, doc_id: Any, data: Dict[str, Any], rev: Optional[str] = None):
        return cls._from_record(
            await cls.connector.replace_by_id(cls.definition, doc_id, data, rev=rev, include_rev=True)
        )

    @classmethod
    async def replace_or_create(cls, data: Dict[str, Any], rev: Optional[str] = None):
        return cls._from_record(
            await cls.connector.replace_or_create(cls.definition, data, rev=rev, include_rev=True)
        )

    @classmethod
    async def update_or_create(cls, data: Dict[str, Any]):
        return cls._from_record(await cls.connector.update_or_create(cls.definition, data, include_rev=True))

    @classmethod
    async def update_all(cls, where: Optional[Dict[str, Any]], data: Dict[str, Any]) -> Dict[str, int]:
        return await cls.connector.update_all(cls.definition, where, data)

    @classmethod
    async def destroy_by_id(cls, doc_id: Any) -> Dict[str, int]:
        return await cls.connector.destroy_by_id(cls.definition, doc_id)

    @classmethod
    async def destroy_all(cls, where: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        return await cls.connector.remove(cls.definition, where)

    # ---------- instance-level operations ----------

    async def save(self):
        """
        Persist the instance.

        New instances are created. Persisted instances have their fields
        merged onto the stored document; if that document no longer exists
        nothing is written and None is returned.
        """
        if not self._persisted:
            self._adopt(await self.connector.create(self.definition, self._data, include_rev=True))
            return self

        doc_id = self._data.get(self.definition.id_field)
        result = await self.connector.save(self.definition, doc_id, self._data, rev=self._rev)
        if result.count == 0:
            self._persisted = False
            return None
        self._rev = result.rev
        self._adopt(result.record)
        return self

    async def update_attributes(self, data: Dict[str, Any]):
        doc_id = self._data.get(self.definition.id_field)
        self._adopt(
            await self.connector.update_attributes(self.definition, doc_id, data, rev=self._rev, include_rev=True)
        )
        return self

    async def destroy(self) -> Dict[str, int]:
        """Delete the instance's document; {"count": 0} if it was never stored."""
        doc_id = self._data.get(self.definition.id_field)
        if doc_id is None:
            return {"count": 0}
        result = await self.connector.destroy_by_id(self.definition, doc_id, rev=self._rev)
        self._persisted = False
        self._rev = None
        return result

    async def reload(self):
        """Re-read the instance from the store; None if it no longer exists."""
        doc_id = self._data.get(self.definition.id_field)
        record = await self.connector.find_by_id(self.definition, doc_id, include_rev=True)
        if record is None:
            self._persisted = False
            return None
        self._adopt(record)
        return self

    remove = hybridmethod(destroy_all, destroy)

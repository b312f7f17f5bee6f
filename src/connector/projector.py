"""
Shapes stored documents into caller records and back.

A stored document keeps the identity in _id, the revision in _rev and the
model name under the configured model key. Records carry none of that:
the identity is exposed under the model's id field and every bookkeeping
field is dropped.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from src.connector.exceptions import ValidationError
from src.connector.models import CountResult


def to_record(
    doc: Dict[str, Any],
    *,
    id_field: str,
    model_key: str,
    fields: Optional[Union[List[str], Dict[str, bool]]] = None,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {id_field: doc.get("_id")}
    for key, value in doc.items():
        if key.startswith("_") or key == model_key or key == id_field:
            continue
        record[key] = value
    if fields:
        record = project_fields(record, fields, id_field=id_field)
    return record


def to_records(docs: Iterable[Dict[str, Any]], **kwargs: Any) -> List[Dict[str, Any]]:
    return [to_record(doc, **kwargs) for doc in docs]


def to_body(
    record: Dict[str, Any],
    *,
    id_field: str,
    model_key: str,
    model_name: str,
) -> Dict[str, Any]:
    """Document body for a record: the record minus its id, plus the model marker."""
    body = {k: v for k, v in record.items() if k != id_field}
    reserved = [k for k in body if k.startswith("_") or k == model_key]
    if reserved:
        raise ValidationError(
            message="Reserved field names in record",
            details=", ".join(sorted(reserved)),
        )
    body[model_key] = model_name
    return body


def project_fields(
    record: Dict[str, Any],
    fields: Union[List[str], Dict[str, bool]],
    *,
    id_field: str,
) -> Dict[str, Any]:
    """
    Apply a loopback fields spec.

    A list (or a dict of truthy flags) keeps only those fields; a dict of
    only falsy flags drops those fields.
    """
    if isinstance(fields, dict):
        included = [k for k, v in fields.items() if v]
        if included:
            return {k: v for k, v in record.items() if k in included}
        excluded = {k for k, v in fields.items() if not v}
        return {k: v for k, v in record.items() if k not in excluded}
    return {k: v for k, v in record.items() if k in fields}


def parse_order(order: Union[str, Sequence[str], None]) -> List[tuple]:
    if not order:
        return []
    specs = [order] if isinstance(order, str) else list(order)
    parsed = []
    for spec in specs:
        for part in spec.split(","):
            tokens = part.split()
            if not tokens:
                continue
            if len(tokens) > 2 or (len(tokens) == 2 and tokens[1].upper() not in ("ASC", "DESC")):
                raise ValidationError(message="Invalid order clause", details=part.strip())
            descending = len(tokens) == 2 and tokens[1].upper() == "DESC"
            parsed.append((tokens[0], descending))
    return parsed


def _sort_key(value: Any) -> tuple:
    # None first, then numbers, then strings, then anything else by repr
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, repr(value))


def sort_records(records: List[Dict[str, Any]], order: Union[str, Sequence[str], None]) -> List[Dict[str, Any]]:
    result = list(records)
    for field, descending in reversed(parse_order(order)):
        result.sort(key=lambda r: _sort_key(r.get(field)), reverse=descending)
    return result


def count_result(count: int) -> Dict[str, int]:
    return CountResult(count=count).model_dump()

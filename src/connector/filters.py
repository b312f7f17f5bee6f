"""
Translation of loopback-style where filters into CouchDB Mango selectors.

    {"id": {"inq": ["0", "1"]}, "age": {"gt": 20}}
    ->
    {"$and": [{"docType": "person"},
              {"_id": {"$in": ["0", "1"]}, "age": {"$gt": 20}}]}
"""

import re
from typing import Any, Dict, List

from src.connector.exceptions import ValidationError

OPERATORS = {
    "eq": "$eq",
    "neq": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "inq": "$in",
    "nin": "$nin",
    "regexp": "$regex",
    "exists": "$exists",
}
SPECIAL_OPERATORS = ("between", "like", "nlike")
LIST_OPERATORS = ("inq", "nin")


def like_to_regex(pattern: str) -> str:
    """SQL LIKE pattern ('%' any run, '_' any char) to an anchored regex."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "^" + "".join(parts) + "$"


def _is_operator_dict(cond: Any) -> bool:
    return (
        isinstance(cond, dict)
        and bool(cond)
        and all(k in OPERATORS or k in SPECIAL_OPERATORS for k in cond)
    )


def _coerce(value: Any, is_id: bool) -> Any:
    if not is_id:
        return value
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return str(value) if isinstance(value, int) and not isinstance(value, bool) else value


def _field_condition(cond: Any, is_id: bool) -> Dict[str, Any]:
    if not _is_operator_dict(cond):
        return {"$eq": _coerce(cond, is_id)}

    mango: Dict[str, Any] = {}
    for op, value in cond.items():
        if op in LIST_OPERATORS and not isinstance(value, (list, tuple)):
            raise ValidationError(message=f"Operator '{op}' expects a list", details=repr(value))
        if op == "between":
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ValidationError(message="Operator 'between' expects [low, high]", details=repr(value))
            mango["$gte"] = _coerce(value[0], is_id)
            mango["$lte"] = _coerce(value[1], is_id)
        elif op == "like":
            mango["$regex"] = like_to_regex(str(value))
        elif op == "nlike":
            mango["$not"] = {"$regex": like_to_regex(str(value))}
        else:
            mango[OPERATORS[op]] = _coerce(value, is_id)
    return mango


def translate_where(where: Dict[str, Any], id_field: str) -> Dict[str, Any]:
    if not isinstance(where, dict):
        raise ValidationError(message="Invalid where filter", details=repr(where))

    selector: Dict[str, Any] = {}
    for key, cond in where.items():
        if key in ("and", "or"):
            if not isinstance(cond, list):
                raise ValidationError(message=f"'{key}' expects a list of filters", details=repr(cond))
            selector[f"${key}"] = [translate_where(sub, id_field) for sub in cond]
            continue
        if key.startswith("$"):
            raise ValidationError(message="Unsupported filter key", details=key)
        is_id = key == id_field
        selector["_id" if is_id else key] = _field_condition(cond, is_id)
    return selector


def build_selector(
    where: Dict[str, Any],
    *,
    id_field: str,
    model_key: str,
    model_name: str,
) -> Dict[str, Any]:
    """Full selector for one model: the model marker ANDed with the translated where."""
    clauses: List[Dict[str, Any]] = [{model_key: {"$eq": model_name}}]
    if where:
        clauses.append(translate_where(where, id_field))
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def extract_ids(where: Dict[str, Any], id_field: str):
    """
    Ids addressed by a pure id filter ({id: x} or {id: {inq: [...]}}), else None.

    Lets find/remove resolve such filters with a bulk lookup instead of a query.
    """
    if not where or set(where) != {id_field}:
        return None
    cond = where[id_field]
    if isinstance(cond, dict):
        if set(cond) == {"inq"} and isinstance(cond["inq"], (list, tuple)):
            return [str(v) for v in cond["inq"]]
        if set(cond) == {"eq"}:
            return [str(cond["eq"])]
        return None
    if isinstance(cond, (str, int)) and not isinstance(cond, bool):
        return [str(cond)]
    return None

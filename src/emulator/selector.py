"""
Mango selector evaluation for the emulator's _find endpoint.

Supports the combination operators $and, $or, $nor, $not and the condition
operators $eq, $ne, $gt, $gte, $lt, $lte, $in, $nin, $exists, $regex,
$type, $size, $all and $elemMatch. Field names may be dotted paths into
nested objects.
"""

import re
from typing import Any, Dict

_MISSING = object()


class SelectorError(ValueError):
    pass


def _lookup(doc: Any, path: str) -> Any:
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _compare(left: Any, right: Any, op) -> bool:
    # values of different JSON types never compare in the emulator
    if left is _MISSING or _type_name(left) != _type_name(right):
        return False
    if _type_name(left) not in ("number", "string"):
        return False
    return op(left, right)


def _match_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict) or not any(k.startswith("$") for k in condition):
        return value is not _MISSING and value == condition

    for op, arg in condition.items():
        if op == "$eq":
            ok = value is not _MISSING and value == arg
        elif op == "$ne":
            ok = value is _MISSING or value != arg
        elif op == "$gt":
            ok = _compare(value, arg, lambda a, b: a > b)
        elif op == "$gte":
            ok = _compare(value, arg, lambda a, b: a >= b)
        elif op == "$lt":
            ok = _compare(value, arg, lambda a, b: a < b)
        elif op == "$lte":
            ok = _compare(value, arg, lambda a, b: a <= b)
        elif op == "$in":
            if not isinstance(arg, list):
                raise SelectorError("$in expects an array")
            ok = value is not _MISSING and value in arg
        elif op == "$nin":
            if not isinstance(arg, list):
                raise SelectorError("$nin expects an array")
            ok = value is _MISSING or value not in arg
        elif op == "$exists":
            ok = (value is not _MISSING) == bool(arg)
        elif op == "$regex":
            ok = isinstance(value, str) and re.search(arg, value) is not None
        elif op == "$type":
            ok = value is not _MISSING and _type_name(value) == arg
        elif op == "$size":
            ok = isinstance(value, list) and len(value) == arg
        elif op == "$all":
            ok = isinstance(value, list) and all(item in value for item in arg)
        elif op == "$elemMatch":
            ok = isinstance(value, list) and any(_match_condition(item, arg) for item in value)
        elif op == "$not":
            ok = not _match_condition(value, arg)
        else:
            raise SelectorError(f"unsupported operator {op}")
        if not ok:
            return False
    return True


def matches(doc: Dict[str, Any], selector: Dict[str, Any]) -> bool:
    """True if the document satisfies every clause of the selector."""
    if not isinstance(selector, dict):
        raise SelectorError("selector must be an object")

    for key, condition in selector.items():
        if key == "$and":
            ok = all(matches(doc, sub) for sub in condition)
        elif key == "$or":
            ok = any(matches(doc, sub) for sub in condition)
        elif key == "$nor":
            ok = not any(matches(doc, sub) for sub in condition)
        elif key == "$not":
            ok = not matches(doc, condition)
        elif key.startswith("$"):
            raise SelectorError(f"unsupported operator {key}")
        else:
            ok = _match_condition(_lookup(doc, key), condition)
        if not ok:
            return False
    return True

"""
Document id resolution.

Caller-supplied ids are kept as-is (stringified); missing ids are generated
from uuid4, which gives 122 random bits per id.
"""

import uuid
from typing import Any

from src.connector.exceptions import ValidationError


def generate_id() -> str:
    return uuid.uuid4().hex


def validate_id(value: Any) -> str:
    """
    Return the document id for a caller-supplied value.

    Raises:
        ValidationError: empty ids, and ids starting with '_' which CouchDB
            reserves for design and local documents
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(
            message="Invalid document id",
            details=f"expected str or int, got {type(value).__name__}",
        )
    doc_id = str(value)
    if not doc_id:
        raise ValidationError(message="Invalid document id", details="id must not be empty")
    if doc_id.startswith("_"):
        raise ValidationError(
            message="Invalid document id",
            details="ids starting with '_' are reserved by the store",
            doc_id=doc_id,
        )
    return doc_id


def resolve_id(value: Any = None) -> str:
    """Validated caller id if one was given, otherwise a fresh generated id."""
    if value is None:
        return generate_id()
    return validate_id(value)

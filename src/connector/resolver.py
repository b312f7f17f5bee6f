"""
Store response classification.

Every HTTP exchange with the document store ends in one of three outcomes:
SUCCESS (with payload), NOT_FOUND, or CONFLICT. Anything else is raised:
400 as ValidationError, and every other status, connection failure or
undecodable body as TransportError. Absence is only ever reported for a
real 404 from the store.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from src.connector.exceptions import TransportError, ValidationError

logger = logging.getLogger(__name__)

CONFLICT_STATUSES = (409, 412)


class Outcome(str, Enum):
    """Classified store outcome."""
    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


@dataclass
class StoreOutcome:
    outcome: Outcome
    status_code: int
    payload: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def reason(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("reason") or self.payload.get("error")
        return None


def _decode(response: httpx.Response, database: str, doc_id: Optional[str]) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise TransportError(
            database=database,
            message="Undecodable response from document store",
            details=f"HTTP {response.status_code}: {e}",
            doc_id=doc_id,
        )


def classify(response: httpx.Response, *, database: str, doc_id: Optional[str] = None) -> StoreOutcome:
    """
    Classify a store response.

    Raises:
        ValidationError: the store rejected the request as malformed (400)
        TransportError: any status other than 2xx/400/404/409/412, or a 2xx
            whose body is not JSON
    """
    status = response.status_code

    if 200 <= status < 300:
        return StoreOutcome(Outcome.SUCCESS, status, _decode(response, database, doc_id))

    if status == 404:
        # only a CouchDB-shaped error body counts as absence
        body = _decode(response, database, doc_id)
        if not isinstance(body, dict) or "error" not in body:
            raise TransportError(
                database=database,
                message="Unexpected 404 from document store",
                details=str(body),
                doc_id=doc_id,
            )
        return StoreOutcome(Outcome.NOT_FOUND, status, body)

    if status in CONFLICT_STATUSES:
        return StoreOutcome(Outcome.CONFLICT, status, _safe_body(response))

    body = _safe_body(response)
    if status == 400:
        raise ValidationError(
            message="Document store rejected the request",
            details=_reason(body),
            doc_id=doc_id,
        )

    logger.error(
        f"Document store request failed: {status}",
        extra={"db": database, "doc_id": doc_id, "status_code": status},
    )
    raise TransportError(
        database=database,
        details=f"HTTP {status}: {_reason(body)}",
        doc_id=doc_id,
    )


def request_failed(exc: httpx.RequestError, *, database: str, doc_id: Optional[str] = None) -> TransportError:
    """Wrap a connection-level httpx failure (including timeouts)."""
    logger.error(
        f"Failed to connect to document store: {exc}",
        extra={"db": database, "doc_id": doc_id},
    )
    return TransportError(database=database, details=str(exc) or type(exc).__name__, doc_id=doc_id)


def bulk_get_entry(entry: Dict[str, Any], *, database: str) -> Optional[Dict[str, Any]]:
    """
    Resolve one result of POST /{db}/_bulk_get.

    Returns the document, or None when the store reports it missing or
    deleted. Any other per-document error aborts the batch.
    """
    doc_id = entry.get("id")
    for item in entry.get("docs") or []:
        if "ok" in item:
            doc = item["ok"]
            if doc.get("_deleted"):
                return None
            return doc
        error = item.get("error") or {}
        if error.get("error") == "not_found":
            return None
        raise TransportError(
            database=database,
            message="Bulk lookup failed",
            details=f"{error.get('error')}: {error.get('reason')}",
            doc_id=doc_id,
        )
    return None


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _reason(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("reason") or body.get("error") or body)
    return str(body)

"""
CouchDB Client

This module provides the HTTP client for one CouchDB database. It exposes the
document primitives the operation layer is built on and translates every
response through the resolver, so callers only ever see documents, None for
absence, or a typed exception.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from src.connector import resolver
from src.connector.exceptions import ConflictError, TransportError
from src.connector.models import BulkDocResult, DocumentWriteResult
from src.connector.resolver import Outcome, StoreOutcome

logger = logging.getLogger(__name__)

DESIGN_PREFIX = "_design/"


class CouchClient:
    """
    Client for a single CouchDB database.

    **Expected store interface** (CouchDB 2.x+ HTTP API):

    1. GET/PUT/DELETE /{db} - Database info / create / destroy
    2. GET /{db}/{docid} - Read document
    3. PUT /{db}/{docid} - Create or update document (body carries _rev on update)
    4. DELETE /{db}/{docid}?rev= - Delete document
    5. POST /{db}/_find - Mango query
    6. POST /{db}/_bulk_get - Batch read
    7. POST /{db}/_bulk_docs - Batch write / delete
    8. POST /{db}/_index - Create Mango index
    """

    def __init__(
        self,
        database: str,
        base_url: str,
        http_client: httpx.AsyncClient,
    ):
        """
        Initialize CouchDB client.

        Args:
            database: Name of the database
            base_url: Base URL of the CouchDB server
            http_client: Shared httpx client; timeouts and auth are configured on it
        """
        self.database = database
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client

    @property
    def db_url(self) -> str:
        return f"{self.base_url}/{quote(self.database, safe='')}"

    def doc_url(self, doc_id: str) -> str:
        if doc_id.startswith(DESIGN_PREFIX):
            name = doc_id[len(DESIGN_PREFIX):]
            return f"{self.db_url}/_design/{quote(name, safe='')}"
        return f"{self.db_url}/{quote(doc_id, safe='')}"

    async def _request(
        self,
        method: str,
        url: str,
        doc_id: Optional[str] = None,
        **kwargs: Any,
    ) -> StoreOutcome:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise resolver.request_failed(e, database=self.database, doc_id=doc_id)
        return resolver.classify(response, database=self.database, doc_id=doc_id)

    # =========================================================
    # Document primitives
    # =========================================================

    async def get_document(self, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a document by id.

        Returns:
            The stored document including _id and _rev, or None if absent

        Raises:
            TransportError: If communication fails
        """
        logger.debug(
            f"Reading document: {doc_id}",
            extra={"db": self.database, "doc_id": doc_id},
        )
        result = await self._request("GET", self.doc_url(doc_id), doc_id)
        if result.outcome is Outcome.NOT_FOUND:
            return None
        self._expect_success(result, doc_id)
        return result.payload

    async def put_document(
        self,
        doc_id: str,
        body: Dict[str, Any],
        rev: Optional[str] = None,
    ) -> DocumentWriteResult:
        """
        Create (rev=None) or overwrite (rev given) a document.

        The body is written as-is: whatever it does not contain is gone
        from the new revision.

        Returns:
            DocumentWriteResult with the new revision

        Raises:
            ConflictError: If the id exists and rev is missing or stale
            TransportError: If communication fails
        """
        payload = {k: v for k, v in body.items() if k not in ("_id", "_rev")}
        if rev is not None:
            payload["_rev"] = rev

        logger.info(
            f"Writing document: {doc_id}",
            extra={"db": self.database, "doc_id": doc_id, "rev": rev},
        )
        result = await self._request("PUT", self.doc_url(doc_id), doc_id, json=payload)
        if result.outcome is Outcome.CONFLICT:
            raise ConflictError(
                model=self.database,
                doc_id=doc_id,
                message="Document already exists" if rev is None else "Revision conflict",
                details=result.reason,
            )
        self._expect_success(result, doc_id)
        return DocumentWriteResult.model_validate(result.payload)

    async def delete_document(self, doc_id: str, rev: str) -> bool:
        """
        Delete a document at the given revision.

        Returns:
            True if deleted, False if the document did not exist

        Raises:
            ConflictError: If rev is not the current revision
            TransportError: If communication fails
        """
        logger.info(
            f"Deleting document: {doc_id}",
            extra={"db": self.database, "doc_id": doc_id, "rev": rev},
        )
        result = await self._request(
            "DELETE", self.doc_url(doc_id), doc_id, params={"rev": rev}
        )
        if result.outcome is Outcome.NOT_FOUND:
            return False
        if result.outcome is Outcome.CONFLICT:
            raise ConflictError(
                model=self.database,
                doc_id=doc_id,
                message="Revision conflict",
                details=result.reason,
            )
        self._expect_success(result, doc_id)
        return True

    async def query_documents(
        self,
        selector: Dict[str, Any],
        *,
        limit: Optional[int] = None,
        skip: int = 0,
        bookmark: Optional[str] = None,
        fields: Optional[List[str]] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Run a Mango query.

        Returns:
            (documents, bookmark) - the bookmark continues the query on the next page

        Raises:
            ValidationError: If the store rejects the selector
            TransportError: If communication fails
        """
        query: Dict[str, Any] = {"selector": selector}
        if limit is not None:
            query["limit"] = limit
        if skip:
            query["skip"] = skip
        if bookmark:
            query["bookmark"] = bookmark
        if fields:
            query["fields"] = fields

        logger.debug(
            "Querying documents",
            extra={"db": self.database, "selector": selector, "limit": limit, "skip": skip},
        )
        result = await self._request("POST", f"{self.db_url}/_find", json=query)
        self._expect_success(result)
        payload = result.payload or {}
        return list(payload.get("docs") or []), payload.get("bookmark")

    async def bulk_get(self, doc_ids: Sequence[str]) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
        """
        Read several documents in one request.

        Returns:
            (id, document or None) pairs in request order

        Raises:
            TransportError: If communication fails or any id fails with
                something other than not_found
        """
        if not doc_ids:
            return []
        logger.debug(
            f"Bulk reading {len(doc_ids)} documents",
            extra={"db": self.database, "doc_ids": list(doc_ids)},
        )
        result = await self._request(
            "POST",
            f"{self.db_url}/_bulk_get",
            json={"docs": [{"id": doc_id} for doc_id in doc_ids]},
        )
        self._expect_success(result)
        entries = (result.payload or {}).get("results") or []
        found = {
            entry.get("id"): resolver.bulk_get_entry(entry, database=self.database)
            for entry in entries
        }
        return [(doc_id, found.get(doc_id)) for doc_id in doc_ids]

    async def bulk_docs(self, docs: Sequence[Dict[str, Any]]) -> List[BulkDocResult]:
        """
        Write several documents in one request (non-atomic, per-document results).

        Raises:
            TransportError: If communication fails
        """
        if not docs:
            return []
        logger.info(
            f"Bulk writing {len(docs)} documents",
            extra={"db": self.database},
        )
        result = await self._request("POST", f"{self.db_url}/_bulk_docs", json={"docs": list(docs)})
        self._expect_success(result)
        return [BulkDocResult.model_validate(item) for item in result.payload or []]

    # =========================================================
    # Database primitives
    # =========================================================

    async def database_exists(self) -> bool:
        result = await self._request("GET", self.db_url)
        if result.outcome is Outcome.NOT_FOUND:
            return False
        self._expect_success(result)
        return True

    async def create_database(self) -> bool:
        """
        Create the database.

        Returns:
            True if created, False if it already existed
        """
        logger.info(f"Creating database: {self.database}", extra={"db": self.database})
        result = await self._request("PUT", self.db_url)
        if result.outcome is Outcome.CONFLICT:
            return False
        self._expect_success(result)
        return True

    async def destroy_database(self) -> bool:
        """
        Destroy the database.

        Returns:
            True if destroyed, False if it did not exist
        """
        logger.info(f"Destroying database: {self.database}", extra={"db": self.database})
        result = await self._request("DELETE", self.db_url)
        if result.outcome is Outcome.NOT_FOUND:
            return False
        self._expect_success(result)
        return True

    async def create_index(self, fields: List[str], name: str, ddoc: Optional[str] = None) -> str:
        """
        Create a Mango JSON index (idempotent on the store side).

        Returns:
            "created" or "exists"
        """
        body: Dict[str, Any] = {"index": {"fields": fields}, "name": name, "type": "json"}
        if ddoc:
            body["ddoc"] = ddoc
        logger.info(f"Ensuring index {name} on {fields}", extra={"db": self.database})
        result = await self._request("POST", f"{self.db_url}/_index", json=body)
        self._expect_success(result)
        return (result.payload or {}).get("result", "created")

    async def check_health(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if the server answered without a 5xx, False otherwise
        """
        try:
            response = await self.http_client.get(f"{self.base_url}/")
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.warning(f"Document store health check failed: {str(e)}")
            return False

    def _expect_success(self, result: StoreOutcome, doc_id: Optional[str] = None) -> None:
        if result.ok:
            return
        raise TransportError(
            database=self.database,
            message="Unexpected document store response",
            details=f"HTTP {result.status_code}: {result.reason}",
            doc_id=doc_id,
        )

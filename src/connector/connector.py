"""
CouchDB Connector

This module implements the CRUD operation layer: each model operation is
mapped to one or more CouchClient calls and the result is shaped by the
projector. Two write flavours exist and must not be mixed up:

- replace (replace_by_id, replace_or_create): the new body is the payload,
  fields the payload does not mention are gone afterwards
- merge (save, update_attributes, update_or_create, update_all): the payload
  is laid over the stored body, other fields survive

The connector keeps no state between calls; concurrent writers are arbitrated
by the store's revision check and a lost race surfaces as ConflictError.

Records never carry the revision token unless include_rev=True is passed;
the model layer uses that to keep revisions on its instances.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import pydantic

from src.connector import filters, identity, projector
from src.connector.config import ConnectorConfig
from src.connector.exceptions import ConflictError, NotFoundError, TransportError, ValidationError
from src.connector.models import BulkDocResult, Filter, SaveResult
from src.connector.services.couch_client import CouchClient

if TYPE_CHECKING:
    from src.connector.model import ModelDefinition

logger = logging.getLogger(__name__)

REV = "_rev"


class CouchConnector:
    """
    CRUD operations for models stored in one CouchDB database.

    Every method takes the ModelDefinition it operates on; documents of
    other models sharing the database are invisible to it.
    """

    def __init__(self, client: CouchClient, config: ConnectorConfig):
        """
        Initialize connector.

        Args:
            client: Store client for the target database
            config: Connector configuration (model key, revision policy, paging)
        """
        self.client = client
        self.config = config
        self.model_key = config.model_key

    # =========================================================
    # Internal helpers
    # =========================================================

    def _owned(self, model: "ModelDefinition", doc: Optional[Dict[str, Any]]) -> bool:
        return doc is not None and doc.get(self.model_key) == model.name

    def _record(
        self,
        model: "ModelDefinition",
        doc: Dict[str, Any],
        fields=None,
        include_rev: bool = False,
    ) -> Dict[str, Any]:
        record = projector.to_record(doc, id_field=model.id_field, model_key=self.model_key, fields=fields)
        if include_rev and doc.get(REV):
            record[REV] = doc[REV]
        return record

    def _body(self, model: "ModelDefinition", record: Dict[str, Any]) -> Dict[str, Any]:
        return projector.to_body(record, id_field=model.id_field, model_key=self.model_key, model_name=model.name)

    def _payload_id(self, model: "ModelDefinition", data: Dict[str, Any]) -> Optional[str]:
        value = data.get(model.id_field)
        return None if value is None else identity.validate_id(value)

    def _check_same_id(self, model: "ModelDefinition", doc_id: str, data: Dict[str, Any]) -> None:
        payload_id = self._payload_id(model, data)
        if payload_id is not None and payload_id != doc_id:
            raise ValidationError(
                message=f"{model.name} id cannot be changed",
                details=f"{doc_id} -> {payload_id}",
                doc_id=doc_id,
            )

    def _write_rev(self, model: "ModelDefinition", doc_id: str, current: Dict[str, Any], rev: Optional[str]) -> str:
        """Revision presented on a body write, according to the revision policy."""
        if self.config.revision_policy == "fetch":
            return current[REV]
        if rev is None:
            raise ValidationError(
                message=f"{model.name} write requires a revision",
                details="revision_policy is 'require' and no revision was supplied",
                doc_id=doc_id,
            )
        return rev

    async def _put(self, model: "ModelDefinition", doc_id: str, body: Dict[str, Any], rev: Optional[str] = None) -> str:
        try:
            result = await self.client.put_document(doc_id, body, rev=rev)
        except ConflictError as e:
            raise ConflictError(
                model=model.name,
                doc_id=doc_id,
                message="Document already exists" if rev is None else "Revision conflict",
                details=e.details,
            )
        return result.rev

    async def _load(self, model: "ModelDefinition", doc_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.client.get_document(doc_id)
        return doc if self._owned(model, doc) else None

    async def _load_many(self, model: "ModelDefinition", ids: Sequence[Any]) -> List[Dict[str, Any]]:
        wanted: List[str] = []
        for value in ids:
            try:
                doc_id = identity.validate_id(value)
            except ValidationError:
                # malformed ids can never match a stored document
                continue
            if doc_id not in wanted:
                wanted.append(doc_id)
        pairs = await self.client.bulk_get(wanted)
        return [doc for _, doc in pairs if self._owned(model, doc)]

    async def _query_all(
        self,
        selector: Dict[str, Any],
        *,
        skip: int = 0,
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        page_size = self.config.page_size
        docs, bookmark = await self.client.query_documents(selector, limit=page_size, skip=skip, fields=fields)
        results = list(docs)
        while len(docs) == page_size and bookmark:
            docs, bookmark = await self.client.query_documents(
                selector, limit=page_size, bookmark=bookmark, fields=fields
            )
            results.extend(docs)
        return results

    async def _matching_docs(
        self,
        model: "ModelDefinition",
        where: Optional[Dict[str, Any]],
        fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        ids = filters.extract_ids(where or {}, model.id_field)
        if ids is not None:
            return await self._load_many(model, ids)
        selector = filters.build_selector(
            where or {}, id_field=model.id_field, model_key=self.model_key, model_name=model.name
        )
        return await self._query_all(selector, fields=fields)

    def _bulk_count(self, model: "ModelDefinition", results: List[BulkDocResult]) -> int:
        count = 0
        for item in results:
            if item.succeeded:
                count += 1
            elif item.error == "not_found":
                continue
            elif item.error == "conflict":
                raise ConflictError(model=model.name, doc_id=item.id, message="Revision conflict", details=item.reason)
            else:
                raise TransportError(
                    database=self.client.database,
                    message="Bulk write failed",
                    details=f"{item.error}: {item.reason}",
                    doc_id=item.id,
                )
        return count

    # =========================================================
    # Create / read
    # =========================================================

    async def create(self, model: "ModelDefinition", data: Dict[str, Any], include_rev: bool = False) -> Dict[str, Any]:
        """
        Create a document.

        Returns:
            The saved record with its resolved id

        Raises:
            ConflictError: If the id is already taken
            ValidationError: If the record fails the model schema
        """
        doc_id = identity.resolve_id(data.get(model.id_field))
        body = self._body(model, model.validate(data))
        rev = await self._put(model, doc_id, body)
        logger.info(f"{model.name} created: {doc_id}", extra={"model": model.name, "doc_id": doc_id})
        return self._record(model, {"_id": doc_id, REV: rev, **body}, include_rev=include_rev)

    async def find_by_id(
        self,
        model: "ModelDefinition",
        doc_id: Any,
        fields=None,
        include_rev: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Record for the id, or None if it does not exist.

        Raises:
            ValidationError: If doc_id is not a valid id (empty or starting
                with an underscore)
        """
        doc = await self._load(model, identity.validate_id(doc_id))
        if doc is None:
            return None
        return self._record(model, doc, fields, include_rev=include_rev)

    async def exists(self, model: "ModelDefinition", doc_id: Any) -> bool:
        return await self._load(model, identity.validate_id(doc_id)) is not None

    async def find_by_ids(
        self,
        model: "ModelDefinition",
        ids: Sequence[Any],
        fields=None,
        include_rev: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Records for the ids that exist, in request order.

        Missing ids are skipped; the result may be shorter than ids. Unlike
        find_by_id, malformed ids are skipped rather than rejected; find with
        an id filter behaves the same way.
        """
        docs = await self._load_many(model, ids)
        return [self._record(model, doc, fields, include_rev=include_rev) for doc in docs]

    async def find(
        self,
        model: "ModelDefinition",
        filter: Optional[Dict[str, Any]] = None,
        include_rev: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Records matching a loopback-style filter.

        Pure id filters are answered with a bulk lookup, everything else
        with a Mango query. Ordering is applied after all matches are
        fetched, then skip/limit.
        """
        try:
            query = Filter.model_validate(filter or {})
        except pydantic.ValidationError as e:
            raise ValidationError(message=f"Invalid {model.name} filter", details=str(e))
        ids = filters.extract_ids(query.where, model.id_field)

        if ids is not None or query.order:
            if ids is not None:
                docs = await self._load_many(model, ids)
            else:
                docs = await self._matching_docs(model, query.where)
            records = projector.sort_records(
                [self._record(model, doc, include_rev=include_rev) for doc in docs], query.order
            )
            end = None if query.limit is None else query.skip + query.limit
            records = records[query.skip:end]
        else:
            selector = filters.build_selector(
                query.where, id_field=model.id_field, model_key=self.model_key, model_name=model.name
            )
            if query.limit is not None:
                docs, _ = await self.client.query_documents(selector, limit=query.limit, skip=query.skip)
            else:
                docs = await self._query_all(selector, skip=query.skip)
            records = [self._record(model, doc, include_rev=include_rev) for doc in docs]

        if query.fields:
            records = [projector.project_fields(r, query.fields, id_field=model.id_field) for r in records]
        return records

    async def find_one(
        self,
        model: "ModelDefinition",
        filter: Optional[Dict[str, Any]] = None,
        include_rev: bool = False,
    ) -> Optional[Dict[str, Any]]:
        query = dict(filter or {})
        query["limit"] = 1
        records = await self.find(model, query, include_rev=include_rev)
        return records[0] if records else None

    async def count(self, model: "ModelDefinition", where: Optional[Dict[str, Any]] = None) -> int:
        return len(await self._matching_docs(model, where, fields=["_id"]))

    # =========================================================
    # Replace (full overwrite)
    # =========================================================

    async def replace_by_id(
        self,
        model: "ModelDefinition",
        doc_id: Any,
        data: Dict[str, Any],
        rev: Optional[str] = None,
        include_rev: bool = False,
    ) -> Dict[str, Any]:
        """
        Overwrite a document with exactly the given payload.

        Raises:
            NotFoundError: If the id does not exist
            ConflictError: If the revision presented is stale
            ValidationError: If the payload changes the id or fails the schema
        """
        doc_id = identity.validate_id(doc_id)
        self._check_same_id(model, doc_id, data)
        body = self._body(model, model.validate(data))

        current = await self._load(model, doc_id)
        if current is None:
            raise NotFoundError(model=model.name, doc_id=doc_id)

        new_rev = await self._put(model, doc_id, body, rev=self._write_rev(model, doc_id, current, rev))
        logger.info(f"{model.name} replaced: {doc_id}", extra={"model": model.name, "doc_id": doc_id})
        return self._record(model, {"_id": doc_id, REV: new_rev, **body}, include_rev=include_rev)

    async def replace_or_create(
        self,
        model: "ModelDefinition",
        data: Dict[str, Any],
        rev: Optional[str] = None,
        include_rev: bool = False,
    ) -> Dict[str, Any]:
        """Replace the document named by the payload's id, creating it if absent."""
        doc_id = self._payload_id(model, data)
        if doc_id is None:
            return await self.create(model, data, include_rev=include_rev)

        body = self._body(model, model.validate(data))
        current = await self.client.get_document(doc_id)
        if current is None:
            new_rev = await self._put(model, doc_id, body)
        elif not self._owned(model, current):
            raise ConflictError(model=model.name, doc_id=doc_id, message="Id is used by another model")
        else:
            new_rev = await self._put(model, doc_id, body, rev=self._write_rev(model, doc_id, current, rev))
        return self._record(model, {"_id": doc_id, REV: new_rev, **body}, include_rev=include_rev)

    # =========================================================
    # Merge (partial update)
    # =========================================================

    async def _merge(
        self,
        model: "ModelDefinition",
        doc_id: str,
        current: Dict[str, Any],
        patch: Dict[str, Any],
        rev: Optional[str],
        include_rev: bool,
    ) -> Dict[str, Any]:
        merged = self._record(model, current)
        merged.update(model.validate(patch, partial=True))
        body = self._body(model, model.validate(merged))
        new_rev = await self._put(model, doc_id, body, rev=self._write_rev(model, doc_id, current, rev))
        return self._record(model, {"_id": doc_id, REV: new_rev, **body}, include_rev=include_rev)

    async def save(
        self,
        model: "ModelDefinition",
        doc_id: Any,
        data: Dict[str, Any],
        rev: Optional[str] = None,
    ) -> SaveResult:
        """
        Merge an already persisted instance's fields onto its stored document.

        Returns:
            SaveResult(count=1, record, rev), or count=0 when the document
            no longer exists (nothing is written)
        """
        doc_id = identity.validate_id(doc_id)
        self._check_same_id(model, doc_id, data)
        current = await self._load(model, doc_id)
        if current is None:
            logger.warning(
                f"{model.name} {doc_id} no longer exists, save skipped",
                extra={"model": model.name, "doc_id": doc_id},
            )
            return SaveResult(count=0)
        record = await self._merge(model, doc_id, current, data, rev, include_rev=True)
        new_rev = record.pop(REV)
        return SaveResult(count=1, record=record, rev=new_rev)

    async def update_attributes(
        self,
        model: "ModelDefinition",
        doc_id: Any,
        data: Dict[str, Any],
        rev: Optional[str] = None,
        include_rev: bool = False,
    ) -> Dict[str, Any]:
        """
        Merge a patch onto an existing document.

        Raises:
            NotFoundError: If the id does not exist
        """
        doc_id = identity.validate_id(doc_id)
        self._check_same_id(model, doc_id, data)
        current = await self._load(model, doc_id)
        if current is None:
            raise NotFoundError(model=model.name, doc_id=doc_id)
        return await self._merge(model, doc_id, current, data, rev, include_rev)

    async def update_or_create(
        self,
        model: "ModelDefinition",
        data: Dict[str, Any],
        include_rev: bool = False,
    ) -> Dict[str, Any]:
        """Merge onto the document named by the payload's id, creating it if absent."""
        doc_id = self._payload_id(model, data)
        if doc_id is None:
            return await self.create(model, data, include_rev=include_rev)
        current = await self.client.get_document(doc_id)
        if current is None:
            return await self.create(model, data, include_rev=include_rev)
        if not self._owned(model, current):
            raise ConflictError(model=model.name, doc_id=doc_id, message="Id is used by another model")
        return await self._merge(model, doc_id, current, data, current[REV], include_rev)

    async def update_all(
        self,
        model: "ModelDefinition",
        where: Optional[Dict[str, Any]],
        data: Dict[str, Any],
    ) -> Dict[str, int]:
        """
        Merge a patch onto every matching document.

        Returns:
            {"count": n} - documents actually updated
        """
        if model.id_field in data:
            raise ValidationError(message=f"{model.name} id cannot be changed in a bulk update")
        patch = model.validate(data, partial=True)
        docs = await self._matching_docs(model, where)

        updates = []
        for doc in docs:
            merged = self._record(model, doc)
            merged.update(patch)
            body = self._body(model, model.validate(merged))
            updates.append({"_id": doc["_id"], REV: doc[REV], **body})

        count = self._bulk_count(model, await self.client.bulk_docs(updates))
        logger.info(f"{model.name} bulk update: {count} documents", extra={"model": model.name})
        return projector.count_result(count)

    # =========================================================
    # Delete
    # =========================================================

    async def destroy_by_id(self, model: "ModelDefinition", doc_id: Any, rev: Optional[str] = None) -> Dict[str, int]:
        """
        Delete a document.

        Under the 'require' policy a caller-supplied revision is presented,
        so a stale one fails with ConflictError. Otherwise, and whenever no
        revision is given, the revision just read is used.

        Returns:
            {"count": 1} if deleted, {"count": 0} if it did not exist
        """
        doc_id = identity.validate_id(doc_id)
        current = await self._load(model, doc_id)
        if current is None:
            return projector.count_result(0)
        if rev is None or self.config.revision_policy == "fetch":
            rev = current[REV]
        try:
            deleted = await self.client.delete_document(doc_id, rev)
        except ConflictError as e:
            raise ConflictError(model=model.name, doc_id=doc_id, message="Revision conflict", details=e.details)
        if deleted:
            logger.info(f"{model.name} destroyed: {doc_id}", extra={"model": model.name, "doc_id": doc_id})
        return projector.count_result(1 if deleted else 0)

    async def remove(self, model: "ModelDefinition", where: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        """
        Delete every matching document (all of the model's documents when where is empty).

        A document deleted by someone else between the lookup and the write
        comes back as a conflict; it is re-read and, once gone, simply not
        counted.

        Returns:
            {"count": n} - documents actually deleted; ids that do not
            exist are not counted

        Raises:
            ConflictError: If a matched document was changed (not deleted)
                concurrently and is still live
        """
        docs = await self._matching_docs(model, where, fields=["_id", REV])
        tombstones = [{"_id": doc["_id"], REV: doc[REV], "_deleted": True} for doc in docs]
        results = await self.client.bulk_docs(tombstones)

        conflicted = [item for item in results if item.error == "conflict"]
        count = self._bulk_count(model, [item for item in results if item.error != "conflict"])
        if conflicted:
            pairs = await self.client.bulk_get([item.id for item in conflicted])
            live = {doc_id for doc_id, doc in pairs if self._owned(model, doc)}
            for item in conflicted:
                if item.id in live:
                    raise ConflictError(
                        model=model.name, doc_id=item.id, message="Revision conflict", details=item.reason
                    )
            logger.info(
                f"{model.name} remove: {len(conflicted)} documents already deleted",
                extra={"model": model.name},
            )
        logger.info(f"{model.name} removed: {count} documents", extra={"model": model.name})
        return projector.count_result(count)

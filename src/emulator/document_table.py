import base64
import copy
import json
import logging
import re
import threading
import uuid
from typing import Any, Dict, List, Optional

from src.emulator.err_code import ErrCode, StoreResult
from src.emulator.selector import SelectorError, matches

logger = logging.getLogger("emulator")

DB_NAME_RE = re.compile(r"^[a-z][a-z0-9_$()+/-]*$")
REV_RE = re.compile(r"^[0-9]+-[0-9a-f]+$")
DESIGN_PREFIX = "_design/"
RESERVED_PREFIXES = (DESIGN_PREFIX, "_local/")
SPECIAL_MEMBERS = ("_id", "_rev", "_deleted")


class Record(dict):
    """Stored document body plus its current revision and tombstone flag."""

    def __init__(self, data, rev: str, deleted: bool = False):
        super().__init__(data)
        self.rev = rev
        self.deleted = deleted

    @property
    def generation(self) -> int:
        return int(self.rev.split("-", 1)[0])


def _next_rev(current: Optional[Record]) -> str:
    generation = current.generation + 1 if current is not None else 1
    return f"{generation}-{uuid.uuid4().hex}"


def _encode_bookmark(offset: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"offset": offset}).encode()).decode()


def _decode_bookmark(bookmark: str) -> Optional[int]:
    try:
        offset = json.loads(base64.urlsafe_b64decode(bookmark.encode()))["offset"]
    except (ValueError, KeyError, TypeError):
        return None
    return offset if isinstance(offset, int) and offset >= 0 else None


def _project(doc: Dict[str, Any], fields: Optional[List[str]]) -> Dict[str, Any]:
    if not fields:
        return doc
    projected: Dict[str, Any] = {}
    for field in fields:
        value: Any = doc
        parts = field.split(".")
        for part in parts:
            if not isinstance(value, dict) or part not in value:
                break
            value = value[part]
        else:
            target = projected
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value
    return projected


def check_doc_id(doc_id: Any) -> StoreResult:
    if not isinstance(doc_id, str) or not doc_id:
        return StoreResult.fail(ErrCode.INVALID_ARGUMENT, "Document id must be a non-empty string")
    if doc_id.startswith("_") and not doc_id.startswith(RESERVED_PREFIXES):
        return StoreResult.fail(ErrCode.INVALID_ARGUMENT, "Only reserved document ids may start with underscore.")
    return StoreResult.success(doc_id)


class DocumentTable:
    """
    One database: documents keyed by id, each with a revision token.

    Every write presents the revision it was based on; a write against a
    live document with a missing or stale revision is a conflict. Deleting
    leaves a tombstone, which a later write may recreate without a revision.
    """

    def __init__(self, name: str):
        self.name = name
        self.records: Dict[str, Record] = {}
        self.indexes: Dict[str, Dict[str, Any]] = {}
        self.update_seq = 0
        self._mutex = threading.Lock()

    # =========================================================
    # Internal helper methods
    # =========================================================

    @staticmethod
    def _doc(doc_id: str, record: Record) -> Dict[str, Any]:
        if record.deleted:
            return {"_id": doc_id, "_rev": record.rev, "_deleted": True}
        doc = {"_id": doc_id, "_rev": record.rev}
        doc.update(copy.deepcopy(dict(record)))
        return doc

    def _write(self, doc_id: str, body: Dict[str, Any]) -> StoreResult:
        checked = check_doc_id(doc_id)
        if not checked.ok:
            return checked
        for key in body:
            if key.startswith("_") and key not in SPECIAL_MEMBERS:
                return StoreResult.fail(ErrCode.INVALID_ARGUMENT, f"Bad special document member: {key}")

        rev = body.get("_rev")
        deleted = bool(body.get("_deleted", False))
        if rev is not None and (not isinstance(rev, str) or not REV_RE.match(rev)):
            return StoreResult.fail(ErrCode.INVALID_ARGUMENT, "Invalid rev format")

        current = self.records.get(doc_id)
        if current is None or current.deleted:
            if deleted and current is None:
                return StoreResult.fail(ErrCode.DOC_NOT_FOUND)
            if rev is not None and (current is None or rev != current.rev):
                logger.debug("Table.write conflict: db=%s id=%s rev=%s (no live doc)", self.name, doc_id, rev)
                return StoreResult.fail(ErrCode.DOC_CONFLICT)
        elif rev != current.rev:
            logger.debug(
                "Table.write conflict: db=%s id=%s presented=%s current=%s",
                self.name, doc_id, rev, current.rev,
            )
            return StoreResult.fail(ErrCode.DOC_CONFLICT)

        data = {} if deleted else {k: copy.deepcopy(v) for k, v in body.items() if k not in SPECIAL_MEMBERS}
        record = Record(data, rev=_next_rev(current), deleted=deleted)
        self.records[doc_id] = record
        self.update_seq += 1
        logger.debug("Table.write: db=%s id=%s rev=%s deleted=%s", self.name, doc_id, record.rev, deleted)
        return StoreResult.success({"ok": True, "id": doc_id, "rev": record.rev})

    # =========================================================
    # Documents
    # =========================================================

    def get(self, doc_id: str) -> StoreResult:
        with self._mutex:
            record = self.records.get(doc_id)
            if record is None:
                return StoreResult.fail(ErrCode.DOC_NOT_FOUND)
            if record.deleted:
                return StoreResult.fail(ErrCode.DOC_DELETED)
            return StoreResult.success(self._doc(doc_id, record))

    def put(self, doc_id: str, body: Dict[str, Any]) -> StoreResult:
        with self._mutex:
            return self._write(doc_id, body)

    def delete(self, doc_id: str, rev: Optional[str]) -> StoreResult:
        with self._mutex:
            record = self.records.get(doc_id)
            if record is None:
                return StoreResult.fail(ErrCode.DOC_NOT_FOUND)
            if record.deleted:
                return StoreResult.fail(ErrCode.DOC_DELETED)
            return self._write(doc_id, {"_rev": rev, "_deleted": True})

    def bulk_get(self, doc_ids: List[Any]) -> List[Dict[str, Any]]:
        """Entries shaped like CouchDB's _bulk_get results, in request order."""
        results = []
        with self._mutex:
            for doc_id in doc_ids:
                record = self.records.get(doc_id) if isinstance(doc_id, str) else None
                if record is None:
                    item = {"error": {"id": doc_id, "rev": "undefined", "error": "not_found", "reason": "missing"}}
                else:
                    item = {"ok": self._doc(doc_id, record)}
                results.append({"id": doc_id, "docs": [item]})
        return results

    def bulk_docs(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Write each document independently; failures are reported per entry."""
        results = []
        with self._mutex:
            for doc in docs:
                doc_id = doc.get("_id") or uuid.uuid4().hex
                res = self._write(doc_id, doc)
                if res.ok:
                    results.append(res.value)
                else:
                    results.append({"id": doc_id, **res.error_body()})
        logger.info(
            "Table.bulk_docs: db=%s docs=%d failed=%d",
            self.name, len(docs), sum(1 for r in results if "error" in r),
        )
        return results

    # =========================================================
    # Queries
    # =========================================================

    def find(
        self,
        selector: Dict[str, Any],
        *,
        limit: int,
        skip: int = 0,
        bookmark: Optional[str] = None,
        fields: Optional[List[str]] = None,
    ) -> StoreResult:
        """
        Live, non-design documents matching the selector, ordered by id.

        The bookmark encodes the offset following the returned page.
        """
        offset = 0
        if bookmark and bookmark != "nil":
            offset = _decode_bookmark(bookmark)
            if offset is None:
                return StoreResult.fail(ErrCode.INVALID_ARGUMENT, "Invalid bookmark value")
        offset += skip

        with self._mutex:
            candidates = [
                self._doc(doc_id, record)
                for doc_id, record in sorted(self.records.items())
                if not record.deleted and not doc_id.startswith(DESIGN_PREFIX)
            ]
        try:
            matched = [doc for doc in candidates if matches(doc, selector)]
        except SelectorError as e:
            return StoreResult.fail(ErrCode.INVALID_ARGUMENT, str(e))
        except re.error as e:
            return StoreResult.fail(ErrCode.INVALID_ARGUMENT, f"Invalid regex: {e}")

        page = matched[offset:offset + limit]
        return StoreResult.success({
            "docs": [_project(doc, fields) for doc in page],
            "bookmark": _encode_bookmark(offset + len(page)),
        })

    def all_docs(self, include_docs: bool = False) -> Dict[str, Any]:
        with self._mutex:
            rows = []
            for doc_id, record in sorted(self.records.items()):
                if record.deleted:
                    continue
                row: Dict[str, Any] = {"id": doc_id, "key": doc_id, "value": {"rev": record.rev}}
                if include_docs:
                    row["doc"] = self._doc(doc_id, record)
                rows.append(row)
        return {"total_rows": len(rows), "offset": 0, "rows": rows}

    def create_index(self, fields: List[Any], name: Optional[str], ddoc: Optional[str]) -> Dict[str, Any]:
        """Register a Mango index definition; matching never depends on it."""
        name = name or "-".join(str(f) for f in fields)
        ddoc_id = f"{DESIGN_PREFIX}{ddoc or name}"
        with self._mutex:
            if name in self.indexes:
                return {"result": "exists", "id": self.indexes[name]["ddoc"], "name": name}
            self.indexes[name] = {"ddoc": ddoc_id, "fields": list(fields)}
        logger.info("Table.create_index: db=%s name=%s fields=%s", self.name, name, fields)
        return {"result": "created", "id": ddoc_id, "name": name}

    def info(self) -> Dict[str, Any]:
        with self._mutex:
            live = sum(1 for r in self.records.values() if not r.deleted)
            return {
                "db_name": self.name,
                "doc_count": live,
                "doc_del_count": len(self.records) - live,
                "update_seq": self.update_seq,
            }


class DocumentServer:
    """The set of databases served by one emulator instance."""

    def __init__(self):
        self.tables: Dict[str, DocumentTable] = {}
        self._mutex = threading.Lock()

    def create(self, name: str) -> StoreResult:
        if not DB_NAME_RE.match(name):
            return StoreResult.fail(ErrCode.ILLEGAL_DB_NAME)
        with self._mutex:
            if name in self.tables:
                return StoreResult.fail(ErrCode.DB_EXISTS)
            self.tables[name] = DocumentTable(name)
        logger.info("Server.create: db=%s", name)
        return StoreResult.success({"ok": True})

    def delete(self, name: str) -> StoreResult:
        with self._mutex:
            if self.tables.pop(name, None) is None:
                return StoreResult.fail(ErrCode.DB_NOT_FOUND)
        logger.info("Server.delete: db=%s", name)
        return StoreResult.success({"ok": True})

    def get(self, name: str) -> StoreResult:
        with self._mutex:
            table = self.tables.get(name)
        if table is None:
            return StoreResult.fail(ErrCode.DB_NOT_FOUND)
        return StoreResult.success(table)

    def names(self) -> List[str]:
        with self._mutex:
            return sorted(self.tables)

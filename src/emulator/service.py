"""
Local Store Emulator Service

In-memory, CouchDB-compatible HTTP service. It serves the subset of the
CouchDB API the connector uses, with CouchDB's status codes and
{"error": ..., "reason": ...} error bodies, so the connector can be driven
end to end without a CouchDB server (the tests mount it on an
httpx.ASGITransport).

    python -m src.emulator.service
"""

import logging
import time
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.emulator.config import EmulatorConfig, get_config
from src.emulator.document_table import DocumentServer, DocumentTable
from src.emulator.err_code import StoreHTTPError, handle_store_result

logger = logging.getLogger(__name__)

VERSION = "3.3.3"


# =========================================================
# Request models
# =========================================================

class FindRequest(BaseModel):
    selector: Dict[str, Any]
    limit: Optional[int] = Field(None, ge=0)
    skip: int = Field(0, ge=0)
    bookmark: Optional[str] = None
    fields: Optional[List[str]] = None


class BulkGetItem(BaseModel):
    id: str
    rev: Optional[str] = None


class BulkGetRequest(BaseModel):
    docs: List[BulkGetItem]


class BulkDocsRequest(BaseModel):
    docs: List[Dict[str, Any]]


class IndexDefinition(BaseModel):
    fields: List[Any] = Field(..., min_length=1)


class IndexRequest(BaseModel):
    index: IndexDefinition
    name: Optional[str] = None
    ddoc: Optional[str] = None
    type: str = "json"


def create_app(server: Optional[DocumentServer] = None, config: Optional[EmulatorConfig] = None) -> FastAPI:
    """
    Build the emulator application.

    Args:
        server: Databases to serve (a fresh, empty server by default)
        config: Emulator configuration (defaults to the global config)
    """
    config = config or get_config()
    server = server or DocumentServer()

    app = FastAPI(
        title="Document Store Emulator",
        description="In-memory CouchDB-compatible document store",
        version=VERSION,
    )
    app.state.server = server

    def table(db: str) -> DocumentTable:
        return handle_store_result(server.get(db))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        latency_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"status_code": response.status_code, "latency_ms": round(latency_ms, 2)},
        )
        return response

    # ---------- exception handlers ----------

    @app.exception_handler(StoreHTTPError)
    async def store_error_handler(request: Request, exc: StoreHTTPError):
        if exc.status_code >= 500:
            logger.error(f"Store error: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "reason": exc.reason},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "bad_request", "reason": str(exc.errors())},
        )

    # ---------- server ----------

    @app.get("/")
    def welcome():
        return {"couchdb": "Welcome", "version": VERSION, "vendor": {"name": "emulator"}}

    @app.get("/_all_dbs")
    def all_dbs():
        return server.names()

    # ---------- database ----------

    @app.put("/{db}", status_code=201)
    def create_database(db: str):
        return handle_store_result(server.create(db))

    @app.get("/{db}")
    def database_info(db: str):
        return table(db).info()

    @app.head("/{db}")
    def database_head(db: str):
        return Response(status_code=200 if server.get(db).ok else 404)

    @app.delete("/{db}")
    def delete_database(db: str):
        return handle_store_result(server.delete(db))

    @app.get("/{db}/_all_docs")
    def all_docs(db: str, include_docs: bool = False):
        return table(db).all_docs(include_docs=include_docs)

    @app.post("/{db}/_find")
    def find(db: str, req: FindRequest):
        limit = config.default_limit if req.limit is None else req.limit
        return handle_store_result(
            table(db).find(req.selector, limit=limit, skip=req.skip, bookmark=req.bookmark, fields=req.fields)
        )

    @app.post("/{db}/_bulk_get")
    def bulk_get(db: str, req: BulkGetRequest):
        return {"results": table(db).bulk_get([item.id for item in req.docs])}

    @app.post("/{db}/_bulk_docs", status_code=201)
    def bulk_docs(db: str, req: BulkDocsRequest):
        return table(db).bulk_docs(req.docs)

    @app.post("/{db}/_index")
    def create_index(db: str, req: IndexRequest):
        if req.type != "json":
            raise StoreHTTPError(400, "bad_request", f"Unsupported index type: {req.type}")
        return table(db).create_index(req.index.fields, req.name, req.ddoc)

    # ---------- documents (including _design/{name}) ----------

    @app.get("/{db}/{doc_id:path}")
    def get_document(db: str, doc_id: str):
        return handle_store_result(table(db).get(doc_id))

    @app.put("/{db}/{doc_id:path}", status_code=201)
    def put_document(db: str, doc_id: str, rev: Optional[str] = None, body: Dict[str, Any] = Body(...)):
        if body.get("_id", doc_id) != doc_id:
            raise StoreHTTPError(400, "bad_request", "Document id must match the request path")
        body = dict(body)
        if rev is not None:
            body.setdefault("_rev", rev)
        return handle_store_result(table(db).put(doc_id, body))

    @app.delete("/{db}/{doc_id:path}")
    def delete_document(db: str, doc_id: str, rev: Optional[str] = None):
        return handle_store_result(table(db).delete(doc_id, rev))

    return app


app = create_app()


if __name__ == "__main__":
    config = get_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(
        "src.emulator.service:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level=config.log_level.lower()
    )

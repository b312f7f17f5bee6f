import enum


class ErrCode(enum.Enum):
    SUCCESS = 0

    # ---------- Client / semantic errors ----------
    INVALID_ARGUMENT = 10        # malformed body, bad selector, bad revision format
    ILLEGAL_DB_NAME = 11
    DOC_NOT_FOUND = 12           # never existed
    DOC_DELETED = 13             # tombstone
    DB_NOT_FOUND = 14
    DB_EXISTS = 15

    # ---------- Concurrency ----------
    DOC_CONFLICT = 30            # id taken (no rev) or stale rev


# status, CouchDB error name, default reason
ERR_HTTP_MAP = {
    ErrCode.INVALID_ARGUMENT: (400, "bad_request", "Invalid request"),
    ErrCode.ILLEGAL_DB_NAME: (400, "illegal_database_name", "Name is not a valid database name"),
    ErrCode.DOC_NOT_FOUND: (404, "not_found", "missing"),
    ErrCode.DOC_DELETED: (404, "not_found", "deleted"),
    ErrCode.DB_NOT_FOUND: (404, "not_found", "Database does not exist."),
    ErrCode.DB_EXISTS: (412, "file_exists", "The database could not be created, the file already exists."),
    ErrCode.DOC_CONFLICT: (409, "conflict", "Document update conflict."),
}


class StoreResult:
    def __init__(self, ok: bool, value=None, err=ErrCode.SUCCESS, reason=None):
        self.ok = ok
        self.value = value
        self.err = err
        self.reason = reason

    @classmethod
    def success(cls, value=None) -> "StoreResult":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, err: ErrCode, reason=None) -> "StoreResult":
        return cls(ok=False, err=err, reason=reason)

    def error_body(self) -> dict:
        """Per-document error entry as CouchDB reports it in bulk responses."""
        _, error, default_reason = ERR_HTTP_MAP.get(self.err, (500, "unknown_error", ""))
        return {"error": error, "reason": self.reason or default_reason}


class StoreHTTPError(Exception):
    def __init__(self, status_code: int, error: str, reason: str):
        super().__init__(f"{status_code} {error}: {reason}")
        self.status_code = status_code
        self.error = error
        self.reason = reason


def handle_store_result(res: StoreResult):
    if res.ok:
        return res.value
    status, error, default_reason = ERR_HTTP_MAP.get(res.err, (500, "unknown_error", "Unknown error"))
    raise StoreHTTPError(status, error, res.reason or default_reason)

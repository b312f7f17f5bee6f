"""
Connector Exceptions

This module defines the exception classes raised by the CouchDB connector.
Read and delete paths report absence through return values; everything
below is raised only where an operation's contract says so.
"""

from typing import Optional


class DocStoreException(Exception):
    """
    Base exception class for all connector errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[str] = None,
        doc_id: Optional[str] = None,
    ):
        """
        Initialize DocStoreException.

        Args:
            message: Human-readable error message
            status_code: HTTP status code equivalent of the failure
            details: Additional error details (optional)
            doc_id: Document ID associated with this error (optional)
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.doc_id = doc_id

    def to_dict(self) -> dict:
        """Convert exception to dict for JSON response."""
        result = {
            "error": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.doc_id:
            result["id"] = self.doc_id
        return result


class NotFoundError(DocStoreException):
    """Exception raised when a document required by the operation does not exist."""

    def __init__(
        self,
        model: str,
        doc_id: str,
        details: Optional[str] = None,
    ):
        super().__init__(
            message=f"{model} not found: {doc_id}",
            status_code=404,
            details=details,
            doc_id=doc_id,
        )
        self.model = model


class ConflictError(DocStoreException):
    """
    Exception raised when the store rejects a write.

    Either the id is already taken (create) or the presented revision is
    no longer the current one (update, replace, delete).
    """

    def __init__(
        self,
        model: str,
        doc_id: str,
        message: str = "Document update conflict",
        details: Optional[str] = None,
    ):
        super().__init__(
            message=f"{model} {doc_id}: {message}",
            status_code=409,
            details=details,
            doc_id=doc_id,
        )
        self.model = model


class ValidationError(DocStoreException):
    """Exception raised for malformed input (bad id, schema violation, missing revision)."""

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[str] = None,
        doc_id: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            status_code=400,
            details=details,
            doc_id=doc_id,
        )


class TransportError(DocStoreException):
    """
    Exception raised when communication with the document store fails.

    Covers connection errors, timeouts, 5xx responses and any response the
    connector cannot interpret. Never treated as absence.
    """

    def __init__(
        self,
        database: str,
        message: str = "Failed to communicate with document store",
        details: Optional[str] = None,
        doc_id: Optional[str] = None,
    ):
        super().__init__(
            message=f"{message}: {database}",
            status_code=503,
            details=details,
            doc_id=doc_id,
        )
        self.database = database

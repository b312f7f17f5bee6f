"""
Connector Data Models

This module defines the Pydantic models exchanged between the operation
layer, the store client and callers.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ========== Store Response Models ==========

class DocumentWriteResult(BaseModel):
    """Response of a single document write (PUT /{db}/{id})."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Document ID")
    rev: str = Field(..., description="New revision token")
    ok: bool = True


class BulkDocResult(BaseModel):
    """One entry of a POST /{db}/_bulk_docs response."""
    model_config = ConfigDict(extra="ignore")

    id: str
    rev: Optional[str] = None
    ok: Optional[bool] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


# ========== Operation Models ==========

class Filter(BaseModel):
    """
    Query filter accepted by find/count/remove.

    Mirrors the loopback filter shape:
      {"where": {...}, "limit": 10, "skip": 0, "order": "name DESC", "fields": [...]}
    """
    model_config = ConfigDict(extra="forbid")

    where: Dict[str, Any] = Field(default_factory=dict, description="Field conditions")
    limit: Optional[int] = Field(None, description="Maximum number of records", ge=0)
    skip: int = Field(0, description="Number of records to skip", ge=0)
    order: Optional[Union[str, List[str]]] = Field(None, description="Sort spec, e.g. 'age DESC'")
    fields: Optional[Union[List[str], Dict[str, bool]]] = Field(None, description="Projection")


class CountResult(BaseModel):
    """Result of removal and bulk update operations."""
    count: int = Field(0, ge=0)


class SaveResult(BaseModel):
    """
    Result of an instance-bound save.

    count is 0 when the instance had been persisted but its document no
    longer exists; record and rev are then None.
    """
    count: int = Field(0, ge=0)
    record: Optional[Dict[str, Any]] = None
    rev: Optional[str] = None

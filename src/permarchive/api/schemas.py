from __future__ import annotations

"""Pydantic response schemas for the HTTP API.

These exist for HTTP validation and OpenAPI docs only; the pipeline's own
types live in permarchive.archive and permarchive.ledger.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class TagOut(BaseModel):
    name: str
    value: str


class ArchiveResponse(BaseModel):
    ok: bool
    status: str = Field(..., description="succeeded | succeeded_with_ledger_error | failed")
    file: str
    content_id: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    tags: List[TagOut] = Field(default_factory=list)
    remote_id: Optional[str] = None
    url: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    ledger_error: Optional[str] = None


class CidResponse(BaseModel):
    ok: bool = True
    content_id: str
    size_bytes: int


class LedgerRecordOut(BaseModel):
    ts_ms: int
    timestamp: str
    file: str
    status: str
    content_id: Optional[str] = None
    size_bytes: Optional[int] = None
    remote_id: Optional[str] = None
    url: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    tags: List[TagOut] = Field(default_factory=list)


class LedgerResponse(BaseModel):
    ok: bool = True
    count: int
    records: List[LedgerRecordOut]

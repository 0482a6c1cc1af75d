# src/permarchive/api/routes_public_parts/archive.py
from __future__ import annotations

import re
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from permarchive.api.errors import ApiError
from permarchive.api.schemas import ArchiveResponse, CidResponse
from permarchive.archive.errors import FailureKind
from permarchive.archive.orchestrator import ARCHIVE_FAILED, ArchiveOrchestrator
from permarchive.util.content_id import derive_content_id


router = APIRouter()

# Local classifications are the client's fault; the rest come from the gateway.
_LOCAL_FAILURES = {FailureKind.INPUT_UNREADABLE, FailureKind.TAG_VALIDATION_ERROR}


def _sanitize_filename(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return "upload.md"
    name = re.sub(r"[^a-zA-Z0-9._-]+", "_", name)
    return name[:128] or "upload.md"


def _orchestrator(request: Request) -> ArchiveOrchestrator:
    orch = getattr(request.app.state, "orchestrator", None)
    if orch is None:
        raise ApiError.unavailable("archive_unavailable", "Archive pipeline is not configured")
    return orch


@router.post("/archive", response_model=ArchiveResponse)
async def v1_archive(
    request: Request,
    file: UploadFile = File(...),
    author: Optional[str] = Form(default=None),
    content_type: Optional[str] = Form(default=None),
):
    """Archive an uploaded file.

    200: succeeded, or succeeded with ledger_error set (content is stored; local
         audit trail incomplete).
    422: failed locally (input_unreadable / tag_validation_error).
    502: failed at the storage gateway.
    """
    orch = _orchestrator(request)
    name = _sanitize_filename(file.filename or "")
    data = await file.read()

    result = await run_in_threadpool(
        orch.archive_bytes,
        data,
        source=f"upload:{name}",
        author=author,
        content_type=(content_type or "").strip() or None,
    )

    body = result.to_json()
    if result.status != ARCHIVE_FAILED:
        return body

    kind = result.attempt.failure_kind
    status_code = 422 if kind in _LOCAL_FAILURES else 502
    return JSONResponse(status_code=status_code, content=body)


@router.post("/cid", response_model=CidResponse)
async def v1_cid(file: UploadFile = File(...)):
    """Compute the content identifier of an uploaded file without archiving it."""
    data = await file.read()
    return {"ok": True, "content_id": derive_content_id(data), "size_bytes": len(data)}

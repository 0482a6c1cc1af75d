from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from permarchive.api.errors import ApiError
from permarchive.api.schemas import LedgerResponse


router = APIRouter()


@router.get("/ledger", response_model=LedgerResponse)
def v1_ledger(
    request: Request,
    limit: int = Query(default=50, ge=1, le=1000),
    status: Optional[str] = Query(default=None),
):
    """Most recent ledger records, oldest first."""
    if status is not None and status not in {"succeeded", "failed"}:
        raise ApiError.bad_request("invalid_status", "status must be 'succeeded' or 'failed'")

    orch = getattr(request.app.state, "orchestrator", None)
    store = getattr(orch, "ledger", None)
    reader = getattr(store, "iter_records", None)
    if not callable(reader):
        raise ApiError.unavailable("ledger_unavailable", "Ledger is not readable")

    records = [r for r in reader() if status is None or r.status == status]
    tail = records[-limit:]
    return {"ok": True, "count": len(tail), "records": [r.to_json() for r in tail]}

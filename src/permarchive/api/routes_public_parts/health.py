from __future__ import annotations

from fastapi import APIRouter, Request, Response

from permarchive.util.metrics import format_prometheus, metrics_enabled


router = APIRouter()


@router.get("/health")
def v1_health(request: Request):
    cfg = getattr(request.app.state, "cfg", None)
    return {
        "ok": True,
        "archive_ready": getattr(request.app.state, "orchestrator", None) is not None,
        "ledger_backend": getattr(cfg, "ledger_backend", None),
        "app_version": getattr(cfg, "app_version", None),
    }


@router.get("/metrics")
def v1_metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      PERMARCHIVE_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")

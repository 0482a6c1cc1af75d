from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from permarchive.api.errors import ApiError, api_error_handler
from permarchive.api.routes_public import public_router
from permarchive.api.security import RequestSizeLimitMiddleware
from permarchive.api.structured_logging import RequestLogMiddleware
from permarchive.archive.boot import build_orchestrator as _build_orchestrator
from permarchive.archive.orchestrator import ArchiveOrchestrator
from permarchive.config import ArchiveConfig, load_archive_config


def build_orchestrator(cfg: ArchiveConfig) -> ArchiveOrchestrator:
    """Build the orchestrator for API runtime.

    This wrapper exists so tests can monkeypatch `permarchive.api.app.build_orchestrator`
    without reaching into the archive package.
    """
    return _build_orchestrator(cfg)


def create_app(
    *,
    boot_runtime: bool = True,
    cfg: Optional[ArchiveConfig] = None,
    orchestrator: Optional[ArchiveOrchestrator] = None,
) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build the orchestrator from config (gateway + ledger + wallet)
      - False: no orchestrator unless one is passed; archive routes answer 503

    An explicit `orchestrator` always wins (tests inject one with a MemoryUploader).
    """
    c = cfg or load_archive_config()

    # Disable docs in production.
    if c.mode == "prod":
        app = FastAPI(title="permarchive API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="permarchive API")

    app.state.cfg = c

    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    elif boot_runtime:
        app.state.orchestrator = build_orchestrator(c)
    else:
        app.state.orchestrator = None

    # --- Middleware ---
    # Size limiter sits inside the request logger so rejected requests are logged too.
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=int(c.max_upload_bytes) + 1024 * 1024)
    app.add_middleware(RequestLogMiddleware)

    app.add_exception_handler(ApiError, api_error_handler)

    # --- Routers ---
    app.include_router(public_router)

    return app

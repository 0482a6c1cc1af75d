# src/permarchive/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from permarchive.api.routes_public_parts.archive import router as archive_router
from permarchive.api.routes_public_parts.health import router as health_router
from permarchive.api.routes_public_parts.ledger import router as ledger_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(archive_router, prefix="/v1", tags=["archive"])
public_router.include_router(ledger_router, prefix="/v1", tags=["ledger"])

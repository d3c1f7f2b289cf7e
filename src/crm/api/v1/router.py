"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm.api.v1 import deals, meetings

router = APIRouter(prefix="/v1")

router.include_router(deals.router)
router.include_router(meetings.router)

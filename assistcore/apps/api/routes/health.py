from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.apps.api.deps import get_db
from assistcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from assistcore.apps.api.response import SuccessEnvelope, success_response
from assistcore.core.config import get_settings
from assistcore.persistence.db import database_reachable
from assistcore.services.telemetry import counters_snapshot, external_call_stats, request_stats

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str
    database: str
    llm_provider: str
    embedding_provider: str
    requests: dict[str, float | int | None]
    external_calls: dict[str, dict[str, float | int | None]]
    counters: dict[str, int]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Degraded rather than failing: quota fails open when the store is down.
    settings = get_settings()
    db_ok = await database_reachable(db)
    payload = HealthResponse(
        status="ok" if db_ok else "degraded",
        database="ok" if db_ok else "unavailable",
        llm_provider=settings.llm_provider,
        embedding_provider=settings.embedding_provider,
        requests=request_stats(_WINDOW_S),
        external_calls=external_call_stats(_WINDOW_S),
        counters=counters_snapshot(),
    )
    return success_response(request=request, data=payload)

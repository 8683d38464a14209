from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.apps.api.deps import get_current_account, get_db, require_admin
from assistcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from assistcore.apps.api.response import SuccessEnvelope, success_response
from assistcore.services.entitlements import get_plan, is_max_plan, is_pro_or_above, upgrade_plan
from assistcore.services.quota import get_quota_service


router = APIRouter(tags=["plan"], responses=DEFAULT_ERROR_RESPONSES)


class PlanResponse(BaseModel):
    tier: str
    is_active: bool
    daily_call_limit: int | None
    storage_mb: int
    features: dict[str, bool]
    expires_at: datetime | None
    is_max: bool
    is_pro_or_above: bool


class UsageResponse(BaseModel):
    days: int
    today_used: int
    today_limit: int | None
    today_remaining: int | None
    total_calls: int
    by_call_type: dict[str, int]
    daily_average: float


class PlanUpgradeRequest(BaseModel):
    tier: Literal["free", "pro", "max"]
    duration_days: int | None = Field(default=None, ge=1, le=3650)


async def _plan_payload(db: AsyncSession, account_id: str) -> PlanResponse:
    plan = await get_plan(db, account_id)
    return PlanResponse(
        tier=plan.tier,
        is_active=plan.is_active,
        daily_call_limit=plan.daily_call_limit,
        storage_mb=plan.storage_mb,
        features=dict(plan.features),
        expires_at=plan.expires_at,
        is_max=await is_max_plan(db, account_id),
        is_pro_or_above=await is_pro_or_above(db, account_id),
    )


@router.get("/plan", response_model=SuccessEnvelope[PlanResponse])
async def read_plan(
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(request=request, data=await _plan_payload(db, account_id))


@router.get("/plan/usage", response_model=SuccessEnvelope[UsageResponse])
async def read_usage(
    request: Request,
    days: int = Query(default=7, ge=1, le=90),
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = get_quota_service()
    snapshot = await service.get_usage_snapshot(session=db, account_id=account_id)
    stats = await service.get_usage_stats(session=db, account_id=account_id, days=days)
    payload = UsageResponse(
        days=stats.days,
        today_used=snapshot.used,
        today_limit=snapshot.limit,
        today_remaining=snapshot.remaining,
        total_calls=stats.total_calls,
        by_call_type=stats.by_call_type,
        daily_average=stats.daily_average,
    )
    return success_response(request=request, data=payload)


@router.put(
    "/admin/accounts/{account_id}/plan",
    response_model=SuccessEnvelope[PlanResponse],
    dependencies=[Depends(require_admin)],
)
async def set_account_plan(
    account_id: str,
    payload: PlanUpgradeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Billing confirms payment elsewhere and then calls this to apply the tier.
    await upgrade_plan(db, account_id, payload.tier, duration_days=payload.duration_days)
    return success_response(request=request, data=await _plan_payload(db, account_id))

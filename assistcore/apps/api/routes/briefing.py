from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.apps.api.deps import (
    get_current_account,
    get_db,
    get_embedder,
    get_llm,
    require_feature_access,
    require_quota,
)
from assistcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from assistcore.apps.api.response import SuccessEnvelope, success_response
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.llm.base import LLMProvider
from assistcore.services.briefing import (
    AccountProfile,
    ContentItem,
    advise_schedule,
    compose_briefing,
)
from assistcore.services.entitlements import FEATURE_SMART_BRIEFING


router = APIRouter(prefix="/briefing", tags=["briefing"], responses=DEFAULT_ERROR_RESPONSES)


class ContentItemModel(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    source: str = Field(max_length=200)
    description: str = Field(default="", max_length=4000)
    url: str | None = Field(default=None, max_length=2000)


class ProfileModel(BaseModel):
    job: str | None = Field(default=None, max_length=200)
    goal: str | None = Field(default=None, max_length=500)
    interests: list[str] = Field(default_factory=list, max_length=50)


class BriefingRequest(BaseModel):
    items: list[ContentItemModel] = Field(min_length=1, max_length=100)
    profile: ProfileModel = Field(default_factory=ProfileModel)


class BriefingItemResponse(BaseModel):
    id: str
    title: str
    summary: str
    source: str
    url: str | None
    relevance_score: float
    importance_level: str
    action_suggestion: str | None
    related_goals: list[str]


class BriefingResponse(BaseModel):
    date: str
    greeting: str
    critical_items: list[BriefingItemResponse]
    important_items: list[BriefingItemResponse]
    normal_items: list[BriefingItemResponse]
    insights: list[str]


class ScheduleLine(BaseModel):
    start_time: str = Field(max_length=16)
    text: str = Field(max_length=500)


class ScheduleAdviceRequest(BaseModel):
    new_entry_text: str = Field(min_length=1, max_length=500)
    existing_entries: list[ScheduleLine] = Field(default_factory=list, max_length=100)
    tomorrow_entries: list[ScheduleLine] | None = Field(default=None, max_length=100)
    goal: str | None = Field(default=None, max_length=500)


class ScheduleAdviceResponse(BaseModel):
    recommendation: str
    reason: str
    suggestion: str | None


@router.post(
    "",
    response_model=SuccessEnvelope[BriefingResponse | None],
    dependencies=[
        Depends(require_feature_access(FEATURE_SMART_BRIEFING)),
        Depends(require_quota("smart_briefing")),
    ],
)
async def create_briefing(
    payload: BriefingRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    llm: LLMProvider = Depends(get_llm),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict:
    # data is null when the reasoning service answered with something unparsable.
    briefing = await compose_briefing(
        db,
        account_id=account_id,
        items=[ContentItem(**item.model_dump()) for item in payload.items],
        profile=AccountProfile(
            job=payload.profile.job,
            goal=payload.profile.goal,
            interests=tuple(payload.profile.interests),
        ),
        llm=llm,
        embedder=embedder,
    )
    return success_response(request=request, data=briefing)


@router.post(
    "/schedule-advice",
    response_model=SuccessEnvelope[ScheduleAdviceResponse | None],
    dependencies=[
        Depends(require_feature_access(FEATURE_SMART_BRIEFING)),
        Depends(require_quota("schedule_advice")),
    ],
)
async def schedule_advice(
    payload: ScheduleAdviceRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    llm: LLMProvider = Depends(get_llm),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict:
    advice = await advise_schedule(
        db,
        account_id=account_id,
        new_entry_text=payload.new_entry_text,
        existing_entries=[line.model_dump() for line in payload.existing_entries],
        tomorrow_entries=(
            [line.model_dump() for line in payload.tomorrow_entries]
            if payload.tomorrow_entries is not None
            else None
        ),
        goal=payload.goal,
        llm=llm,
        embedder=embedder,
    )
    return success_response(request=request, data=advice)

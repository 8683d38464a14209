from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.apps.api.deps import get_current_account, get_db
from assistcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from assistcore.apps.api.response import SuccessEnvelope, success_response
from assistcore.domain.risk import ScheduleEntry
from assistcore.services.alerts import dismiss, list_alerts, mark_read
from assistcore.services.risk import analyze_schedule_risk


router = APIRouter(prefix="/risk", tags=["risk"], responses=DEFAULT_ERROR_RESPONSES)

_TIME_PATTERN = r"^([01]?\d|2[0-3]):[0-5]\d$"


class ScheduleEntryModel(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    text: str = Field(max_length=500)
    start_time: str = Field(pattern=_TIME_PATTERN)
    end_time: str | None = Field(default=None, pattern=_TIME_PATTERN)
    specific_date: date | None = None
    days_of_week: list[int] | None = None
    preparation_minutes: int | None = Field(default=None, ge=1, le=1440)

    def to_entry(self) -> ScheduleEntry:
        return ScheduleEntry(
            id=self.id,
            text=self.text,
            start_time=self.start_time,
            end_time=self.end_time,
            specific_date=self.specific_date,
            days_of_week=tuple(self.days_of_week) if self.days_of_week is not None else None,
            preparation_minutes=self.preparation_minutes,
        )


class AnalyzeRequest(BaseModel):
    candidate: ScheduleEntryModel
    existing: list[ScheduleEntryModel] = Field(default_factory=list, max_length=200)


class RiskAlertResponse(BaseModel):
    id: str | None
    alert_type: str
    title: str
    message: str
    severity: int
    related_schedule_ids: list[str]
    suggested_action: str | None
    is_read: bool
    is_dismissed: bool
    alert_date: date
    created_at: datetime | None


class RiskAlertListResponse(BaseModel):
    items: list[RiskAlertResponse]


class AlertAckResponse(BaseModel):
    id: str
    status: str


@router.post("/analyze", response_model=SuccessEnvelope[RiskAlertListResponse])
async def analyze(
    payload: AnalyzeRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    alerts = await analyze_schedule_risk(
        db,
        account_id=account_id,
        candidate=payload.candidate.to_entry(),
        existing=[entry.to_entry() for entry in payload.existing],
    )
    return success_response(request=request, data={"items": [alert.as_dict() for alert in alerts]})


@router.get("/alerts", response_model=SuccessEnvelope[RiskAlertListResponse])
async def read_alerts(
    request: Request,
    unread_only: bool = Query(default=False),
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    alerts = await list_alerts(db, account_id=account_id, unread_only=unread_only)
    return success_response(request=request, data={"items": [alert.as_dict() for alert in alerts]})


@router.post("/alerts/{alert_id}/read", response_model=SuccessEnvelope[AlertAckResponse])
async def read_alert(
    alert_id: str,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await mark_read(db, account_id=account_id, alert_id=alert_id)
    return success_response(request=request, data=AlertAckResponse(id=alert_id, status="read"))


@router.post("/alerts/{alert_id}/dismiss", response_model=SuccessEnvelope[AlertAckResponse])
async def dismiss_alert(
    alert_id: str,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await dismiss(db, account_id=account_id, alert_id=alert_id)
    return success_response(request=request, data=AlertAckResponse(id=alert_id, status="dismissed"))

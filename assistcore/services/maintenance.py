from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.domain.models import UsageBreakdown, UsageCounter


def usage_retention_cutoff(retention_days: int | None = None, *, today: date | None = None) -> date:
    days = get_settings().usage_counter_retention_days if retention_days is None else retention_days
    today = today or datetime.now(timezone.utc).date()
    return today - timedelta(days=max(0, int(days)))


async def prune_usage_counters(
    session: AsyncSession,
    retention_days: int | None = None,
    *,
    today: date | None = None,
) -> int:
    # Drop day counters and their breakdowns once they fall outside the retention window.
    cutoff = usage_retention_cutoff(retention_days, today=today)
    breakdowns = await session.execute(delete(UsageBreakdown).where(UsageBreakdown.usage_date < cutoff))
    counters = await session.execute(delete(UsageCounter).where(UsageCounter.usage_date < cutoff))
    return int(counters.rowcount or 0) + int(breakdowns.rowcount or 0)

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.errors import QuotaExceededError
from assistcore.domain.models import UsageBreakdown, UsageCounter
from assistcore.persistence.db import dialect_name
from assistcore.services.entitlements import get_plan
from assistcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

DEFAULT_CALL_TYPE = "general"


@dataclass(frozen=True)
class QuotaDecision:
    # Outcome of one quota gate evaluation; limit None means unlimited.
    allowed: bool
    limit: int | None
    used: int
    remaining: int | None
    # Set when the store failed and the gate let the call through.
    degraded: bool = False


@dataclass(frozen=True)
class UsageStats:
    days: int
    total_calls: int
    by_call_type: dict[str, int]
    daily_average: float


class QuotaService:
    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic rollover tests.
        self._time_provider = time_provider or _utc_now

    def today(self) -> date:
        return self._time_provider().astimezone(timezone.utc).date()

    async def try_consume_call(
        self,
        *,
        session: AsyncSession,
        account_id: str,
        call_type: str = DEFAULT_CALL_TYPE,
    ) -> QuotaDecision:
        # Consume one daily call if the plan allows it; store faults fail open.
        try:
            plan = await get_plan(session, account_id)
            if plan.daily_call_limit is None:
                return QuotaDecision(allowed=True, limit=None, used=0, remaining=None)
            return await self._consume(
                session,
                account_id=account_id,
                call_type=call_type,
                limit=plan.daily_call_limit,
            )
        except (SQLAlchemyError, OSError) as exc:
            # asyncpg surfaces a refused connection as a bare OSError.
            await session.rollback()
            increment_counter("quota.fail_open")
            logger.warning(
                "quota_store_unavailable account_id=%s call_type=%s", account_id, call_type, exc_info=exc
            )
            return QuotaDecision(allowed=True, limit=None, used=0, remaining=None, degraded=True)

    async def _consume(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        call_type: str,
        limit: int,
    ) -> QuotaDecision:
        usage_date = self.today()
        now = self._time_provider()
        insert_fn = _insert_for(session)

        # Create the day row if absent, then increment only while under the limit.
        await session.execute(
            insert_fn(UsageCounter)
            .values(account_id=account_id, usage_date=usage_date, total_calls=0, updated_at=now)
            .on_conflict_do_nothing(index_elements=[UsageCounter.account_id, UsageCounter.usage_date])
        )
        result = await session.execute(
            update(UsageCounter)
            .where(
                UsageCounter.account_id == account_id,
                UsageCounter.usage_date == usage_date,
                UsageCounter.total_calls < limit,
            )
            .values(total_calls=UsageCounter.total_calls + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        allowed = (result.rowcount or 0) == 1
        used = await session.scalar(
            select(UsageCounter.total_calls).where(
                UsageCounter.account_id == account_id,
                UsageCounter.usage_date == usage_date,
            )
        )
        used = int(used or 0)

        if allowed:
            breakdown = insert_fn(UsageBreakdown).values(
                account_id=account_id,
                usage_date=usage_date,
                call_type=call_type,
                calls=1,
            )
            await session.execute(
                breakdown.on_conflict_do_update(
                    index_elements=[
                        UsageBreakdown.account_id,
                        UsageBreakdown.usage_date,
                        UsageBreakdown.call_type,
                    ],
                    set_={"calls": UsageBreakdown.calls + 1},
                )
            )
        await session.commit()

        if not allowed:
            increment_counter("quota.denied")
            logger.info(
                "quota_exceeded account_id=%s call_type=%s used=%s limit=%s",
                account_id,
                call_type,
                used,
                limit,
            )
        return QuotaDecision(
            allowed=allowed,
            limit=limit,
            used=used,
            remaining=max(limit - used, 0),
        )

    async def get_usage_snapshot(self, *, session: AsyncSession, account_id: str) -> QuotaDecision:
        # Report today's usage without consuming a call.
        plan = await get_plan(session, account_id)
        used = await session.scalar(
            select(UsageCounter.total_calls).where(
                UsageCounter.account_id == account_id,
                UsageCounter.usage_date == self.today(),
            )
        )
        used = int(used or 0)
        limit = plan.daily_call_limit
        if limit is None:
            return QuotaDecision(allowed=True, limit=None, used=used, remaining=None)
        remaining = max(limit - used, 0)
        return QuotaDecision(allowed=remaining > 0, limit=limit, used=used, remaining=remaining)

    async def get_usage_stats(
        self,
        *,
        session: AsyncSession,
        account_id: str,
        days: int = 7,
    ) -> UsageStats:
        # Aggregate the trailing window including today.
        days = max(1, int(days))
        since = self.today() - timedelta(days=days - 1)
        total = await session.scalar(
            select(func.coalesce(func.sum(UsageCounter.total_calls), 0)).where(
                UsageCounter.account_id == account_id,
                UsageCounter.usage_date >= since,
            )
        )
        rows = (
            await session.execute(
                select(UsageBreakdown.call_type, func.sum(UsageBreakdown.calls))
                .where(
                    UsageBreakdown.account_id == account_id,
                    UsageBreakdown.usage_date >= since,
                )
                .group_by(UsageBreakdown.call_type)
                .order_by(UsageBreakdown.call_type)
            )
        ).all()
        total = int(total or 0)
        return UsageStats(
            days=days,
            total_calls=total,
            by_call_type={call_type: int(count or 0) for call_type, count in rows},
            daily_average=round(total / days, 1),
        )


_quota_service: QuotaService | None = None


def get_quota_service() -> QuotaService:
    # Cache the quota service for reuse across requests.
    global _quota_service
    if _quota_service is None:
        _quota_service = QuotaService()
    return _quota_service


def reset_quota_service() -> None:
    # Reset cached services for deterministic tests.
    global _quota_service
    _quota_service = None


def _utc_now() -> datetime:
    # Use UTC for consistent quota day boundaries.
    return datetime.now(timezone.utc)


def _insert_for(session: AsyncSession):
    return pg_insert if dialect_name(session) == "postgresql" else sqlite_insert


def _format_limit(value: int | None) -> str:
    # Represent unlimited values using the agreed header token.
    return "unlimited" if value is None else str(value)


def quota_headers(decision: QuotaDecision) -> dict[str, str]:
    # Render quota headers for responses with consistent casing.
    return {
        "X-Quota-Day-Limit": _format_limit(decision.limit),
        "X-Quota-Day-Used": str(decision.used),
        "X-Quota-Day-Remaining": _format_limit(decision.remaining),
    }


async def enforce_quota(
    *,
    session: AsyncSession,
    account_id: str,
    call_type: str = DEFAULT_CALL_TYPE,
) -> QuotaDecision:
    # Raise when the daily limit is reached; callers render headers from the decision.
    decision = await get_quota_service().try_consume_call(
        session=session, account_id=account_id, call_type=call_type
    )
    if not decision.allowed:
        raise QuotaExceededError(limit=decision.limit or 0, used=decision.used)
    return decision

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.domain.models import RiskAlertRecord
from assistcore.domain.risk import RiskAlert


logger = logging.getLogger(__name__)


def _to_alert(row: RiskAlertRecord) -> RiskAlert:
    return RiskAlert(
        id=row.id,
        alert_type=row.alert_type,
        title=row.title,
        message=row.message,
        severity=int(row.severity),
        related_schedule_ids=tuple(row.related_schedule_ids or ()),
        suggested_action=row.suggested_action,
        is_read=bool(row.is_read),
        is_dismissed=bool(row.is_dismissed),
        alert_date=row.alert_date,
        created_at=row.created_at,
    )


async def record_alerts(
    session: AsyncSession,
    *,
    account_id: str,
    alerts: Sequence[RiskAlert],
) -> list[RiskAlert]:
    # All alerts from one analysis land in a single commit or not at all.
    rows = [
        RiskAlertRecord(
            account_id=account_id,
            alert_type=alert.alert_type,
            title=alert.title,
            message=alert.message,
            severity=alert.severity,
            related_schedule_ids=list(alert.related_schedule_ids),
            suggested_action=alert.suggested_action,
            alert_date=alert.alert_date,
        )
        for alert in alerts
    ]
    session.add_all(rows)
    await session.commit()
    return [
        replace(alert, id=row.id, created_at=row.created_at)
        for alert, row in zip(alerts, rows)
    ]


async def list_alerts(
    session: AsyncSession,
    *,
    account_id: str,
    unread_only: bool = False,
) -> list[RiskAlert]:
    # Newest first, one page; dismissed alerts never come back.
    stmt = (
        select(RiskAlertRecord)
        .where(
            RiskAlertRecord.account_id == account_id,
            RiskAlertRecord.is_dismissed.is_(False),
        )
        .order_by(RiskAlertRecord.created_at.desc(), RiskAlertRecord.id.desc())
        .limit(get_settings().alert_page_size)
    )
    if unread_only:
        stmt = stmt.where(RiskAlertRecord.is_read.is_(False))
    rows = (await session.execute(stmt)).scalars().all()
    return [_to_alert(row) for row in rows]


async def mark_read(session: AsyncSession, *, account_id: str, alert_id: str) -> None:
    # One-way flag flip; repeats and foreign ids are silent no-ops.
    result = await session.execute(
        update(RiskAlertRecord)
        .where(
            RiskAlertRecord.id == alert_id,
            RiskAlertRecord.account_id == account_id,
            RiskAlertRecord.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.debug("alert_mark_read account_id=%s alert_id=%s changed=%s", account_id, alert_id, result.rowcount)


async def dismiss(session: AsyncSession, *, account_id: str, alert_id: str) -> None:
    result = await session.execute(
        update(RiskAlertRecord)
        .where(
            RiskAlertRecord.id == alert_id,
            RiskAlertRecord.account_id == account_id,
            RiskAlertRecord.is_dismissed.is_(False),
        )
        .values(is_dismissed=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.debug("alert_dismissed account_id=%s alert_id=%s changed=%s", account_id, alert_id, result.rowcount)

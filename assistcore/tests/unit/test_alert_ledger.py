from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from assistcore.core.config import get_settings
from assistcore.domain.models import RiskAlertRecord
from assistcore.domain.risk import RiskAlert, ScheduleEntry
from assistcore.persistence.db import SessionLocal
from assistcore.services import risk
from assistcore.services.alerts import dismiss, list_alerts, mark_read, record_alerts
from assistcore.services.risk import RiskRules, analyze_schedule_risk
from assistcore.tests.utils.accounts import cleanup_account, new_account_id, seed_plan
from assistcore.tests.utils.db import unreachable_session


_TODAY = date(2026, 3, 2)
_RULES = RiskRules(prep_keywords=("interview",))


def _alert(title: str = "Schedule conflict") -> RiskAlert:
    return RiskAlert(
        alert_type="schedule_conflict",
        title=title,
        message="Overlaps with standup.",
        severity=4,
        related_schedule_ids=("c1", "e1"),
        alert_date=_TODAY,
        suggested_action="Move it to 10:00.",
    )


async def _alert_count(account_id: str) -> int:
    async with SessionLocal() as session:
        return int(
            await session.scalar(
                select(func.count()).select_from(RiskAlertRecord).where(RiskAlertRecord.account_id == account_id)
            )
        )


@pytest.mark.asyncio
async def test_record_assigns_ids_and_keeps_content() -> None:
    account_id = new_account_id("alert-record")
    try:
        async with SessionLocal() as session:
            stored = await record_alerts(session, account_id=account_id, alerts=[_alert("a"), _alert("b")])

        assert len(stored) == 2
        assert all(alert.id and alert.created_at for alert in stored)
        assert replace(stored[0], id=None, created_at=None) == _alert("a")

        async with SessionLocal() as session:
            listed = await list_alerts(session, account_id=account_id)
        assert {alert.title for alert in listed} == {"a", "b"}
        assert listed[0].related_schedule_ids == ("c1", "e1")
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_read_and_dismiss_are_idempotent() -> None:
    account_id = new_account_id("alert-flags")
    try:
        async with SessionLocal() as session:
            first, second = await record_alerts(session, account_id=account_id, alerts=[_alert("a"), _alert("b")])

        async with SessionLocal() as session:
            await mark_read(session, account_id=account_id, alert_id=first.id)
            await mark_read(session, account_id=account_id, alert_id=first.id)
            unread = await list_alerts(session, account_id=account_id, unread_only=True)
            assert [alert.id for alert in unread] == [second.id]

            await dismiss(session, account_id=account_id, alert_id=second.id)
            await dismiss(session, account_id=account_id, alert_id=second.id)
            visible = await list_alerts(session, account_id=account_id)

        assert [alert.id for alert in visible] == [first.id]
        assert visible[0].is_read
        assert visible[0].title == "a"
        # Dismissed alerts stay in the ledger.
        assert await _alert_count(account_id) == 2
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_flags_are_scoped_to_owner() -> None:
    owner = new_account_id("alert-owner")
    intruder = new_account_id("alert-intruder")
    try:
        async with SessionLocal() as session:
            (stored,) = await record_alerts(session, account_id=owner, alerts=[_alert()])

        async with SessionLocal() as session:
            await mark_read(session, account_id=intruder, alert_id=stored.id)
            await dismiss(session, account_id=intruder, alert_id=stored.id)
            await mark_read(session, account_id=owner, alert_id="missing")
            assert await list_alerts(session, account_id=intruder) == []
            (still_there,) = await list_alerts(session, account_id=owner)

        assert not still_there.is_read
        assert not still_there.is_dismissed
    finally:
        await cleanup_account(owner)


@pytest.mark.asyncio
async def test_list_is_newest_first_and_paged(monkeypatch) -> None:
    monkeypatch.setenv("ALERT_PAGE_SIZE", "2")
    get_settings.cache_clear()
    account_id = new_account_id("alert-page")
    try:
        async with SessionLocal() as session:
            for title in ("one", "two", "three"):
                await record_alerts(session, account_id=account_id, alerts=[_alert(title)])
            listed = await list_alerts(session, account_id=account_id)

        assert [alert.title for alert in listed] == ["three", "two"]
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_analysis_persists_alerts_in_one_batch() -> None:
    account_id = new_account_id("alert-analyze")
    existing = [
        ScheduleEntry(id="e1", text="standup", start_time="09:00", end_time="10:00"),
        ScheduleEntry(id="e0", text="commute", start_time="08:00", end_time="09:15"),
    ]
    candidate = ScheduleEntry(id="c1", text="interview", start_time="09:30", end_time="10:30")
    try:
        await seed_plan(account_id, "pro")
        async with SessionLocal() as session:
            alerts = await analyze_schedule_risk(
                session, account_id=account_id, candidate=candidate, existing=existing, today=_TODAY, rules=_RULES
            )

        assert [alert.alert_type for alert in alerts] == ["schedule_conflict", "preparation_shortage"]
        assert all(alert.id for alert in alerts)
        assert await _alert_count(account_id) == 2
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_analysis_without_feature_returns_nothing() -> None:
    account_id = new_account_id("alert-free")
    existing = [ScheduleEntry(id="e1", text="standup", start_time="09:00", end_time="10:00")]
    candidate = ScheduleEntry(id="c1", text="review", start_time="09:30", end_time="10:30")
    try:
        async with SessionLocal() as session:
            alerts = await analyze_schedule_risk(
                session, account_id=account_id, candidate=candidate, existing=existing, today=_TODAY, rules=_RULES
            )
        assert alerts == []
        assert await _alert_count(account_id) == 0
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_persist_failure_still_returns_alerts(monkeypatch) -> None:
    async def _broken(session, *, account_id, alerts):
        raise SQLAlchemyError("store down")

    monkeypatch.setattr(risk, "record_alerts", _broken)
    account_id = new_account_id("alert-persist-fail")
    existing = [ScheduleEntry(id="e1", text="standup", start_time="09:00", end_time="10:00")]
    candidate = ScheduleEntry(id="c1", text="review", start_time="09:30", end_time="10:30")
    try:
        await seed_plan(account_id, "pro")
        async with SessionLocal() as session:
            alerts = await analyze_schedule_risk(
                session, account_id=account_id, candidate=candidate, existing=existing, today=_TODAY, rules=_RULES
            )
        assert [alert.alert_type for alert in alerts] == ["schedule_conflict"]
        assert alerts[0].id is None
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_analysis_on_refused_connection_returns_nothing() -> None:
    existing = [ScheduleEntry(id="e1", text="standup", start_time="09:00", end_time="10:00")]
    candidate = ScheduleEntry(id="c1", text="review", start_time="09:30", end_time="10:30")
    async with unreachable_session() as session:
        alerts = await analyze_schedule_risk(
            session,
            account_id=new_account_id("alert-refused"),
            candidate=candidate,
            existing=existing,
            today=_TODAY,
            rules=_RULES,
        )
    assert alerts == []


@pytest.mark.asyncio
async def test_connection_lost_while_persisting_still_returns_alerts(monkeypatch) -> None:
    async def _dropped(session, *, account_id, alerts):
        raise ConnectionResetError("connection reset by peer")

    monkeypatch.setattr(risk, "record_alerts", _dropped)
    account_id = new_account_id("alert-persist-reset")
    existing = [ScheduleEntry(id="e1", text="standup", start_time="09:00", end_time="10:00")]
    candidate = ScheduleEntry(id="c1", text="review", start_time="09:30", end_time="10:30")
    try:
        await seed_plan(account_id, "pro")
        async with SessionLocal() as session:
            alerts = await analyze_schedule_risk(
                session, account_id=account_id, candidate=candidate, existing=existing, today=_TODAY, rules=_RULES
            )
        assert [alert.alert_type for alert in alerts] == ["schedule_conflict"]
        assert alerts[0].id is None
    finally:
        await cleanup_account(account_id)


@pytest.mark.asyncio
async def test_alert_dismissed_while_unread_leaves_unread_list() -> None:
    account_id = new_account_id("alert-dismiss-unread")
    try:
        async with SessionLocal() as session:
            first, second = await record_alerts(session, account_id=account_id, alerts=[_alert("a"), _alert("b")])

        async with SessionLocal() as session:
            await dismiss(session, account_id=account_id, alert_id=first.id)
            unread = await list_alerts(session, account_id=account_id, unread_only=True)
            visible = await list_alerts(session, account_id=account_id)

        assert [alert.id for alert in unread] == [second.id]
        assert [alert.id for alert in visible] == [second.id]
    finally:
        await cleanup_account(account_id)

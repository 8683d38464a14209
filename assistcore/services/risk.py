from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.domain.risk import RiskAlert, ScheduleEntry
from assistcore.services.alerts import record_alerts
from assistcore.services.entitlements import FEATURE_RISK_ALERTS, can_use_feature
from assistcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_DEFAULT_DURATION_MIN = 60
_MINUTES_PER_DAY = 24 * 60

CONFLICT_SEVERITY = 4
PREPARATION_SEVERITY = 3
OVERLOAD_SEVERITY = 3


@dataclass(frozen=True)
class RiskRules:
    prep_keywords: tuple[str, ...]
    default_prep_minutes: int = 60
    overload_threshold_minutes: int = 720

    @classmethod
    def from_settings(cls) -> RiskRules:
        settings = get_settings()
        return cls(
            prep_keywords=tuple(settings.risk_prep_keywords),
            default_prep_minutes=settings.risk_default_prep_minutes,
            overload_threshold_minutes=settings.risk_overload_threshold_minutes,
        )


def time_to_minutes(value: str) -> int:
    hours, _, minutes = value.strip().partition(":")
    return int(hours) * 60 + int(minutes or 0)


def format_minutes(value: int) -> str:
    value %= _MINUTES_PER_DAY
    return f"{value // 60:02d}:{value % 60:02d}"


def entry_interval(entry: ScheduleEntry) -> tuple[int, int]:
    # Half-open [start, end) in minutes; a missing end means a one-hour slot.
    start = time_to_minutes(entry.start_time)
    if not entry.end_time:
        return start, start + _DEFAULT_DURATION_MIN
    end = time_to_minutes(entry.end_time)
    if end < start:
        # An end before the start runs past midnight.
        end += _MINUTES_PER_DAY
    return start, end


def _others(candidate: ScheduleEntry, existing: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
    # The candidate may already be in the list when an entry is being edited.
    return [entry for entry in existing if entry.id != candidate.id]


def check_conflict(
    candidate: ScheduleEntry,
    existing: Sequence[ScheduleEntry],
    *,
    alert_date: date,
) -> RiskAlert | None:
    # Report only the first overlapping entry; re-running after a fix surfaces the next.
    new_start, new_end = entry_interval(candidate)
    for other in _others(candidate, existing):
        other_start, other_end = entry_interval(other)
        if new_start < other_end and new_end > other_start:
            other_window = f"{other.start_time}~{other.end_time or format_minutes(other_end)}"
            return RiskAlert(
                alert_type="schedule_conflict",
                title="Schedule conflict detected",
                message=f'"{candidate.text}" overlaps with "{other.text}" ({other_window}).',
                severity=CONFLICT_SEVERITY,
                related_schedule_ids=(candidate.id, other.id),
                alert_date=alert_date,
                suggested_action=(
                    f'Move "{candidate.text}" to start at {format_minutes(other_end)} or later.'
                ),
            )
    return None


def _needs_preparation(candidate: ScheduleEntry, keywords: Iterable[str]) -> bool:
    label = candidate.text.lower()
    return any(keyword.lower() in label for keyword in keywords)


def check_preparation(
    candidate: ScheduleEntry,
    existing: Sequence[ScheduleEntry],
    *,
    alert_date: date,
    rules: RiskRules,
) -> RiskAlert | None:
    if not _needs_preparation(candidate, rules.prep_keywords):
        return None
    required = candidate.preparation_minutes or rules.default_prep_minutes
    new_start, _ = entry_interval(candidate)

    previous: ScheduleEntry | None = None
    previous_end = -1
    for other in _others(candidate, existing):
        _, other_end = entry_interval(other)
        # Latest end at or before the candidate start; last seen wins on ties.
        if other_end <= new_start and other_end >= previous_end:
            previous, previous_end = other, other_end
    if previous is None:
        return None

    gap = new_start - previous_end
    if gap >= required:
        return None
    shortfall = required - gap
    return RiskAlert(
        alert_type="preparation_shortage",
        title="Not enough preparation time",
        message=(
            f'Only {gap} minutes to prepare for "{candidate.text}"; '
            f'it starts right after "{previous.text}".'
        ),
        severity=PREPARATION_SEVERITY,
        related_schedule_ids=(candidate.id, previous.id),
        alert_date=alert_date,
        suggested_action=(
            f'Move "{previous.text}" {shortfall} minutes earlier or push '
            f'"{candidate.text}" back by {shortfall} minutes.'
        ),
    )


def check_overload(
    candidate: ScheduleEntry,
    existing: Sequence[ScheduleEntry],
    *,
    alert_date: date,
    rules: RiskRules,
) -> RiskAlert | None:
    entries = [*_others(candidate, existing), candidate]
    total = 0
    for entry in entries:
        start, end = entry_interval(entry)
        total += end - start
    if total < rules.overload_threshold_minutes:
        return None
    hours = total // 60
    return RiskAlert(
        alert_type="overwork_warning",
        title="Heavy day ahead",
        message=f"{hours} hours of schedule are booked for this day. Make room for rest.",
        severity=OVERLOAD_SEVERITY,
        related_schedule_ids=tuple(entry.id for entry in entries),
        alert_date=alert_date,
        suggested_action="Move some entries to another day or insert breaks between them.",
    )


def evaluate_schedule_risk(
    candidate: ScheduleEntry,
    existing: Sequence[ScheduleEntry],
    *,
    today: date | None = None,
    rules: RiskRules | None = None,
) -> list[RiskAlert]:
    """Run every risk rule against one candidate entry.

    Rules are independent, so a single entry can yield up to three alerts.
    Pure: no store access, no feature check.
    """
    rules = rules or RiskRules.from_settings()
    alert_date = candidate.specific_date or today or datetime.now(timezone.utc).date()
    alerts = [
        check_conflict(candidate, existing, alert_date=alert_date),
        check_preparation(candidate, existing, alert_date=alert_date, rules=rules),
        check_overload(candidate, existing, alert_date=alert_date, rules=rules),
    ]
    return [alert for alert in alerts if alert is not None]


async def analyze_schedule_risk(
    session: AsyncSession,
    *,
    account_id: str,
    candidate: ScheduleEntry,
    existing: Sequence[ScheduleEntry],
    today: date | None = None,
    rules: RiskRules | None = None,
) -> list[RiskAlert]:
    # Plans without risk alerts get an empty list, never an error.
    if not await can_use_feature(session, account_id, FEATURE_RISK_ALERTS):
        return []
    alerts = evaluate_schedule_risk(candidate, existing, today=today, rules=rules)
    if not alerts:
        return []
    try:
        stored = await record_alerts(session, account_id=account_id, alerts=alerts)
    except (SQLAlchemyError, OSError) as exc:
        await session.rollback()
        increment_counter("risk.persist_failed")
        logger.warning(
            "risk_alerts_persist_failed account_id=%s count=%s", account_id, len(alerts), exc_info=exc
        )
        return alerts
    increment_counter("risk.alerts_created", len(stored))
    logger.info(
        "risk_alerts_created account_id=%s candidate_id=%s types=%s",
        account_id,
        candidate.id,
        ",".join(alert.alert_type for alert in stored),
    )
    return stored

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal


RiskAlertType = Literal[
    "schedule_conflict",
    "preparation_shortage",
    "overwork_warning",
    "deadline_risk",
    "health_concern",
]

RISK_ALERT_TYPES: frozenset[str] = frozenset(
    {
        "schedule_conflict",
        "preparation_shortage",
        "overwork_warning",
        "deadline_risk",
        "health_concern",
    }
)


@dataclass(frozen=True)
class ScheduleEntry:
    # Externally owned schedule value object; times are "HH:MM" within one day.
    id: str
    text: str
    start_time: str
    end_time: str | None = None
    specific_date: date | None = None
    days_of_week: tuple[int, ...] | None = None
    preparation_minutes: int | None = None


@dataclass(frozen=True)
class RiskAlert:
    # Closed variant keyed by alert_type; rule-specific payload lives in
    # related_schedule_ids and suggested_action.
    alert_type: RiskAlertType
    title: str
    message: str
    severity: int
    related_schedule_ids: tuple[str, ...]
    alert_date: date
    suggested_action: str | None = None
    id: str | None = None
    is_read: bool = False
    is_dismissed: bool = False
    created_at: datetime | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "related_schedule_ids": list(self.related_schedule_ids),
            "suggested_action": self.suggested_action,
            "is_read": self.is_read,
            "is_dismissed": self.is_dismissed,
            "alert_date": self.alert_date.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging
from typing import Any, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.core.errors import MalformedUpstreamResponseError, UpstreamServiceError
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.llm.base import LLMProvider
from assistcore.providers.llm.factory import get_llm_provider
from assistcore.services.entitlements import (
    FEATURE_MEMORY,
    FEATURE_SMART_BRIEFING,
    can_use_feature,
    require_feature,
)
from assistcore.services.memory import get_relevant_context, search_memories
from assistcore.services.parsing import parse_structured
from assistcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ImportanceLevel = Literal["critical", "important", "normal", "fyi"]
Recommendation = Literal["approve", "caution", "reconsider"]

_MAX_INSIGHTS = 2

_BRIEFING_SYSTEM = (
    "You are a sharp, insightful personal assistant. Do not just list the news: "
    "pick what really matters to this user and explain why it matters."
)
_ADVICE_SYSTEM = (
    "You are a scheduling expert. Advise on schedules with the user's productivity "
    "and wellbeing in mind."
)


@dataclass(frozen=True)
class ContentItem:
    title: str
    source: str
    description: str = ""
    url: str | None = None


@dataclass(frozen=True)
class AccountProfile:
    job: str | None = None
    goal: str | None = None
    interests: tuple[str, ...] = ()


@dataclass(frozen=True)
class BriefingItem:
    id: str
    title: str
    summary: str
    source: str
    relevance_score: float
    importance_level: str
    url: str | None = None
    action_suggestion: str | None = None
    related_goals: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "source": self.source,
            "url": self.url,
            "relevance_score": self.relevance_score,
            "importance_level": self.importance_level,
            "action_suggestion": self.action_suggestion,
            "related_goals": list(self.related_goals),
        }


@dataclass(frozen=True)
class Briefing:
    date: date
    greeting: str
    critical_items: list[BriefingItem] = field(default_factory=list)
    important_items: list[BriefingItem] = field(default_factory=list)
    normal_items: list[BriefingItem] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "greeting": self.greeting,
            "critical_items": [item.as_dict() for item in self.critical_items],
            "important_items": [item.as_dict() for item in self.important_items],
            "normal_items": [item.as_dict() for item in self.normal_items],
            "insights": list(self.insights),
        }


@dataclass(frozen=True)
class ScheduleAdvice:
    recommendation: str
    reason: str
    suggestion: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "recommendation": self.recommendation,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }


class _RankedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    news_index: int = Field(alias="newsIndex")
    relevance_score: float = Field(alias="relevanceScore")
    importance_level: ImportanceLevel = Field(alias="importanceLevel")
    summary: str | None = None
    action_suggestion: str | None = Field(default=None, alias="actionSuggestion")
    related_goals: list[str] = Field(default_factory=list, alias="relatedGoals")

    @field_validator("related_goals", mode="before")
    @classmethod
    def _null_goals(cls, value: Any) -> Any:
        return value or []


class _BriefingResponse(BaseModel):
    greeting: str | None = None
    items: list[_RankedItem] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)


class _AdviceResponse(BaseModel):
    recommendation: Recommendation
    reason: str
    suggestion: str | None = None


def _format_content(items: Sequence[ContentItem]) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        lines.append(f"{index}. [{item.source}] {item.title}\n   {item.description or ''}")
    return "\n\n".join(lines)


def _briefing_prompt(items: Sequence[ContentItem], profile: AccountProfile, memory_block: str) -> str:
    interests = ", ".join(profile.interests) or "not set"
    return f"""Analyse today's news and write a briefing tailored to the user.

[User]
- Job: {profile.job or "not set"}
- Goal: {profile.goal or "not set"}
- Interests: {interests}
{memory_block}
[Today's news]
{_format_content(items)}

[Importance levels]
- critical: directly affects the user's job or goal; check now
- important: closely related to the user's interests; check today
- normal: good to know
- fyi: for reference

[Respond in JSON]
{{
    "greeting": "one personalised sentence summarising today's briefing",
    "items": [
        {{
            "newsIndex": 1,
            "relevanceScore": 0.0-1.0,
            "importanceLevel": "critical|important|normal|fyi",
            "summary": "1-2 sentence summary from the user's point of view",
            "actionSuggestion": "suggested action, only when needed",
            "relatedGoals": ["related goal"]
        }}
    ],
    "insights": ["patterns or trends in today's news (at most 2)"]
}}"""


async def _memory_block(
    session: AsyncSession,
    account_id: str,
    goal: str | None,
    embedder: EmbeddingProvider | None,
) -> str:
    # Briefing and memory are gated separately; both must be on for enrichment.
    if not goal or not await can_use_feature(session, account_id, FEATURE_MEMORY):
        return ""
    settings = get_settings()
    try:
        matches = await search_memories(
            session,
            account_id=account_id,
            query=goal,
            limit=settings.briefing_memory_limit,
            min_similarity=settings.briefing_memory_min_similarity,
            embedder=embedder,
        )
    except UpstreamServiceError as exc:
        logger.warning("briefing_memory_lookup_failed account_id=%s error=%s", account_id, exc)
        return ""
    except (SQLAlchemyError, OSError) as exc:
        await session.rollback()
        increment_counter("briefing.memory_store_error")
        logger.warning("briefing_memory_store_error account_id=%s", account_id, exc_info=exc)
        return ""
    if not matches:
        return ""
    lines = "\n".join(f"- {match.memory.content}" for match in matches)
    return f"\n[Related memories]\n{lines}\n"


def _bucket(
    parsed: _BriefingResponse,
    items: Sequence[ContentItem],
    today: date,
) -> Briefing:
    critical: list[BriefingItem] = []
    important: list[BriefingItem] = []
    normal: list[BriefingItem] = []
    for ranked in parsed.items:
        # newsIndex is 1-based; anything outside the submitted list is ignored.
        if ranked.news_index < 1 or ranked.news_index > len(items):
            continue
        source = items[ranked.news_index - 1]
        item = BriefingItem(
            id=f"news-{ranked.news_index}",
            title=source.title,
            summary=ranked.summary or "",
            source=source.source,
            url=source.url,
            relevance_score=ranked.relevance_score,
            importance_level=ranked.importance_level,
            action_suggestion=ranked.action_suggestion,
            related_goals=tuple(ranked.related_goals),
        )
        if ranked.importance_level == "critical":
            critical.append(item)
        elif ranked.importance_level == "important":
            important.append(item)
        else:
            # fyi collapses into normal.
            normal.append(item)
    for bucket in (critical, important, normal):
        bucket.sort(key=lambda entry: entry.relevance_score, reverse=True)
    return Briefing(
        date=today,
        greeting=parsed.greeting or "",
        critical_items=critical,
        important_items=important,
        normal_items=normal,
        insights=list(parsed.insights[:_MAX_INSIGHTS]),
    )


async def compose_briefing(
    session: AsyncSession,
    *,
    account_id: str,
    items: Sequence[ContentItem],
    profile: AccountProfile | None = None,
    llm: LLMProvider | None = None,
    embedder: EmbeddingProvider | None = None,
    today: date | None = None,
) -> Briefing | None:
    """Rank raw content items for the account and bucket them by importance.

    Scoring is delegated to the reasoning service. An unparsable response
    yields ``None``; service failures propagate as typed errors.
    """
    await require_feature(session=session, account_id=account_id, feature_key=FEATURE_SMART_BRIEFING)
    profile = profile or AccountProfile()
    items = list(items)[: get_settings().briefing_max_items]
    memory_block = await _memory_block(session, account_id, profile.goal, embedder)

    provider = llm or get_llm_provider()
    text = await provider.complete(
        [
            {"role": "system", "content": _BRIEFING_SYSTEM},
            {"role": "user", "content": _briefing_prompt(items, profile, memory_block)},
        ],
        temperature=0.5,
    )
    try:
        parsed = parse_structured(text, _BriefingResponse)
    except MalformedUpstreamResponseError:
        increment_counter("briefing.malformed")
        logger.warning("briefing_response_unparsable account_id=%s", account_id)
        return None
    return _bucket(parsed, items, today or datetime.now(timezone.utc).date())


def _schedule_lines(entries: Sequence[dict[str, str]] | None) -> str:
    if not entries:
        return "none"
    return "\n".join(f"- {entry.get('start_time', '')}: {entry.get('text', '')}" for entry in entries)


async def advise_schedule(
    session: AsyncSession,
    *,
    account_id: str,
    new_entry_text: str,
    existing_entries: Sequence[dict[str, str]] = (),
    tomorrow_entries: Sequence[dict[str, str]] | None = None,
    goal: str | None = None,
    llm: LLMProvider | None = None,
    embedder: EmbeddingProvider | None = None,
) -> ScheduleAdvice | None:
    # Ask for approve/caution/reconsider on a new entry; unparsable answers yield None.
    await require_feature(session=session, account_id=account_id, feature_key=FEATURE_SMART_BRIEFING)
    memory_context = await get_relevant_context(
        session, account_id=account_id, text=new_entry_text, embedder=embedder
    )
    if not memory_context:
        memory_context = "[Relevant memories]\nnone"
    prompt = f"""The user wants to add a new schedule entry. Advise them given their existing schedule and goal.

[New entry]
"{new_entry_text}"

[Today's schedule]
{_schedule_lines(existing_entries)}

[Tomorrow's schedule]
{_schedule_lines(tomorrow_entries)}

[User goal]
{goal or "not set"}

{memory_context}

[Criteria]
- Whether it conflicts with other entries
- Impact on important entries the next day (sleep, preparation)
- How it relates to reaching the goal

[Respond in JSON]
{{
    "recommendation": "approve" | "caution" | "reconsider",
    "reason": "1-2 sentence reason",
    "suggestion": "alternative, if needed"
}}"""
    provider = llm or get_llm_provider()
    text = await provider.complete(
        [
            {"role": "system", "content": _ADVICE_SYSTEM},
            {"role": "user", "content": prompt},
        ],
        temperature=0.3,
    )
    try:
        parsed = parse_structured(text, _AdviceResponse)
    except MalformedUpstreamResponseError:
        increment_counter("briefing.advice_malformed")
        logger.warning("schedule_advice_unparsable account_id=%s", account_id)
        return None
    return ScheduleAdvice(
        recommendation=parsed.recommendation,
        reason=parsed.reason,
        suggestion=parsed.suggestion,
    )

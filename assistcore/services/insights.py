from __future__ import annotations

import asyncio
import json
import logging

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.persistence.db import SessionLocal
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.llm.base import LLMProvider
from assistcore.providers.llm.factory import get_llm_provider
from assistcore.services.entitlements import FEATURE_MEMORY, can_use_feature
from assistcore.services.memory import save_memory
from assistcore.services.parsing import parse_structured
from assistcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """Extract information from the conversation that is worth remembering later.

Look for:
1. The user's preferences and tastes
2. Important plans or goals
3. Personal circumstances or constraints
4. Recurring patterns
5. Special events or anniversaries

Respond in JSON:
{
  "insights": [
    {
      "type": "preference" | "goal" | "constraint" | "pattern" | "event",
      "content": "the extracted information",
      "importance": 0.1-1.0
    }
  ]
}

If there is nothing to extract, return {"insights": []}"""

_TYPE_MAP = {"preference": "preference", "pattern": "schedule_pattern"}

_background_tasks: set[asyncio.Task] = set()


class InsightCandidate(BaseModel):
    type: str = "insight"
    content: str = Field(min_length=1)
    importance: float = 0.5


class InsightResponse(BaseModel):
    insights: list[InsightCandidate] = Field(default_factory=list)


def map_memory_type(insight_type: str) -> str:
    return _TYPE_MAP.get(insight_type, "insight")


async def extract_and_save(
    session: AsyncSession,
    *,
    account_id: str,
    conversation: list[dict[str, str]],
    llm: LLMProvider | None = None,
    embedder: EmbeddingProvider | None = None,
) -> int:
    """Propose memories from the trailing conversation window and store them.

    Best-effort: every failure is logged and absorbed, and the return value is
    the number of memories written. Candidates are never retried.
    """
    try:
        if not await can_use_feature(session, account_id, FEATURE_MEMORY):
            return 0
        window = conversation[-get_settings().insight_window_turns :]
        if not window:
            return 0
        provider = llm or get_llm_provider()
        text = await provider.complete(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(window, ensure_ascii=False)},
            ],
            temperature=0.3,
        )
        parsed = parse_structured(text, InsightResponse)
    except Exception as exc:  # noqa: BLE001
        increment_counter("insights.extraction_failed")
        logger.warning(
            "insight_extraction_failed account_id=%s error=%s", account_id, type(exc).__name__, exc_info=exc
        )
        return 0

    saved = 0
    for candidate in parsed.insights:
        try:
            await save_memory(
                session,
                account_id=account_id,
                content=candidate.content,
                memory_type=map_memory_type(candidate.type),
                metadata={"extracted_from": "conversation", "original_type": candidate.type},
                importance=candidate.importance,
                embedder=embedder,
            )
            saved += 1
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            increment_counter("insights.save_failed")
            logger.warning(
                "insight_save_failed account_id=%s error=%s", account_id, type(exc).__name__, exc_info=exc
            )
    logger.info("insights_extracted account_id=%s proposed=%s saved=%s", account_id, len(parsed.insights), saved)
    return saved


async def _run_detached(
    account_id: str,
    conversation: list[dict[str, str]],
    llm: LLMProvider | None,
    embedder: EmbeddingProvider | None,
) -> int:
    # Own session so the request that scheduled us can close its own freely.
    try:
        async with SessionLocal() as session:
            return await extract_and_save(
                session, account_id=account_id, conversation=conversation, llm=llm, embedder=embedder
            )
    except Exception as exc:  # noqa: BLE001
        logger.warning("insight_task_failed account_id=%s", account_id, exc_info=exc)
        return 0


def schedule_extraction(
    account_id: str,
    conversation: list[dict[str, str]],
    *,
    llm: LLMProvider | None = None,
    embedder: EmbeddingProvider | None = None,
) -> asyncio.Task:
    # Fire-and-forget; hold a strong reference until the task finishes.
    task = asyncio.create_task(_run_detached(account_id, list(conversation), llm, embedder))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    # Await outstanding extractions, used on shutdown and in tests.
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)

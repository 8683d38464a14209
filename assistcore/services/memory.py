from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
import math
from typing import Any, Iterable, Literal, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import EMBED_DIM, get_settings
from assistcore.core.errors import AssistError, EmbeddingUnavailableError
from assistcore.domain.models import Memory
from assistcore.persistence.db import dialect_name
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.embeddings.factory import get_embedding_provider
from assistcore.services.entitlements import FEATURE_MEMORY, require_feature


logger = logging.getLogger(__name__)

MemoryType = Literal[
    "conversation",
    "memo",
    "insight",
    "preference",
    "achievement",
    "schedule_pattern",
]
MEMORY_TYPES: frozenset[str] = frozenset(
    {"conversation", "memo", "insight", "preference", "achievement", "schedule_pattern"}
)


@dataclass(frozen=True)
class MemoryItem:
    id: str
    memory_type: str
    content: str
    metadata: dict[str, Any]
    importance_score: float
    memory_date: date | None
    created_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "memory_type": self.memory_type,
            "content": self.content,
            "metadata": self.metadata,
            "importance_score": self.importance_score,
            "memory_date": self.memory_date.isoformat() if self.memory_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class MemoryMatch:
    memory: MemoryItem
    similarity: float

    def as_dict(self) -> dict[str, Any]:
        payload = self.memory.as_dict()
        payload["similarity"] = self.similarity
        return payload


def _to_item(row: Memory) -> MemoryItem:
    return MemoryItem(
        id=row.id,
        memory_type=row.memory_type,
        content=row.content,
        metadata=dict(row.metadata_json or {}),
        importance_score=float(row.importance_score),
        memory_date=row.memory_date,
        created_at=row.created_at,
    )


def _memory_date(metadata: dict[str, Any]) -> date:
    # Callers may pin a memory to a calendar day via metadata["date"].
    raw = metadata.get("date")
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            pass
    return datetime.now(timezone.utc).date()


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return dot / (left_norm * right_norm)


async def _embed(embedder: EmbeddingProvider, text: str) -> list[float]:
    try:
        vector = await embedder.embed(text)
    except AssistError:
        raise
    except Exception as exc:  # noqa: BLE001
        # Unknown provider faults surface as the typed, retryable embedding error.
        raise EmbeddingUnavailableError(f"Embedding call failed: {type(exc).__name__}") from exc
    if len(vector) != EMBED_DIM:
        # Vectors must match the column width or similarity is meaningless.
        raise EmbeddingUnavailableError(
            f"Embedding dimension mismatch: expected {EMBED_DIM}, got {len(vector)}"
        )
    return [float(value) for value in vector]


async def save_memory(
    session: AsyncSession,
    *,
    account_id: str,
    content: str,
    memory_type: str,
    metadata: dict[str, Any] | None = None,
    importance: float = 0.5,
    embedder: EmbeddingProvider | None = None,
) -> str:
    await require_feature(session=session, account_id=account_id, feature_key=FEATURE_MEMORY)
    if memory_type not in MEMORY_TYPES:
        raise ValueError(f"Unknown memory type: {memory_type}")
    metadata = dict(metadata or {})

    # Embed before touching the store so a provider failure leaves nothing behind.
    embedding = await _embed(embedder or get_embedding_provider(), content)
    row = Memory(
        account_id=account_id,
        memory_type=memory_type,
        content=content,
        embedding=embedding,
        importance_score=min(1.0, max(0.0, float(importance))),
        memory_date=_memory_date(metadata),
        metadata_json=metadata,
    )
    session.add(row)
    await session.commit()
    logger.info("memory_saved account_id=%s memory_id=%s type=%s", account_id, row.id, memory_type)
    return row.id


async def search_memories(
    session: AsyncSession,
    *,
    account_id: str,
    query: str,
    limit: int | None = None,
    memory_types: Iterable[str] | None = None,
    min_similarity: float | None = None,
    embedder: EmbeddingProvider | None = None,
) -> list[MemoryMatch]:
    # Rank the account's own memories by cosine similarity, best first.
    await require_feature(session=session, account_id=account_id, feature_key=FEATURE_MEMORY)
    settings = get_settings()
    limit = settings.memory_search_default_limit if limit is None else max(1, min(int(limit), 50))
    threshold = settings.memory_min_similarity if min_similarity is None else float(min_similarity)
    types = sorted(set(memory_types)) if memory_types else None

    query_embedding = await _embed(embedder or get_embedding_provider(), query)
    if dialect_name(session) == "postgresql":
        return await _search_pgvector(session, account_id, query_embedding, limit, types, threshold)
    return await _search_scan(session, account_id, query_embedding, limit, types, threshold)


async def _search_pgvector(
    session: AsyncSession,
    account_id: str,
    query_embedding: list[float],
    limit: int,
    types: list[str] | None,
    threshold: float,
) -> list[MemoryMatch]:
    # Use cosine distance from pgvector; lower is more similar.
    distance_expr = Memory.embedding.cosine_distance(query_embedding)
    stmt = (
        select(Memory, distance_expr.label("distance"))
        .where(Memory.account_id == account_id, distance_expr <= 1.0 - threshold)
        # Secondary ordering keeps tie-breaking deterministic.
        .order_by(distance_expr.asc(), Memory.id.asc())
        .limit(limit)
    )
    if types:
        stmt = stmt.where(Memory.memory_type.in_(types))
    rows = (await session.execute(stmt)).all()
    return [MemoryMatch(memory=_to_item(row), similarity=1.0 - float(distance)) for row, distance in rows]


async def _search_scan(
    session: AsyncSession,
    account_id: str,
    query_embedding: list[float],
    limit: int,
    types: list[str] | None,
    threshold: float,
) -> list[MemoryMatch]:
    # Backends without pgvector score in process with the same threshold and ordering.
    stmt = select(Memory).where(Memory.account_id == account_id)
    if types:
        stmt = stmt.where(Memory.memory_type.in_(types))
    rows = (await session.execute(stmt)).scalars().all()
    scored = []
    for row in rows:
        similarity = cosine_similarity(query_embedding, row.embedding or [])
        if similarity >= threshold:
            scored.append((similarity, row))
    scored.sort(key=lambda pair: (-pair[0], pair[1].id))
    return [MemoryMatch(memory=_to_item(row), similarity=similarity) for similarity, row in scored[:limit]]


async def delete_memory(session: AsyncSession, *, account_id: str, memory_id: str) -> None:
    # Foreign or unknown ids delete nothing and report nothing.
    await session.execute(
        delete(Memory).where(Memory.id == memory_id, Memory.account_id == account_id)
    )
    await session.commit()


async def recent_memories(
    session: AsyncSession,
    *,
    account_id: str,
    limit: int = 10,
) -> list[MemoryItem]:
    limit = max(1, min(int(limit), 100))
    rows = (
        await session.execute(
            select(Memory)
            .where(Memory.account_id == account_id)
            .order_by(Memory.created_at.desc(), Memory.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    return [_to_item(row) for row in rows]


async def get_relevant_context(
    session: AsyncSession,
    *,
    account_id: str,
    text: str,
    embedder: EmbeddingProvider | None = None,
) -> str:
    """Render memories related to ``text`` as a numbered prompt block.

    Returns an empty string when the account lacks the memory feature, nothing
    clears the similarity bar, or the embedding service is unavailable.
    """
    settings = get_settings()
    try:
        matches = await search_memories(
            session,
            account_id=account_id,
            query=text,
            limit=settings.memory_context_limit,
            min_similarity=settings.memory_context_min_similarity,
            embedder=embedder,
        )
    except AssistError as exc:
        logger.info("memory_context_skipped account_id=%s reason=%s", account_id, type(exc).__name__)
        return ""
    except (SQLAlchemyError, OSError) as exc:
        await session.rollback()
        logger.warning("memory_context_store_error account_id=%s", account_id, exc_info=exc)
        return ""
    if not matches:
        return ""
    lines = []
    for index, match in enumerate(matches, start=1):
        suffix = f" ({match.memory.memory_date.isoformat()})" if match.memory.memory_date else ""
        lines.append(f"{index}. {match.memory.content}{suffix}")
    return "[Relevant memories]\n" + "\n".join(lines)

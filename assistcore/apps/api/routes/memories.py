from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.apps.api.deps import (
    get_current_account,
    get_db,
    get_embedder,
    get_llm,
    require_feature_access,
    require_quota,
)
from assistcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from assistcore.apps.api.response import SuccessEnvelope, success_response
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.llm.base import LLMProvider
from assistcore.services.entitlements import FEATURE_MEMORY
from assistcore.services.insights import schedule_extraction
from assistcore.services.memory import (
    MemoryItem,
    delete_memory,
    recent_memories,
    save_memory,
    search_memories,
)


router = APIRouter(prefix="/memories", tags=["memories"], responses=DEFAULT_ERROR_RESPONSES)

MemoryTypeField = Literal[
    "conversation",
    "memo",
    "insight",
    "preference",
    "achievement",
    "schedule_pattern",
]


class MemoryCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    memory_type: MemoryTypeField = "memo"
    metadata: dict[str, Any] = Field(default_factory=dict)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)


class MemoryCreateResponse(BaseModel):
    id: str


class MemorySearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=4000)
    limit: int | None = Field(default=None, ge=1, le=50)
    memory_types: list[MemoryTypeField] | None = None
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)


class MemoryResponse(BaseModel):
    id: str
    memory_type: str
    content: str
    metadata: dict[str, Any]
    importance_score: float
    memory_date: date | None
    created_at: datetime | None


class MemoryMatchResponse(MemoryResponse):
    similarity: float


class MemoryListResponse(BaseModel):
    items: list[MemoryResponse]


class MemoryMatchListResponse(BaseModel):
    items: list[MemoryMatchResponse]


class ConversationTurn(BaseModel):
    role: str = Field(min_length=1, max_length=32)
    content: str = Field(max_length=8000)


class ExtractRequest(BaseModel):
    conversation: list[ConversationTurn] = Field(min_length=1, max_length=100)


class ExtractResponse(BaseModel):
    status: str


def _memory_payload(item: MemoryItem) -> dict[str, Any]:
    return MemoryResponse(
        id=item.id,
        memory_type=item.memory_type,
        content=item.content,
        metadata=item.metadata,
        importance_score=item.importance_score,
        memory_date=item.memory_date,
        created_at=item.created_at,
    ).model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[MemoryCreateResponse])
async def create_memory(
    payload: MemoryCreateRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict:
    memory_id = await save_memory(
        db,
        account_id=account_id,
        content=payload.content,
        memory_type=payload.memory_type,
        metadata=payload.metadata,
        importance=payload.importance,
        embedder=embedder,
    )
    return success_response(request=request, data=MemoryCreateResponse(id=memory_id))


@router.post(
    "/search",
    response_model=SuccessEnvelope[MemoryMatchListResponse],
    dependencies=[
        Depends(require_feature_access(FEATURE_MEMORY)),
        Depends(require_quota("memory_search")),
    ],
)
async def search(
    payload: MemorySearchRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict:
    matches = await search_memories(
        db,
        account_id=account_id,
        query=payload.query,
        limit=payload.limit,
        memory_types=payload.memory_types,
        min_similarity=payload.min_similarity,
        embedder=embedder,
    )
    items = [
        {**_memory_payload(match.memory), "similarity": match.similarity}
        for match in matches
    ]
    return success_response(request=request, data={"items": items})


@router.get("/recent", response_model=SuccessEnvelope[MemoryListResponse])
async def recent(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await recent_memories(db, account_id=account_id, limit=limit)
    return success_response(request=request, data={"items": [_memory_payload(item) for item in items]})


@router.delete("/{memory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_memory(
    memory_id: str,
    account_id: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Response:
    # 204 whether or not the id belonged to the caller.
    await delete_memory(db, account_id=account_id, memory_id=memory_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/extract",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SuccessEnvelope[ExtractResponse],
    dependencies=[
        Depends(require_feature_access(FEATURE_MEMORY)),
        Depends(require_quota("insight_extraction")),
    ],
)
async def extract(
    payload: ExtractRequest,
    request: Request,
    account_id: str = Depends(get_current_account),
    llm: LLMProvider = Depends(get_llm),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> dict:
    # Extraction runs detached; its outcome never reaches this response.
    conversation = [turn.model_dump() for turn in payload.conversation]
    schedule_extraction(account_id, conversation, llm=llm, embedder=embedder)
    return success_response(request=request, data=ExtractResponse(status="accepted"))

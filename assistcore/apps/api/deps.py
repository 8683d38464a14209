from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.persistence.db import SessionLocal
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.embeddings.factory import get_embedding_provider
from assistcore.providers.llm.base import LLMProvider
from assistcore.providers.llm.factory import get_llm_provider
from assistcore.services.entitlements import require_feature
from assistcore.services.quota import QuotaDecision, enforce_quota, quota_headers


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One session per request, shared by every dependency that asks for it.
    async with SessionLocal() as session:
        yield session


def get_llm() -> LLMProvider:
    return get_llm_provider()


def get_embedder() -> EmbeddingProvider:
    return get_embedding_provider()


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


async def get_current_account(request: Request) -> str:
    # The upstream session resolver authenticates and forwards the account id.
    header = get_settings().account_header
    account_id = (request.headers.get(header) or "").strip()
    if not account_id:
        raise _auth_error(f"Missing {header} header")
    return account_id


async def require_admin(request: Request) -> None:
    # Admin routes stay closed unless a shared token is configured.
    expected = get_settings().admin_api_token
    provided = request.headers.get("X-Admin-Token") or ""
    if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "AUTH_FORBIDDEN", "message": "Admin token required"},
        )


def require_quota(call_type: str):
    # Dependency factory that consumes one daily AI call for the route.
    async def _dependency(
        response: Response,
        account_id: str = Depends(get_current_account),
        db: AsyncSession = Depends(get_db),
    ) -> QuotaDecision:
        decision = await enforce_quota(session=db, account_id=account_id, call_type=call_type)
        for key, value in quota_headers(decision).items():
            response.headers[key] = value
        return decision

    return _dependency


def require_feature_access(feature_key: str):
    # Dependency factory that rejects plans lacking the capability before quota is spent.
    async def _dependency(
        account_id: str = Depends(get_current_account),
        db: AsyncSession = Depends(get_db),
    ) -> None:
        await require_feature(session=db, account_id=account_id, feature_key=feature_key)

    return _dependency

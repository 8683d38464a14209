from __future__ import annotations

import asyncio
import os
import tempfile

# Point the engine at a throwaway SQLite file unless a real database is configured.
_DB_DIR = tempfile.mkdtemp(prefix="assistcore-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/assistcore.db")
os.environ.setdefault("LLM_PROVIDER", "fake")
os.environ.setdefault("EMBEDDING_PROVIDER", "hashing")

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from assistcore.core.config import get_settings
from assistcore.domain.models import Base
from assistcore.persistence.db import engine
from assistcore.providers.embeddings.factory import reset_embedding_providers
from assistcore.providers.llm.factory import reset_llm_providers
from assistcore.services.entitlements import reset_entitlements_cache
from assistcore.services.insights import drain_background_tasks
from assistcore.services.quota import reset_quota_service
from assistcore.services.telemetry import reset_telemetry


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> None:
    # Build the schema once on a private engine so no connection leaks into test loops.
    async def _create() -> None:
        bootstrap = create_async_engine(os.environ["DATABASE_URL"])
        async with bootstrap.begin() as conn:
            if conn.dialect.name == "postgresql":
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(Base.metadata.create_all)
        await bootstrap.dispose()

    asyncio.run(_create())


@pytest.fixture(autouse=True)
async def isolate_process_state() -> None:
    # Cached plans, providers and counters must not leak between tests.
    reset_entitlements_cache()
    reset_quota_service()
    reset_llm_providers()
    reset_embedding_providers()
    reset_telemetry()
    yield
    await drain_background_tasks()
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
    get_settings.cache_clear()
    reset_entitlements_cache()

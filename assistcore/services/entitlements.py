from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import time

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assistcore.core.config import get_settings
from assistcore.core.errors import FeatureDisabledError
from assistcore.domain.models import AccountPlan
from assistcore.persistence.db import dialect_name
from assistcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

TIER_FREE = "free"
TIER_PRO = "pro"
TIER_MAX = "max"
TIERS = (TIER_FREE, TIER_PRO, TIER_MAX)
DEFAULT_TIER = TIER_FREE

FEATURE_MEMORY = "memory"
FEATURE_RISK_ALERTS = "risk_alerts"
FEATURE_SMART_BRIEFING = "smart_briefing"
FEATURE_PROACTIVE_SUGGESTIONS = "proactive_suggestions"
FEATURE_MOOD_PATTERNS = "mood_patterns"
FEATURE_AI_TEMPLATES = "ai_templates"
FEATURE_VOICE_JOURNAL = "voice_journal"
FEATURE_HEALTH_SYNC = "health_sync"
FEATURE_GITHUB_SYNC = "github_sync"

FEATURE_KEYS = (
    FEATURE_MEMORY,
    FEATURE_RISK_ALERTS,
    FEATURE_SMART_BRIEFING,
    FEATURE_PROACTIVE_SUGGESTIONS,
    FEATURE_MOOD_PATTERNS,
    FEATURE_AI_TEMPLATES,
    FEATURE_VOICE_JOURNAL,
    FEATURE_HEALTH_SYNC,
    FEATURE_GITHUB_SYNC,
)


@dataclass(frozen=True)
class PlanSnapshot:
    # Immutable view of an account's plan used by every gate decision.
    tier: str
    is_active: bool
    daily_call_limit: int | None
    storage_mb: int
    features: dict[str, bool] = field(default_factory=dict)
    expires_at: datetime | None = None

    @property
    def unlimited(self) -> bool:
        return self.daily_call_limit is None

    def has_feature(self, feature_key: str) -> bool:
        return self.is_active and bool(self.features.get(feature_key, False))


def _features(*enabled: str) -> dict[str, bool]:
    return {key: key in enabled for key in FEATURE_KEYS}


PLAN_CATALOG: dict[str, PlanSnapshot] = {
    TIER_FREE: PlanSnapshot(
        tier=TIER_FREE,
        is_active=True,
        daily_call_limit=30,
        storage_mb=50,
        features=_features(FEATURE_PROACTIVE_SUGGESTIONS),
    ),
    TIER_PRO: PlanSnapshot(
        tier=TIER_PRO,
        is_active=True,
        daily_call_limit=100,
        storage_mb=100,
        features=_features(
            FEATURE_PROACTIVE_SUGGESTIONS,
            FEATURE_RISK_ALERTS,
            FEATURE_SMART_BRIEFING,
            FEATURE_MOOD_PATTERNS,
            FEATURE_AI_TEMPLATES,
            FEATURE_VOICE_JOURNAL,
            FEATURE_HEALTH_SYNC,
        ),
    ),
    TIER_MAX: PlanSnapshot(
        tier=TIER_MAX,
        is_active=True,
        daily_call_limit=None,
        storage_mb=1024,
        features=_features(*FEATURE_KEYS),
    ),
}


_plan_cache: dict[str, tuple[float, PlanSnapshot]] = {}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def invalidate_entitlements_cache(account_id: str) -> None:
    # Drop cached plans after upgrades so the next call sees the new tier.
    _plan_cache.pop(account_id, None)


def reset_entitlements_cache() -> None:
    # Clear cached plans for deterministic tests.
    _plan_cache.clear()


def _snapshot_from_row(row: AccountPlan, now: datetime) -> PlanSnapshot:
    if row.expires_at is not None and _as_utc(row.expires_at) <= now:
        # Expired paid plans read as the lowest tier; the row itself is kept.
        return PLAN_CATALOG[DEFAULT_TIER]
    features = {key: bool((row.features_json or {}).get(key, False)) for key in FEATURE_KEYS}
    return PlanSnapshot(
        tier=row.tier,
        is_active=bool(row.is_active),
        daily_call_limit=row.daily_call_limit,
        storage_mb=int(row.storage_mb),
        features=features,
        expires_at=_as_utc(row.expires_at) if row.expires_at else None,
    )


def _upsert_statement(session: AsyncSession, values: dict, *, update: bool):
    # Build a dialect-native upsert keyed by account_id.
    insert_fn = pg_insert if dialect_name(session) == "postgresql" else sqlite_insert
    stmt = insert_fn(AccountPlan).values(**values)
    if update:
        changes = {key: value for key, value in values.items() if key != "account_id"}
        return stmt.on_conflict_do_update(index_elements=[AccountPlan.account_id], set_=changes)
    return stmt.on_conflict_do_nothing(index_elements=[AccountPlan.account_id])


def _plan_values(account_id: str, plan: PlanSnapshot, *, expires_at: datetime | None) -> dict:
    now = _utc_now()
    return {
        "account_id": account_id,
        "tier": plan.tier,
        "is_active": True,
        "daily_call_limit": plan.daily_call_limit,
        "storage_mb": plan.storage_mb,
        "features_json": dict(plan.features),
        "expires_at": expires_at,
        "started_at": now,
        "updated_at": now,
    }


async def get_plan(session: AsyncSession, account_id: str) -> PlanSnapshot:
    # Return the account plan, creating the lowest-tier row on first lookup.
    ttl_s = get_settings().entitlement_cache_ttl_s
    now_ts = time.time()
    cached = _plan_cache.get(account_id)
    if cached and cached[0] > now_ts:
        return cached[1]

    row = await session.get(AccountPlan, account_id)
    if row is None:
        await session.execute(
            _upsert_statement(
                session,
                _plan_values(account_id, PLAN_CATALOG[DEFAULT_TIER], expires_at=None),
                update=False,
            )
        )
        await session.commit()
        row = await session.get(AccountPlan, account_id)
    snapshot = _snapshot_from_row(row, _utc_now()) if row else PLAN_CATALOG[DEFAULT_TIER]

    if ttl_s > 0:
        _plan_cache[account_id] = (now_ts + ttl_s, snapshot)
    return snapshot


async def can_use_feature(session: AsyncSession, account_id: str, feature_key: str) -> bool:
    # Feature flags fail closed: a store fault denies the capability.
    try:
        plan = await get_plan(session, account_id)
    except (SQLAlchemyError, OSError) as exc:
        await session.rollback()
        increment_counter("entitlements.store_error")
        logger.warning(
            "entitlement_lookup_failed account_id=%s feature=%s", account_id, feature_key, exc_info=exc
        )
        return False
    return plan.has_feature(feature_key)


async def require_feature(*, session: AsyncSession, account_id: str, feature_key: str) -> None:
    if not await can_use_feature(session, account_id, feature_key):
        increment_counter(f"entitlements.denied.{feature_key}")
        raise FeatureDisabledError(feature_key)


async def is_max_plan(session: AsyncSession, account_id: str) -> bool:
    plan = await get_plan(session, account_id)
    return plan.is_active and plan.tier == TIER_MAX


async def is_pro_or_above(session: AsyncSession, account_id: str) -> bool:
    plan = await get_plan(session, account_id)
    return plan.is_active and plan.tier in {TIER_PRO, TIER_MAX}


async def upgrade_plan(
    session: AsyncSession,
    account_id: str,
    tier: str,
    *,
    duration_days: int | None = None,
) -> PlanSnapshot:
    # Rewrite the plan row from the catalog; billing lives outside this service.
    if tier not in PLAN_CATALOG:
        raise ValueError(f"Unknown plan tier: {tier}")
    expires_at = _utc_now() + timedelta(days=duration_days) if duration_days else None
    await session.execute(
        _upsert_statement(
            session,
            _plan_values(account_id, PLAN_CATALOG[tier], expires_at=expires_at),
            update=True,
        )
    )
    await session.commit()
    invalidate_entitlements_cache(account_id)
    logger.info("plan_upgraded account_id=%s tier=%s duration_days=%s", account_id, tier, duration_days)
    return await get_plan(session, account_id)

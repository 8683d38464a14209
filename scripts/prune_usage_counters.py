from __future__ import annotations

import argparse
import asyncio

from assistcore.persistence.db import SessionLocal
from assistcore.services.maintenance import prune_usage_counters


async def prune(retention_days: int | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_usage_counters(session, retention_days)
        await session.commit()
        print(f"pruned_usage_rows={deleted}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete usage counters older than the retention window")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(prune(args.retention_days))

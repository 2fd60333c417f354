from __future__ import annotations

import asyncio

from lineage.persistence.db import build_engine, build_session_factory
from lineage.services.maintenance import prune_audit_events


async def prune() -> None:
    engine = build_engine()
    try:
        async with build_session_factory(engine)() as session:
            deleted = await prune_audit_events(session)
            await session.commit()
            print(f"pruned_audit_events={deleted}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(prune())

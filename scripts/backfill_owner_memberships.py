from __future__ import annotations

import argparse
import asyncio

from lineage.core.logging import configure_logging
from lineage.persistence.db import build_engine, build_session_factory
from lineage.services.maintenance import backfill_owner_memberships


async def backfill(batch_size: int) -> None:
    # Bulk repair of trees whose recorded owner has no membership row.
    engine = build_engine()
    try:
        async with build_session_factory(engine)() as session:
            repaired = await backfill_owner_memberships(session, batch_size=batch_size)
            await session.commit()
            print(f"owner_memberships_repaired={repaired}")
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Insert missing owner memberships")
    parser.add_argument("--batch-size", type=int, default=500)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(backfill(args.batch_size))


if __name__ == "__main__":
    main()

"""Executable worker that settles deferred tutor payouts."""

from __future__ import annotations

import asyncio
import logging
import os

from app.core.database import SessionLocal
from app.modules.payments.reconciler import ReconciliationSummary, build_transfer_reconciler

logger = logging.getLogger(__name__)


async def run_cycle() -> ReconciliationSummary:
    """Run one reconciliation in a single DB transaction."""
    async with SessionLocal() as session:
        try:
            summary = await build_transfer_reconciler(session).run_once()
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return summary


async def main() -> None:
    """Run once (cron) or keep polling according to worker mode."""
    logging.basicConfig(level=os.getenv("TRANSFER_RECONCILER_LOG_LEVEL", "INFO"))
    mode = os.getenv("TRANSFER_RECONCILER_MODE", "once").strip().lower()
    poll_seconds = int(os.getenv("TRANSFER_RECONCILER_POLL_SECONDS", "3600"))

    if mode == "once":
        summary = await run_cycle()
        logger.info("Transfer reconciler summary: %s", summary.as_dict())
        return

    while True:
        try:
            summary = await run_cycle()
            logger.info("Transfer reconciler summary: %s", summary.as_dict())
        except Exception:
            logger.exception("Transfer reconciler cycle failed")
        await asyncio.sleep(poll_seconds)


if __name__ == "__main__":
    asyncio.run(main())

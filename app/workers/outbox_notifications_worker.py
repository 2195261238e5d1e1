"""Executable worker turning booking and payout events into user notifications."""

from __future__ import annotations

import asyncio
import logging
import os

from app.core.config import Settings, get_settings
from app.core.database import SessionLocal
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.outbox_worker import NotificationsOutboxWorker
from app.modules.notifications.repository import NotificationsRepository

logger = logging.getLogger(__name__)


def build_worker(session, settings: Settings) -> NotificationsOutboxWorker:
    return NotificationsOutboxWorker(
        audit_repository=AuditRepository(session),
        notifications_repository=NotificationsRepository(session),
        batch_size=settings.outbox_batch_size,
        max_retries=settings.outbox_max_retries,
        base_backoff_seconds=settings.outbox_base_backoff_seconds,
        max_backoff_seconds=settings.outbox_max_backoff_seconds,
    )


async def run_cycle() -> dict[str, int]:
    """Drain one outbox batch; notifications and event states commit together."""
    settings = get_settings()
    async with SessionLocal() as session:
        try:
            stats = await build_worker(session, settings).run_once()
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return stats


async def main() -> None:
    """Run once (cron) or keep polling according to worker mode."""
    logging.basicConfig(level=get_settings().log_level)
    mode = os.getenv("OUTBOX_WORKER_MODE", "once").strip().lower()
    poll_seconds = int(os.getenv("OUTBOX_WORKER_POLL_SECONDS", "10"))

    if mode == "once":
        stats = await run_cycle()
        logger.info("Notification outbox stats: %s", stats)
        return

    while True:
        try:
            stats = await run_cycle()
            if stats["processed"] or stats["failed"]:
                logger.info("Notification outbox stats: %s", stats)
        except Exception:
            logger.exception("Notification outbox cycle failed")
        await asyncio.sleep(poll_seconds)


if __name__ == "__main__":
    asyncio.run(main())

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from app.core.config import settings
from app.core.db import SessionLocal
from app.modules.messaging.orchestrator import MessageOrchestrator
from app.modules.messaging.repository import QueueRepository, InboxRepository
from app.platform.provider_registry import ProviderRegistry, registry as default_registry

log = logging.getLogger("messaging.sweep")

def _now() -> datetime:
    return datetime.now(timezone.utc)

async def process_scheduled_messages(session_factory=None, *, limit: int | None = None,
                                     registry: ProviderRegistry = default_registry,
                                     clock: Callable[[], datetime] = _now) -> int:
    """Dispatch due queue items in one bounded batch; each item succeeds or fails on its own."""
    session_factory = session_factory or SessionLocal
    async with session_factory() as session:
        batch = await QueueRepository(session).claim_batch(limit=limit or settings.SCHEDULER_BATCH_SIZE, now=clock())
        claimed = [item.id for item in batch]
        await session.commit()
    if not claimed:
        return 0

    processed = 0
    for item_id in claimed:
        async with session_factory() as session:
            queue = QueueRepository(session)
            orch = MessageOrchestrator(session, registry=registry, clock=clock)
            item = await queue.get(item_id)
            try:
                await orch.process_scheduled(item)
                await queue.mark_processed(item)
                await session.commit()
                processed += 1
            except Exception as ex:  # noqa
                log.exception(f"Scheduled item {item_id} failed")
                await session.rollback()
                item = await queue.get(item_id)
                await queue.mark_failed(item, error=str(ex) or ex.__class__.__name__)
                await orch.fail_delivery(item.delivery_id, str(ex) or ex.__class__.__name__)
                await session.commit()
    log.info(f"Sweep processed {processed}/{len(claimed)} scheduled messages")
    return processed

async def expire_inbox(session_factory=None) -> int:
    session_factory = session_factory or SessionLocal
    async with session_factory() as session:
        n = await InboxRepository(session).expire(_now())
        await session.commit()
    if n:
        log.info(f"Expired {n} inbox messages")
    return n

# ---- Background loop ----

async def run_scheduler(poll_interval_seconds: float | None = None):
    interval = poll_interval_seconds or settings.SCHEDULER_POLL_SECONDS
    log.info(f"Scheduler started, polling every {interval}s")
    try:
        while True:
            try:
                await process_scheduled_messages()
                await expire_inbox()
            except Exception:
                log.exception("Scheduler iteration failed")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        log.info("Scheduler cancelled; shutting down")
        raise

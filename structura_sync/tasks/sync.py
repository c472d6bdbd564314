import asyncio
import logging

from structura_sync.db import PostgresKeyValueStore, close_db_pool, init_db, init_db_pool
from structura_sync.models import NetworkStatus
from structura_sync.service import OfflineRecoveryService
from structura_sync.store import PendingRequestStore
from structura_sync.utils.http import create_client
from structura_sync.worker import celery_app

logger = logging.getLogger(__name__)


async def _drain_once(pool) -> None:
    """Checks the connection once and, when it is good, runs one drain pass."""
    async with create_client() as client:
        service = OfflineRecoveryService.create(backend=PostgresKeyValueStore(pool), client=client)
        status = await service.monitor.check_connectivity()
        if status is not NetworkStatus.ONLINE:
            logger.info(f"Network is {status.value}. Skipping drain of the offline queue.")
            return
        sync_status = await service.sync_now()
        logger.info(f"Offline queue drained, {sync_status.pending_changes} requests still pending")


async def _count_pending(pool) -> int:
    return await PendingRequestStore(PostgresKeyValueStore(pool)).count()


async def _with_pool(job):
    pool = await init_db_pool()
    if pool is None:
        logger.error("Database pool unavailable, task skipped.")
        return None
    try:
        await init_db(pool)
        return await job(pool)
    finally:
        await close_db_pool()


@celery_app.task(name="drain_pending_requests")
def drain_pending_requests():
    """Celery task: replays queued requests when the API is reachable."""
    logger.info("Running drain_pending_requests task")
    asyncio.run(_with_pool(_drain_once))


@celery_app.task(name="report_pending_requests")
def report_pending_requests():
    pending = asyncio.run(_with_pool(_count_pending))
    if pending is not None:
        logger.info(f"{pending} requests waiting in the offline queue")
    return pending

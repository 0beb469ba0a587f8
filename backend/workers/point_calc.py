"""
Point Calculation Workers — scheduled ledger reconciliation.

Workers:
  1. process_point_documents: one incremental pass over due sale/return documents
  2. recalc_customer_points: full per-customer rebuild (manual correction)

Schedule: crontab(minute="*/30", hour="5-20") in Asia/Bangkok by default
Queue: points
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from workers.celery_app import celery_app
from workers.run_lock import RedisRunLock, RunLock

logger = structlog.get_logger()

POINT_CALC_LOCK_NAME = "point_calc"

# In-process slot for runs triggered outside Celery (API, CLI)
local_run_lock = RunLock(POINT_CALC_LOCK_NAME)


def get_worker_run_lock() -> RedisRunLock:
    from core.config import get_settings

    settings = get_settings()
    return RedisRunLock(
        POINT_CALC_LOCK_NAME,
        redis_url=settings.redis_url,
        timeout=settings.point_calc_lock_timeout_seconds,
    )


async def run_guarded(lock, session_factory: async_sessionmaker | None = None) -> dict:
    """
    Run one orchestrator pass while holding ``lock``.

    Acquired before the scan and released after completion or failure. If
    another run holds the slot this invocation is skipped, never queued.
    """
    from points.orchestrator import process_all

    if not lock.acquire():
        logger.warning("points.scheduler.skipped_overlap", lock=lock.name)
        return {"status": "skipped", "reason": "already_running"}
    try:
        result = await process_all(session_factory)
    finally:
        lock.release()
    return {"status": "success", **result.as_dict()}


@celery_app.task(
    name="workers.point_calc.process_point_documents",
    bind=True,
    acks_late=True,
)
def process_point_documents(self):
    """
    Periodic job: ledger every new or edited sale/return document.

    Flow:
      1. Take the cross-worker run lock (skip if a previous run is still going)
      2. Scan active periods + watermarks for due documents
      3. Process each document in its own transaction
      4. Release the lock
    """
    run_id = self.request.id or "manual"
    logger.info("point_calc.started", run_id=run_id)

    async def _process():
        from core.config import get_settings
        from db.session import create_session_factory

        settings = get_settings()
        engine, session_factory = create_session_factory(settings.database_url)
        try:
            return await run_guarded(get_worker_run_lock(), session_factory)
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_process())
    except Exception as exc:
        logger.error("point_calc.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise

    logger.info("point_calc.completed", run_id=run_id, **summary)
    return summary


@celery_app.task(
    name="workers.point_calc.recalc_customer_points",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def recalc_customer_points(self, cust_code: str):
    """Full rebuild of one customer's document-derived ledger and balances."""
    run_id = self.request.id or "manual"
    logger.info("point_calc.recalc.started", cust_code=cust_code, run_id=run_id)

    async def _recalc():
        from core.config import get_settings
        from db.session import create_session_factory
        from points.orchestrator import recalc_customer

        settings = get_settings()
        engine, session_factory = create_session_factory(settings.database_url)
        try:
            result = await recalc_customer(cust_code, session_factory)
            return result.as_dict()
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_recalc())
    except Exception as exc:  # noqa: BLE001
        from points.errors import PointError

        if isinstance(exc, PointError):
            logger.warning("point_calc.recalc.rejected", cust_code=cust_code, error=str(exc))
            return {"status": "failed", "reason": str(exc), "cust_code": cust_code}
        logger.error("point_calc.recalc.failed", cust_code=cust_code, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

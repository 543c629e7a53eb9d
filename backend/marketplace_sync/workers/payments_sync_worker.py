"""
Payments Sync Worker

Runs the Etsy payments sync job on a fixed interval inside this process.
Use it when no external scheduler calls the HTTP trigger; both paths run the
same job, and overlapping runs are safe because every write is an upsert.
"""
import asyncio
from typing import Optional

from marketplace_sync.config import settings
from marketplace_sync.services.payments_sync import scheduler
from marketplace_sync.utils.logger import logger


async def run_payments_sync_once():
    try:
        summary = await scheduler.run_marketplace_payments_sync()
    except Exception as e:
        logger.error(f"[payments-sync-worker] cycle failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}

    return {
        "status": "completed",
        "integrations": summary.integrations_total,
        "failed": summary.integrations_failed,
        "payments_upserted": summary.payments_upserted,
        "deadline_exceeded": summary.deadline_exceeded,
    }


async def run_payments_sync_worker_loop(
    interval_seconds: Optional[int] = None,
    max_cycles: Optional[int] = None,
):
    """
    Run the payments sync in a loop every SYNC_WORKER_INTERVAL_SECONDS.
    max_cycles bounds the loop; None runs forever.
    """
    interval = interval_seconds if interval_seconds is not None else settings.SYNC_WORKER_INTERVAL_SECONDS
    logger.info("Payments sync worker loop started (interval=%ss)", interval)

    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        result = await run_payments_sync_once()
        logger.info(f"Payments sync cycle completed: {result}")
        cycles += 1

        if max_cycles is not None and cycles >= max_cycles:
            break
        await asyncio.sleep(interval)

    return cycles


if __name__ == "__main__":
    asyncio.run(run_payments_sync_worker_loop())

"""
Background job that expires stale marketplace listings.

Started from the application lifespan; each pass opens its own session and runs
in the threadpool since the service layer is synchronous.
"""

import asyncio
from typing import Optional
from fastapi.concurrency import run_in_threadpool
from core.database import SessionLocal
from services.marketplace_service import MarketplaceService
from utils.logger import get_logger

logger = get_logger(__name__)


def sweep_once(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        return MarketplaceService.auto_expire_items(db)
    finally:
        db.close()


async def run_expiry_sweeper(interval_seconds: int, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Sweep every `interval_seconds` until `stop_event` is set or the task is
    cancelled. A failed pass is logged and the loop keeps going.
    """
    stop_event = stop_event or asyncio.Event()
    logger.info("Marketplace expiry sweeper started", extra={"interval_seconds": interval_seconds})

    while not stop_event.is_set():
        try:
            await run_in_threadpool(sweep_once)
        except Exception as e:
            logger.error(
                f"Marketplace expiry sweep failed: {str(e)}",
                extra={"error_type": type(e).__name__},
                exc_info=True
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Marketplace expiry sweeper stopped")

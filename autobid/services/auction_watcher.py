from __future__ import annotations

import asyncio
import contextlib
import logging

from autobid.services.lifecycle import AuctionLifecycle

logger = logging.getLogger(__name__)


async def run_auction_watcher(lifecycle: AuctionLifecycle, *, interval_seconds: int) -> None:
    interval = max(interval_seconds, 1)
    while True:
        try:
            closed = await lifecycle.sweep_expired_auctions()
            if closed:
                logger.info("Auction watcher closed %s auction(s)", closed)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Auction watcher failed: %s", exc)
            await asyncio.sleep(interval)


async def cancel_watcher(task: asyncio.Task[None] | None) -> None:
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

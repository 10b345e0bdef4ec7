# gofresh/fastapi/marketplace_api.py
# Public marketplace: browse listings, see bids, follow a listing live.

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from gofresh.errors import NotFoundError
from gofresh.fastapi.deps import get_now
from gofresh.services.bid_feed import FeedEvent, bid_feed
from gofresh.services.bid_service import BidService
from gofresh.services.listing_service import ListingService

logger = structlog.stdlib.get_logger()

router = APIRouter(prefix="/api/v1/marketplace", tags=["marketplace"])


@router.get("/listings")
def browse_listings(
    category: Optional[str] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    open_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    now: datetime = Depends(get_now),
):
    rows = ListingService.browse_listings(now, category=category, q=q, open_only=open_only, limit=limit)
    return {"ok": True, "count": len(rows), "listings": rows}


@router.get("/listings/{listing_id}")
def listing_detail(listing_id: str, now: datetime = Depends(get_now)):
    return {"ok": True, "listing": ListingService.get_listing(listing_id, now)}


@router.get("/listings/{listing_id}/bids")
def listing_bids(listing_id: str):
    bids = BidService.get_listing_bids(listing_id)
    return {"ok": True, "count": len(bids), "bids": bids}


# ========= live feed =========
def _snapshot(listing_id: str, now: datetime, reason: str) -> Dict[str, Any]:
    """Full state, re-read from Mongo every time; clients never apply deltas."""
    return {
        "type": "snapshot",
        "reason": reason,
        "listing": ListingService.get_listing(listing_id, now),
        "bids": BidService.get_listing_bids(listing_id),
    }


async def _drain_until_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _forward_events(websocket: WebSocket, listing_id: str, queue: "asyncio.Queue[FeedEvent]") -> None:
    clock = websocket.app.state.clock
    while True:
        event = await queue.get()
        snapshot = await run_in_threadpool(_snapshot, listing_id, clock.now(), event.type)
        await websocket.send_json(snapshot)


@router.websocket("/listings/{listing_id}/feed")
async def listing_feed(websocket: WebSocket, listing_id: str):
    clock = websocket.app.state.clock
    try:
        first = await run_in_threadpool(_snapshot, listing_id, clock.now(), "connected")
    except NotFoundError:
        await websocket.close(code=4404)
        return

    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[FeedEvent]" = asyncio.Queue()
    token = bid_feed.subscribe(listing_id, lambda event: loop.call_soon_threadsafe(queue.put_nowait, event))
    logger.info("feed_subscribed", listing_id=listing_id)

    try:
        await websocket.send_json(first)
        forward = asyncio.create_task(_forward_events(websocket, listing_id, queue))
        listen = asyncio.create_task(_drain_until_disconnect(websocket))
        done, pending = await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("feed_closed_with_error", listing_id=listing_id, error=str(task.exception()))
    finally:
        bid_feed.unsubscribe(listing_id, token)
        logger.info("feed_unsubscribed", listing_id=listing_id)

# gofresh/services/auction_service.py

from datetime import datetime
from typing import Any, Dict, List

import structlog
from pymongo import ReturnDocument

from gofresh.models.marketplace.notification_models import NotificationType
from gofresh.mongo import get_db
from gofresh.services.auction_rules import AuctionWindow, format_amount, resolve_winner
from gofresh.services.bid_feed import FeedEvent, bid_feed
from gofresh.services.listing_service import ListingService
from gofresh.services.notification_service import NotificationService

logger = structlog.stdlib.get_logger()


class AuctionService:

    @staticmethod
    def close_ended_auctions(now: datetime) -> List[Dict[str, Any]]:
        """
        Send auction_ended notifications for every auction whose window has passed.
        Each listing is claimed with a conditional update first, so running the
        sweep twice (or from two processes) notifies once.
        """
        db = get_db()
        candidates = list(db.listings.find({"ended_notified": {"$ne": True}, "bid_end": {"$ne": None}}))

        closed = []
        for listing in candidates:
            if ListingService.window_of(listing, now) is not AuctionWindow.ENDED:
                continue

            claimed = db.listings.find_one_and_update(
                {"_id": listing["_id"], "ended_notified": {"$ne": True}},
                {"$set": {"ended_notified": True, "updated_at": now}},
                return_document=ReturnDocument.AFTER,
            )
            if claimed is None:
                continue

            listing_id = str(listing["_id"])
            bids = list(db.bids.find({"listing_id": listing_id}))
            winner = resolve_winner(bids, AuctionWindow.ENDED)
            name = listing.get("name", "your listing")

            if winner is None:
                NotificationService.notify(
                    listing["farmer_id"],
                    NotificationType.AUCTION_ENDED,
                    title="Auction ended",
                    message=f"The auction for {name} ended with no bids",
                    now=now,
                    listing_id=listing_id,
                )
            else:
                NotificationService.notify(
                    listing["farmer_id"],
                    NotificationType.AUCTION_ENDED,
                    title="Auction ended",
                    message=f"{winner.bidder_name or 'A buyer'} won {name} at {format_amount(winner.amount)}",
                    now=now,
                    listing_id=listing_id,
                    bid_id=winner.bid_id,
                    bidder_id=winner.bidder_id,
                    bidder_name=winner.bidder_name,
                    bid_amount=winner.amount,
                )
                NotificationService.notify(
                    winner.bidder_id,
                    NotificationType.AUCTION_ENDED,
                    title="You won the auction",
                    message=f"You won {name} at {format_amount(winner.amount)}. Complete your payment to confirm the order.",
                    now=now,
                    listing_id=listing_id,
                    bid_id=winner.bid_id,
                    bid_amount=winner.amount,
                )

            bid_feed.publish(FeedEvent(listing_id=listing_id, type="auction_ended"))
            logger.info(
                "auction_closed",
                listing_id=listing_id,
                winner_id=winner.bidder_id if winner else None,
                amount=winner.amount if winner else None,
            )
            closed.append({
                "listing_id": listing_id,
                "winner_id": winner.bidder_id if winner else None,
                "winning_amount": winner.amount if winner else None,
            })
        return closed

# gofresh/services/bid_service.py

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from gofresh.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    BidRejectedError,
    MarketplaceError,
    rejection_error,
)
from gofresh.models.auth_models import Identity
from gofresh.models.marketplace.notification_models import NotificationType
from gofresh.mongo import get_db, iso
from gofresh.services.auction_rules import (
    AuctionWindow,
    bid_status,
    format_amount,
    time_left,
    validate_bid,
)
from gofresh.services.bid_feed import FeedEvent, bid_feed
from gofresh.services.listing_service import HIGHEST_BID_SORT, ListingService
from gofresh.services.notification_service import NotificationService

logger = structlog.stdlib.get_logger()


def _bid_row(d: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(d["_id"]),
        "listing_id": d.get("listing_id"),
        "bidder_id": d.get("bidder_id"),
        "bidder_name": d.get("bidder_name", ""),
        "amount": d.get("amount"),
        "created_at": iso(d.get("created_at")),
    }


class BidService:

    # =========================
    # PLACE BID
    # =========================
    @staticmethod
    def place_bid(identity: Optional[Identity], listing_id: str, amount: int, now: datetime) -> Dict[str, Any]:
        """
        Validate and record one bid.

        Acceptance is a single conditional write on the listing (bid_floor < amount),
        so two bids validated against the same snapshot cannot both win.
        """
        listing = ListingService.load_listing(listing_id)
        if not listing.get("available", True):
            raise BidRejectedError("This listing is no longer available")

        window = ListingService.window_of(listing, now)
        top = ListingService.top_bid(listing_id)
        current_highest = top["amount"] if top else None

        decision = validate_bid(amount, int(listing["price"]), current_highest, window, identity)
        if not decision.accepted:
            logger.info("bid_rejected", listing_id=listing_id, amount=amount, reason=decision.reason)
            raise rejection_error(decision.code, decision.reason)

        db = get_db()
        bid_id = ObjectId()
        bid_doc = {
            "_id": bid_id,
            "listing_id": listing_id,
            "bidder_id": identity.userId,
            "bidder_name": identity.name,
            "amount": amount,
            "created_at": now,
        }
        try:
            claimed = db.listings.find_one_and_update(
                {"_id": listing["_id"], "available": True, "bid_floor": {"$lt": amount}},
                {
                    "$set": {
                        "bid_floor": amount,
                        "highest_bid": {
                            "bid_id": str(bid_id),
                            "bidder_id": identity.userId,
                            "bidder_name": identity.name,
                            "amount": amount,
                            "created_at": now,
                        },
                    },
                    "$inc": {"bid_count": 1},
                },
                return_document=ReturnDocument.BEFORE,
            )
        except PyMongoError:
            logger.exception("bid_claim_failed", listing_id=listing_id)
            raise BackendUnavailableError("Failed to place bid, please try again")

        if claimed is None:
            # another bid or a sale got in between our read and our write
            if not ListingService.load_listing(listing_id).get("available", True):
                logger.info("bid_lost_to_sale", listing_id=listing_id, amount=amount)
                raise BidRejectedError("This listing is no longer available")
            fresh = ListingService.top_bid(listing_id)
            highest = fresh["amount"] if fresh else int(listing["price"])
            logger.info("bid_lost_race", listing_id=listing_id, amount=amount, highest=highest)
            raise BidRejectedError(f"Bid must exceed current highest bid of {format_amount(highest)}")

        previous = {"bid_floor": claimed.get("bid_floor"), "highest_bid": claimed.get("highest_bid")}

        try:
            db.bids.insert_one(bid_doc)
        except PyMongoError:
            logger.exception("bid_insert_failed", listing_id=listing_id, bid_id=str(bid_id))
            # restore the floor only if no later bid has claimed it since
            restored = db.listings.update_one(
                {"_id": listing["_id"], "highest_bid.bid_id": str(bid_id)},
                {"$set": previous, "$inc": {"bid_count": -1}},
            )
            if restored.matched_count == 0:
                db.listings.update_one({"_id": listing["_id"]}, {"$inc": {"bid_count": -1}})
            raise BackendUnavailableError("Failed to place bid, please try again")

        logger.info("bid_placed", listing_id=listing_id, bid_id=str(bid_id), amount=amount, bidder_id=identity.userId)

        NotificationService.notify(
            listing["farmer_id"],
            NotificationType.NEW_BID,
            title="New bid received",
            message=f"{identity.name or 'A buyer'} bid {format_amount(amount)} on {listing.get('name', 'your listing')}",
            now=now,
            listing_id=listing_id,
            bid_id=str(bid_id),
            bidder_id=identity.userId,
            bidder_name=identity.name,
            bid_amount=amount,
        )
        bid_feed.publish(FeedEvent(listing_id=listing_id, type="bid_placed", payload={"bid_id": str(bid_id), "amount": amount}))

        return _bid_row(bid_doc)

    # =========================
    # READS
    # =========================
    @staticmethod
    def get_listing_bids(listing_id: str) -> List[Dict[str, Any]]:
        ListingService.load_listing(listing_id)
        docs = get_db().bids.find({"listing_id": listing_id}).sort(HIGHEST_BID_SORT)
        return [_bid_row(d) for d in docs]

    @staticmethod
    def get_highest_bid(listing_id: str) -> int:
        """Highest bid amount, or the listing's base price when nobody has bid yet."""
        listing = ListingService.load_listing(listing_id)
        top = ListingService.top_bid(listing_id)
        return int(top["amount"]) if top else int(listing["price"])

    @staticmethod
    def get_bids_for_farmer_listing(identity: Identity, listing_id: str) -> List[Dict[str, Any]]:
        listing = ListingService.load_listing(listing_id)
        if listing.get("farmer_id") != identity.userId:
            raise AccessDeniedError("Cannot access the listing")
        return BidService.get_listing_bids(listing_id)

    @staticmethod
    def get_user_bids(identity: Identity, now: datetime, tab: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        A buyer's bids, newest first, each with the listing's current standing:
          winning / outbid while the auction runs, won / lost once it has ended.
        tab: "active" keeps running auctions, "completed" keeps ended ones.
        """
        db = get_db()
        docs = list(db.bids.find({"bidder_id": identity.userId}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]))

        listings: Dict[str, Optional[Dict[str, Any]]] = {}
        tops: Dict[str, Optional[Dict[str, Any]]] = {}

        rows = []
        for d in docs:
            lid = d.get("listing_id")
            if lid not in listings:
                try:
                    listings[lid] = ListingService.load_listing(lid)
                except MarketplaceError:
                    listings[lid] = None
                tops[lid] = ListingService.top_bid(lid)

            listing = listings[lid]
            if listing is None:
                continue

            window = ListingService.window_of(listing, now)
            ended = window is AuctionWindow.ENDED
            if tab == "active" and ended:
                continue
            if tab == "completed" and not ended:
                continue

            top = tops[lid]
            status = bid_status(identity.userId, top["bidder_id"] if top else None, window)
            row = _bid_row(d)
            row.update({
                "status": status.value,
                "listing_name": listing.get("name", ""),
                "auction_state": window.value,
                "time_left": time_left(listing.get("bid_end"), now),
                "highest_bid": top["amount"] if top else None,
                "available": bool(listing.get("available", True)),
            })
            rows.append(row)
        return rows

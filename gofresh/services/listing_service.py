# gofresh/services/listing_service.py

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from gofresh.errors import AccessDeniedError, NotFoundError, ValidationError
from gofresh.models.auth_models import Identity, Role
from gofresh.models.marketplace.listing_models import ListingCreateModel, ListingUpdateModel
from gofresh.mongo import as_utc, get_db, iso, to_object_id
from gofresh.services.auction_rules import AuctionWindow, evaluate_window, time_left

logger = structlog.stdlib.get_logger()

# Ranking used for every "highest bid" read: amount desc, earliest first, then id.
HIGHEST_BID_SORT = [("amount", DESCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]


def _require_farmer(identity: Identity) -> str:
    """Ensure role is farmer; return userId."""
    if identity.role is not Role.FARMER:
        raise AccessDeniedError("Only farmers can manage listings")
    return identity.userId


class ListingService:

    # =========================
    # SHARED READS
    # =========================
    @staticmethod
    def load_listing(listing_id: str) -> Dict[str, Any]:
        oid = to_object_id(listing_id, "listing")
        doc = get_db().listings.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("Listing not found")
        return doc

    @staticmethod
    def top_bid(listing_id: str) -> Optional[Dict[str, Any]]:
        """Highest bid recomputed from the bids collection; None when there are no bids."""
        docs = list(get_db().bids.find({"listing_id": listing_id}).sort(HIGHEST_BID_SORT).limit(1))
        return docs[0] if docs else None

    @staticmethod
    def window_of(doc: Dict[str, Any], now: datetime) -> AuctionWindow:
        return evaluate_window(doc.get("bid_start"), doc.get("bid_end"), now)

    @staticmethod
    def serialize(doc: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        listing_id = str(doc["_id"])
        top = ListingService.top_bid(listing_id)
        bids_count = get_db().bids.count_documents({"listing_id": listing_id})

        return {
            "id": listing_id,
            "farmer_id": doc.get("farmer_id"),
            "farmer_name": doc.get("farmer_name", ""),
            "name": doc.get("name", ""),
            "category": doc.get("category", ""),
            "description": doc.get("description"),
            "quantity": doc.get("quantity"),
            "unit": doc.get("unit", "kg"),
            "price": doc.get("price"),
            "bid_start": iso(doc.get("bid_start")),
            "bid_end": iso(doc.get("bid_end")),
            "location": doc.get("location"),
            "harvest_date": doc.get("harvest_date"),
            "minimum_order": doc.get("minimum_order"),
            "available": bool(doc.get("available", True)),
            "auction_state": ListingService.window_of(doc, now).value,
            "time_left": time_left(doc.get("bid_end"), now),
            "highest_bid": top["amount"] if top else None,
            "highest_bidder_id": top["bidder_id"] if top else None,
            "highest_bidder_name": top.get("bidder_name") if top else None,
            "current_bid": top["amount"] if top else doc.get("price"),
            "bids_count": bids_count,
            "created_at": iso(doc.get("created_at")),
            "updated_at": iso(doc.get("updated_at")),
        }

    # =========================
    # WRITE
    # =========================
    @staticmethod
    def create_listing(identity: Identity, data: ListingCreateModel, now: datetime) -> Dict[str, Any]:
        farmer_id = _require_farmer(identity)

        doc = {
            "farmer_id": farmer_id,
            "farmer_name": identity.name,

            "name": data.name.strip(),
            "category": data.category.strip().lower(),
            "description": data.description,

            "quantity": data.quantity,
            "unit": data.unit or "kg",
            "price": data.price,

            "bid_start": as_utc(data.bid_start),
            "bid_end": as_utc(data.bid_end),

            "location": data.location,
            "harvest_date": data.harvest_date,
            "minimum_order": data.minimum_order,

            "available": True,

            # a new bid must strictly exceed bid_floor; raised atomically on every accepted bid
            "bid_floor": data.price,
            "bid_count": 0,
            "highest_bid": None,
            "ended_notified": False,

            "created_at": now,
            "updated_at": now,
        }

        inserted = get_db().listings.insert_one(doc)
        doc["_id"] = inserted.inserted_id
        logger.info("listing_created", listing_id=str(inserted.inserted_id), farmer_id=farmer_id)
        return ListingService.serialize(doc, now)

    @staticmethod
    def update_listing(identity: Identity, listing_id: str, data: ListingUpdateModel, now: datetime) -> Dict[str, Any]:
        farmer_id = _require_farmer(identity)
        current = ListingService.load_listing(listing_id)
        if current.get("farmer_id") != farmer_id:
            raise AccessDeniedError("Cannot access the listing")

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return ListingService.serialize(current, now)

        for key in ("bid_start", "bid_end"):
            if key in changes:
                changes[key] = as_utc(changes[key])
        if "category" in changes and changes["category"]:
            changes["category"] = changes["category"].strip().lower()

        start = changes.get("bid_start", as_utc(current.get("bid_start")))
        end = changes.get("bid_end", as_utc(current.get("bid_end")))
        if start and end and end <= start:
            raise ValidationError("bid_end must be after bid_start")

        if "price" in changes:
            changes["bid_floor"] = changes["price"]
        if "bid_start" in changes or "bid_end" in changes:
            # a moved window is a new auction; the close sweep must see it again
            changes["ended_notified"] = False
        changes["updated_at"] = now

        # editable only while nobody has bid on it
        updated = get_db().listings.find_one_and_update(
            {"_id": current["_id"], "farmer_id": farmer_id, "bid_count": 0},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ValidationError("Cannot edit a listing that already has bids")

        logger.info("listing_updated", listing_id=listing_id, fields=sorted(changes))
        return ListingService.serialize(updated, now)

    @staticmethod
    def delete_listing(identity: Identity, listing_id: str) -> None:
        farmer_id = _require_farmer(identity)
        current = ListingService.load_listing(listing_id)
        if current.get("farmer_id") != farmer_id:
            raise AccessDeniedError("Cannot access the listing")

        res = get_db().listings.delete_one({"_id": current["_id"], "farmer_id": farmer_id, "bid_count": 0})
        if res.deleted_count == 0:
            raise ValidationError("Cannot delete a listing that already has bids")
        logger.info("listing_deleted", listing_id=listing_id, farmer_id=farmer_id)

    # =========================
    # READ
    # =========================
    @staticmethod
    def get_listing(listing_id: str, now: datetime) -> Dict[str, Any]:
        return ListingService.serialize(ListingService.load_listing(listing_id), now)

    @staticmethod
    def browse_listings(
        now: datetime,
        category: Optional[str] = None,
        q: Optional[str] = None,
        open_only: bool = False,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"available": True}
        if category:
            query["category"] = category.strip().lower()
        if q and q.strip():
            query["name"] = {"$regex": re.escape(q.strip()), "$options": "i"}

        docs = get_db().listings.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])

        rows = []
        for d in docs:
            if open_only and ListingService.window_of(d, now) is not AuctionWindow.ACTIVE:
                continue
            rows.append(ListingService.serialize(d, now))
            if len(rows) >= limit:
                break
        return rows

    @staticmethod
    def get_farmer_listings(identity: Identity, now: datetime) -> List[Dict[str, Any]]:
        farmer_id = _require_farmer(identity)
        docs = get_db().listings.find({"farmer_id": farmer_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [ListingService.serialize(d, now) for d in docs]

    @staticmethod
    def get_farmer_dashboard(identity: Identity, now: datetime) -> Dict[str, Any]:
        farmer_id = _require_farmer(identity)
        db = get_db()

        listings = list(db.listings.find({"farmer_id": farmer_id}, {"_id": 1, "bid_start": 1, "bid_end": 1, "available": 1}))
        listing_ids = [str(d["_id"]) for d in listings]

        active_auctions = sum(
            1 for d in listings
            if d.get("available", True) and ListingService.window_of(d, now) is AuctionWindow.ACTIVE
        )
        total_bids = db.bids.count_documents({"listing_id": {"$in": listing_ids}}) if listing_ids else 0

        total_revenue = 0
        pending_payments = 0
        for s in db.sales.find({"farmer_id": farmer_id}, {"amount": 1, "payment_status": 1}):
            if s.get("payment_status") == "completed":
                total_revenue += int(s.get("amount") or 0)
            elif s.get("payment_status") == "pending":
                pending_payments += 1

        return {
            "total_listings": len(listings),
            "active_auctions": active_auctions,
            "sold_listings": sum(1 for d in listings if not d.get("available", True)),
            "total_bids": total_bids,
            "total_revenue": total_revenue,
            "pending_payments": pending_payments,
        }

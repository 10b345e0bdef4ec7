# gofresh/services/payment_service.py

import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from gofresh.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    NotFoundError,
    PaymentRejectedError,
    ValidationError,
    rejection_error,
)
from gofresh.models.auth_models import Identity, Role
from gofresh.models.marketplace.notification_models import NotificationType
from gofresh.models.marketplace.sale_models import (
    DeliveryAddress,
    PaymentMethod,
    PaymentStatus,
    VerifyPaymentModel,
)
from gofresh.mongo import get_db, iso, to_object_id
from gofresh.services.auction_rules import Winner, check_payment_gate, format_amount, resolve_winner
from gofresh.services.bid_feed import FeedEvent, bid_feed
from gofresh.services.listing_service import ListingService
from gofresh.services.notification_service import NotificationService
from gofresh.services.razorpay_client import RazorpayClient

logger = structlog.stdlib.get_logger()

ALREADY_SOLD = "This listing has already been sold"


def _sale_row(d: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(d["_id"]),
        "receipt_no": d.get("receipt_no"),
        "listing_id": d.get("listing_id"),
        "listing_name": d.get("listing_name", ""),
        "bid_id": d.get("bid_id"),
        "buyer_id": d.get("buyer_id"),
        "buyer_name": d.get("buyer_name", ""),
        "farmer_id": d.get("farmer_id"),
        "amount": d.get("amount"),
        "payment_method": d.get("payment_method"),
        "payment_status": d.get("payment_status"),
        "transaction_id": d.get("transaction_id"),
        "delivery_address": d.get("delivery_address"),
        "created_at": iso(d.get("created_at")),
        "payment_date": iso(d.get("payment_date")),
    }


class PaymentService:

    # =========================
    # ID GENERATORS
    # =========================
    @staticmethod
    def generate_receipt_no(now: datetime) -> str:
        # RCPT-YYYYMMDD-XXXXX
        return f"RCPT-{now.strftime('%Y%m%d')}-{random.randint(10000, 99999)}"

    # =========================
    # PAYMENT GATE
    # =========================
    @staticmethod
    def _existing_sale(listing_id: str) -> Optional[Dict[str, Any]]:
        return get_db().sales.find_one({"listing_id": listing_id, "payment_status": {"$ne": PaymentStatus.FAILED.value}})

    @staticmethod
    def check_gate(identity: Optional[Identity], listing_id: str, now: datetime) -> Tuple[Dict[str, Any], Winner]:
        """
        The requester may pay only if the auction has ended, they hold the top bid,
        and no sale exists yet for the listing.
        """
        listing = ListingService.load_listing(listing_id)
        window = ListingService.window_of(listing, now)
        bids = list(get_db().bids.find({"listing_id": listing_id}))
        winner = resolve_winner(bids, window)
        already_sold = PaymentService._existing_sale(listing_id) is not None or not listing.get("available", True)

        decision = check_payment_gate(identity, window, winner, already_sold)
        if not decision.accepted:
            logger.info("payment_rejected", listing_id=listing_id, reason=decision.reason)
            raise rejection_error(decision.code, decision.reason, PaymentRejectedError)
        return listing, winner

    # =========================
    # CHECKOUT
    # =========================
    @staticmethod
    def start_checkout(
        identity: Optional[Identity],
        listing_id: str,
        method: PaymentMethod,
        address: DeliveryAddress,
        now: datetime,
        razorpay: RazorpayClient,
        currency: str = "INR",
    ) -> Dict[str, Any]:
        """
        Cash on delivery records the sale right away as pending.
        Card and UPI go through a provider order that the buyer completes client-side,
        followed by verify_payment.
        """
        listing, winner = PaymentService.check_gate(identity, listing_id, now)

        if method is PaymentMethod.COD:
            sale = PaymentService._record_sale(
                listing, winner, identity, method, PaymentStatus.PENDING, address, now,
            )
            return {"ok": True, "payment_method": method.value, "sale": sale}

        order = razorpay.create_order(
            winner.amount,
            currency,
            receipt=f"listing-{listing_id}",
            notes={"listing_id": listing_id, "buyer_id": identity.userId},
        )
        get_db().payment_orders.update_one(
            {"order_id": order["id"]},
            {"$set": {
                "listing_id": listing_id,
                "buyer_id": identity.userId,
                "bid_id": winner.bid_id,
                "amount": winner.amount,
                "payment_method": method.value,
                "created_at": now,
            }},
            upsert=True,
        )
        return {
            "ok": True,
            "payment_method": method.value,
            "order_id": order["id"],
            "amount": winner.amount,
            "currency": currency,
            "key_id": razorpay.key_id,
            "listing_name": listing.get("name", ""),
        }

    @staticmethod
    def verify_payment(
        identity: Optional[Identity],
        listing_id: str,
        body: VerifyPaymentModel,
        now: datetime,
        razorpay: RazorpayClient,
    ) -> Dict[str, Any]:
        listing, winner = PaymentService.check_gate(identity, listing_id, now)

        order = get_db().payment_orders.find_one({
            "order_id": body.order_id,
            "listing_id": listing_id,
            "buyer_id": identity.userId,
        })
        if not order:
            raise PaymentRejectedError("Unknown payment order for this listing")

        if not razorpay.verify_signature(body.order_id, body.payment_id, body.signature):
            logger.warning("payment_signature_invalid", listing_id=listing_id, order_id=body.order_id)
            PaymentService._store_failure(listing, winner, identity, body.payment_method, now, "signature mismatch", body.order_id)
            raise PaymentRejectedError("Payment verification failed")

        sale = PaymentService._record_sale(
            listing, winner, identity, body.payment_method, PaymentStatus.COMPLETED, body.delivery_address, now,
            transaction_id=body.payment_id, provider_order_id=body.order_id,
        )
        return {"ok": True, "sale": sale}

    @staticmethod
    def record_payment_failure(
        identity: Optional[Identity],
        listing_id: str,
        method: PaymentMethod,
        now: datetime,
        reason: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """A failed attempt is remembered but leaves the listing purchasable."""
        listing, winner = PaymentService.check_gate(identity, listing_id, now)
        sale = PaymentService._store_failure(listing, winner, identity, method, now, reason, order_id)
        return {"ok": True, "sale": sale}

    # =========================
    # SALE WRITES
    # =========================
    @staticmethod
    def _sale_doc(
        listing: Dict[str, Any],
        winner: Winner,
        identity: Identity,
        method: PaymentMethod,
        status: PaymentStatus,
        address: Optional[DeliveryAddress],
        now: datetime,
        transaction_id: Optional[str] = None,
        provider_order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "listing_id": str(listing["_id"]),
            "listing_name": listing.get("name", ""),
            "quantity": listing.get("quantity"),
            "unit": listing.get("unit", "kg"),
            "bid_id": winner.bid_id,
            "buyer_id": identity.userId,
            "buyer_name": identity.name,
            "farmer_id": listing.get("farmer_id"),
            "farmer_name": listing.get("farmer_name", ""),
            "amount": winner.amount,
            "payment_method": method.value,
            "payment_status": status.value,
            "delivery_address": address.model_dump() if address else None,
            "transaction_id": transaction_id,
            "provider_order_id": provider_order_id,
            "receipt_no": PaymentService.generate_receipt_no(now),
            "created_at": now,
            "payment_date": now if status is PaymentStatus.COMPLETED else None,
        }

    @staticmethod
    def _record_sale(
        listing: Dict[str, Any],
        winner: Winner,
        identity: Identity,
        method: PaymentMethod,
        status: PaymentStatus,
        address: Optional[DeliveryAddress],
        now: datetime,
        transaction_id: Optional[str] = None,
        provider_order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert-if-absent on sales.listing_id (unique index). A previous failed
        attempt is replaced atomically; anything else means the listing is sold.
        """
        db = get_db()
        listing_id = str(listing["_id"])
        doc = PaymentService._sale_doc(listing, winner, identity, method, status, address, now, transaction_id, provider_order_id)

        try:
            saved = db.sales.find_one_and_update(
                {"listing_id": listing_id, "payment_status": PaymentStatus.FAILED.value},
                {"$set": doc, "$unset": {"failure_reason": ""}},
                return_document=ReturnDocument.AFTER,
            )
            if saved is None:
                inserted = db.sales.insert_one(doc)
                saved = {**doc, "_id": inserted.inserted_id}
        except DuplicateKeyError:
            logger.info("sale_already_exists", listing_id=listing_id, buyer_id=identity.userId)
            raise PaymentRejectedError(ALREADY_SOLD)
        except PyMongoError:
            logger.exception("sale_insert_failed", listing_id=listing_id)
            raise BackendUnavailableError("Failed to record payment, please try again")

        db.listings.update_one({"_id": listing["_id"]}, {"$set": {"available": False, "updated_at": now}})
        logger.info("sale_recorded", listing_id=listing_id, sale_id=str(saved["_id"]), status=status.value, method=method.value)

        NotificationService.notify(
            listing["farmer_id"],
            NotificationType.PAYMENT_RECEIVED,
            title="Payment received" if status is PaymentStatus.COMPLETED else "Cash on delivery order",
            message=(
                f"{identity.name or 'The buyer'} paid {format_amount(winner.amount)} for {listing.get('name', 'your listing')}"
                if status is PaymentStatus.COMPLETED
                else f"{identity.name or 'The buyer'} will pay {format_amount(winner.amount)} on delivery for {listing.get('name', 'your listing')}"
            ),
            now=now,
            listing_id=listing_id,
            bid_id=winner.bid_id,
            bidder_id=identity.userId,
            bidder_name=identity.name,
            bid_amount=winner.amount,
        )
        bid_feed.publish(FeedEvent(listing_id=listing_id, type="sold", payload={"sale_id": str(saved["_id"])}))
        return _sale_row(saved)

    @staticmethod
    def _store_failure(
        listing: Dict[str, Any],
        winner: Winner,
        identity: Identity,
        method: PaymentMethod,
        now: datetime,
        reason: Optional[str],
        order_id: Optional[str],
    ) -> Dict[str, Any]:
        db = get_db()
        listing_id = str(listing["_id"])
        doc = PaymentService._sale_doc(listing, winner, identity, method, PaymentStatus.FAILED, None, now, None, order_id)
        doc["failure_reason"] = reason or ""

        try:
            saved = db.sales.find_one_and_update(
                {"listing_id": listing_id, "payment_status": PaymentStatus.FAILED.value},
                {"$set": doc},
                return_document=ReturnDocument.AFTER,
            )
            if saved is None:
                inserted = db.sales.insert_one(doc)
                saved = {**doc, "_id": inserted.inserted_id}
        except DuplicateKeyError:
            raise PaymentRejectedError(ALREADY_SOLD)

        logger.info("payment_failure_recorded", listing_id=listing_id, reason=reason)
        return _sale_row(saved)

    @staticmethod
    def confirm_cod_payment(identity: Identity, sale_id: str, now: datetime) -> Dict[str, Any]:
        if identity.role is not Role.FARMER:
            raise AccessDeniedError("Only farmers can confirm cash payments")

        oid = to_object_id(sale_id, "sale")
        updated = get_db().sales.find_one_and_update(
            {
                "_id": oid,
                "farmer_id": identity.userId,
                "payment_method": PaymentMethod.COD.value,
                "payment_status": PaymentStatus.PENDING.value,
            },
            {"$set": {"payment_status": PaymentStatus.COMPLETED.value, "payment_date": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ValidationError("No pending cash on delivery sale to confirm")
        logger.info("cod_payment_confirmed", sale_id=sale_id, farmer_id=identity.userId)
        return _sale_row(updated)

    # =========================
    # READS
    # =========================
    @staticmethod
    def get_buyer_orders(identity: Identity) -> List[Dict[str, Any]]:
        docs = get_db().sales.find({"buyer_id": identity.userId}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [_sale_row(d) for d in docs]

    @staticmethod
    def get_farmer_sales(identity: Identity) -> List[Dict[str, Any]]:
        if identity.role is not Role.FARMER:
            raise AccessDeniedError("Only farmers can view sales")
        docs = get_db().sales.find({"farmer_id": identity.userId}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [_sale_row(d) for d in docs]

    @staticmethod
    def get_receipt(identity: Identity, sale_id: str) -> Dict[str, Any]:
        """Structured receipt for the buyer or the farmer of a sale."""
        oid = to_object_id(sale_id, "sale")
        sale = get_db().sales.find_one({"_id": oid})
        if not sale:
            raise NotFoundError("Sale not found")
        if identity.userId not in (sale.get("buyer_id"), sale.get("farmer_id")):
            raise AccessDeniedError("Cannot access this receipt")
        if sale.get("payment_status") == PaymentStatus.FAILED.value:
            raise ValidationError("No receipt for a failed payment")

        return {
            "receipt_no": sale.get("receipt_no"),
            "sale_id": str(sale["_id"]),
            "issued_at": iso(sale.get("payment_date") or sale.get("created_at")),
            "listing": {
                "id": sale.get("listing_id"),
                "name": sale.get("listing_name", ""),
                "quantity": sale.get("quantity"),
                "unit": sale.get("unit", "kg"),
            },
            "buyer": {"id": sale.get("buyer_id"), "name": sale.get("buyer_name", "")},
            "farmer": {"id": sale.get("farmer_id"), "name": sale.get("farmer_name", "")},
            "amount": sale.get("amount"),
            "amount_label": format_amount(sale.get("amount") or 0),
            "payment_method": sale.get("payment_method"),
            "payment_status": sale.get("payment_status"),
            "transaction_id": sale.get("transaction_id"),
            "delivery_address": sale.get("delivery_address"),
        }

# gofresh/fastapi/buyer_api.py
# FastAPI router for the buyer side: bidding, checkout, orders.

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from gofresh.app_config import AppConfig
from gofresh.fastapi.deps import get_config, get_now, get_razorpay
from gofresh.fastapi.security import optional_identity, require_buyer
from gofresh.models.auth_models import Identity
from gofresh.models.marketplace.bid_models import PlaceBidModel
from gofresh.models.marketplace.sale_models import CheckoutModel, PaymentFailedModel, VerifyPaymentModel
from gofresh.services.bid_service import BidService
from gofresh.services.payment_service import PaymentService
from gofresh.services.razorpay_client import RazorpayClient

router = APIRouter(prefix="/api/v1/buyer", tags=["buyer"])


# ========= bids =========
@router.post("/listings/{listing_id}/bids", status_code=201)
def place_bid(
    listing_id: str,
    body: PlaceBidModel,
    identity: Optional[Identity] = Depends(optional_identity),
    now: datetime = Depends(get_now),
):
    # anonymous callers still go through the validator so rule order decides the message
    bid = BidService.place_bid(identity, listing_id, body.amount, now)
    return {"ok": True, "message": "Your bid has been placed successfully!", "bid": bid}


@router.get("/bids")
def my_bids(
    tab: Optional[Literal["active", "completed"]] = Query(None),
    identity: Identity = Depends(require_buyer),
    now: datetime = Depends(get_now),
):
    rows = BidService.get_user_bids(identity, now, tab=tab)
    return {"ok": True, "count": len(rows), "bids": rows}


# ========= checkout / payment =========
@router.post("/listings/{listing_id}/checkout")
def checkout(
    listing_id: str,
    body: CheckoutModel,
    identity: Optional[Identity] = Depends(optional_identity),
    now: datetime = Depends(get_now),
    razorpay: RazorpayClient = Depends(get_razorpay),
    config: AppConfig = Depends(get_config),
):
    return PaymentService.start_checkout(
        identity, listing_id, body.payment_method, body.delivery_address, now, razorpay, currency=config.currency,
    )


@router.post("/listings/{listing_id}/payment/verify")
def verify_payment(
    listing_id: str,
    body: VerifyPaymentModel,
    identity: Optional[Identity] = Depends(optional_identity),
    now: datetime = Depends(get_now),
    razorpay: RazorpayClient = Depends(get_razorpay),
):
    return PaymentService.verify_payment(identity, listing_id, body, now, razorpay)


@router.post("/listings/{listing_id}/payment/failed")
def payment_failed(
    listing_id: str,
    body: PaymentFailedModel,
    identity: Optional[Identity] = Depends(optional_identity),
    now: datetime = Depends(get_now),
):
    return PaymentService.record_payment_failure(
        identity, listing_id, body.payment_method, now, reason=body.reason, order_id=body.order_id,
    )


# ========= orders =========
@router.get("/orders")
def my_orders(identity: Identity = Depends(require_buyer)):
    rows = PaymentService.get_buyer_orders(identity)
    return {"ok": True, "count": len(rows), "orders": rows}


@router.get("/orders/{sale_id}/receipt")
def order_receipt(sale_id: str, identity: Identity = Depends(require_buyer)):
    return {"ok": True, "receipt": PaymentService.get_receipt(identity, sale_id)}

# gofresh/fastapi/farmer_api.py
# FastAPI router for the farmer side: listings, bids received, sales.

from datetime import datetime

from fastapi import APIRouter, Depends

from gofresh.fastapi.deps import get_now
from gofresh.fastapi.security import require_farmer
from gofresh.models.auth_models import Identity
from gofresh.models.marketplace.listing_models import ListingCreateModel, ListingUpdateModel
from gofresh.services.bid_service import BidService
from gofresh.services.listing_service import ListingService
from gofresh.services.payment_service import PaymentService

router = APIRouter(prefix="/api/v1/farmer", tags=["farmer"])


# ========= listings =========
@router.get("/listings")
def my_listings(identity: Identity = Depends(require_farmer), now: datetime = Depends(get_now)):
    rows = ListingService.get_farmer_listings(identity, now)
    return {"ok": True, "count": len(rows), "listings": rows}


@router.post("/listings", status_code=201)
def create_listing(
    body: ListingCreateModel,
    identity: Identity = Depends(require_farmer),
    now: datetime = Depends(get_now),
):
    return {"ok": True, "listing": ListingService.create_listing(identity, body, now)}


@router.patch("/listings/{listing_id}")
def update_listing(
    listing_id: str,
    body: ListingUpdateModel,
    identity: Identity = Depends(require_farmer),
    now: datetime = Depends(get_now),
):
    return {"ok": True, "listing": ListingService.update_listing(identity, listing_id, body, now)}


@router.delete("/listings/{listing_id}")
def delete_listing(listing_id: str, identity: Identity = Depends(require_farmer)):
    ListingService.delete_listing(identity, listing_id)
    return {"ok": True}


@router.get("/listings/{listing_id}/bids")
def listing_bids(listing_id: str, identity: Identity = Depends(require_farmer)):
    bids = BidService.get_bids_for_farmer_listing(identity, listing_id)
    return {"ok": True, "count": len(bids), "bids": bids}


# ========= sales =========
@router.get("/sales")
def my_sales(identity: Identity = Depends(require_farmer)):
    rows = PaymentService.get_farmer_sales(identity)
    return {"ok": True, "count": len(rows), "sales": rows}


@router.post("/sales/{sale_id}/confirm-cod")
def confirm_cod(sale_id: str, identity: Identity = Depends(require_farmer), now: datetime = Depends(get_now)):
    return {"ok": True, "sale": PaymentService.confirm_cod_payment(identity, sale_id, now)}


@router.get("/sales/{sale_id}/receipt")
def sale_receipt(sale_id: str, identity: Identity = Depends(require_farmer)):
    return {"ok": True, "receipt": PaymentService.get_receipt(identity, sale_id)}


# ========= dashboard =========
@router.get("/dashboard")
def dashboard(identity: Identity = Depends(require_farmer), now: datetime = Depends(get_now)):
    return {"ok": True, "summary": ListingService.get_farmer_dashboard(identity, now)}

# tests/test_auction_service.py

from datetime import timedelta

from gofresh.models.marketplace.listing_models import ListingUpdateModel
from gofresh.services.auction_service import AuctionService
from gofresh.services.bid_feed import bid_feed
from gofresh.services.bid_service import BidService
from gofresh.services.listing_service import ListingService
from gofresh.services.notification_service import NotificationService
from tests.conftest import T0

AFTER_END = T0 + timedelta(hours=1, seconds=1)


def test_sweep_notifies_farmer_and_winner_once(db, make_listing, farmer, buyer_a, buyer_b):
    lid = make_listing(price=40)["id"]
    BidService.place_bid(buyer_a, lid, 45, T0 + timedelta(minutes=10))
    BidService.place_bid(buyer_b, lid, 50, T0 + timedelta(minutes=30))

    seen = []
    token = bid_feed.subscribe(lid, seen.append)
    try:
        closed = AuctionService.close_ended_auctions(AFTER_END)
        again = AuctionService.close_ended_auctions(AFTER_END + timedelta(minutes=5))
    finally:
        bid_feed.unsubscribe(lid, token)

    assert closed == [{"listing_id": lid, "winner_id": buyer_b.userId, "winning_amount": 50}]
    assert again == []
    assert [e.type for e in seen] == ["auction_ended"]

    farmer_ended = [n for n in NotificationService.list_for_user(farmer.userId) if n["type"] == "auction_ended"]
    assert len(farmer_ended) == 1
    assert "₹50" in farmer_ended[0]["message"]

    winner_notes = NotificationService.list_for_user(buyer_b.userId)
    assert [n["title"] for n in winner_notes] == ["You won the auction"]
    assert NotificationService.list_for_user(buyer_a.userId) == []


def test_sweep_skips_running_and_unconfigured_auctions(db, make_listing):
    make_listing(name="Running", end=T0 + timedelta(hours=3))
    make_listing(name="Plain sale", start=None, end=None)
    assert AuctionService.close_ended_auctions(AFTER_END) == []


def test_auction_with_no_bids_closes_unsold(db, make_listing, farmer):
    lid = make_listing()["id"]

    closed = AuctionService.close_ended_auctions(AFTER_END)
    assert closed == [{"listing_id": lid, "winner_id": None, "winning_amount": None}]

    notes = NotificationService.list_for_user(farmer.userId)
    assert notes[0]["message"] == "The auction for Tomatoes ended with no bids"


def test_relisted_auction_is_closed_again(db, make_listing, farmer, buyer_a):
    lid = make_listing(price=40)["id"]
    assert len(AuctionService.close_ended_auctions(AFTER_END)) == 1

    new_end = T0 + timedelta(hours=3)
    ListingService.update_listing(farmer, lid, ListingUpdateModel(bid_end=new_end), AFTER_END)
    assert ListingService.load_listing(lid)["ended_notified"] is False

    BidService.place_bid(buyer_a, lid, 45, T0 + timedelta(hours=2))
    closed = AuctionService.close_ended_auctions(new_end + timedelta(seconds=1))
    assert closed == [{"listing_id": lid, "winner_id": buyer_a.userId, "winning_amount": 45}]

    assert [n["title"] for n in NotificationService.list_for_user(buyer_a.userId)] == ["You won the auction"]
    farmer_ended = [n for n in NotificationService.list_for_user(farmer.userId) if n["type"] == "auction_ended"]
    assert len(farmer_ended) == 2


def test_edit_without_window_change_keeps_closed_flag(db, make_listing, farmer):
    lid = make_listing()["id"]
    AuctionService.close_ended_auctions(AFTER_END)

    ListingService.update_listing(farmer, lid, ListingUpdateModel(price=35), AFTER_END)
    assert ListingService.load_listing(lid)["ended_notified"] is True
    assert AuctionService.close_ended_auctions(AFTER_END + timedelta(minutes=1)) == []

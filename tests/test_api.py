# tests/test_api.py

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from server import create_app
from tests.conftest import T0, sign

END = T0 + timedelta(hours=1)

ADDRESS = {"address_line1": "12 Market Road", "city": "Pune", "state": "MH", "postal_code": "411001"}


@pytest.fixture
def client(config, mongo_client, clock, razorpay):
    app = create_app(config=config, mongo_client=mongo_client, clock=clock, razorpay=razorpay)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def listing_id(client, farmer, auth_header):
    r = client.post(
        "/api/v1/farmer/listings",
        json={
            "name": "Tomatoes",
            "category": "vegetables",
            "quantity": 100,
            "price": 40,
            "bid_start": T0.isoformat(),
            "bid_end": END.isoformat(),
            "location": "Nashik",
        },
        headers=auth_header(farmer),
    )
    assert r.status_code == 201, r.text
    return r.json()["listing"]["id"]


# ========= auth =========
def test_register_login_refresh_me(client):
    r = client.post("/api/v1/auth/register", json={
        "name": "Asha", "email": "Asha@Buy.in", "password": "secret1", "role": "buyer",
    })
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "asha@buy.in"
    assert body["user"]["userId"].startswith("BUY")

    r = client.post("/api/v1/auth/register", json={
        "name": "Asha", "email": "asha@buy.in", "password": "secret1", "role": "buyer",
    })
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "User already exists"}

    assert client.post("/api/v1/auth/login", json={"email": "asha@buy.in", "password": "wrong!"}).status_code == 400
    assert client.post("/api/v1/auth/login", json={"email": "nobody@buy.in", "password": "secret1"}).status_code == 404

    r = client.post("/api/v1/auth/login", json={"email": "asha@buy.in", "password": "secret1", "role": "buyer"})
    assert r.status_code == 200
    tokens = r.json()

    r = client.get("/api/v1/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert r.json()["user"]["role"] == "buyer"

    r = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    assert r.json()["access_token"]

    # an access token cannot be used to refresh
    r = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert r.status_code == 401


def test_register_rejects_unknown_role(client):
    r = client.post("/api/v1/auth/register", json={
        "name": "Ops", "email": "ops@farm.in", "password": "secret1", "role": "admin",
    })
    assert r.status_code == 422


def test_health(client):
    assert client.get("/_health").json()["ok"] is True


def test_role_guards(client, buyer_a, farmer, auth_header):
    assert client.get("/api/v1/farmer/listings").status_code == 401
    r = client.get("/api/v1/farmer/listings", headers=auth_header(buyer_a))
    assert r.status_code == 403
    assert r.json() == {"ok": False, "error": "Only farmers can access this endpoint"}
    assert client.get("/api/v1/buyer/orders", headers=auth_header(farmer)).status_code == 403


# ========= bidding =========
def test_bidding_over_http(client, clock, listing_id, buyer_a, buyer_b, farmer, auth_header):
    url = f"/api/v1/buyer/listings/{listing_id}/bids"
    clock.advance(minutes=10)

    r = client.post(url, json={"amount": 45})
    assert r.status_code == 401
    assert r.json() == {"ok": False, "error": "Login required to place a bid"}

    r = client.post(url, json={"amount": 45}, headers=auth_header(farmer))
    assert r.status_code == 403
    assert r.json()["error"] == "Only buyers can place bids"

    r = client.post(url, json={"amount": 45}, headers=auth_header(buyer_a))
    assert r.status_code == 201
    assert r.json()["bid"]["amount"] == 45

    clock.advance(minutes=10)
    r = client.post(url, json={"amount": 44}, headers=auth_header(buyer_b))
    assert r.status_code == 409
    assert r.json()["error"] == "Bid must exceed current highest bid of ₹45"

    assert client.post(url, json={"amount": 0}, headers=auth_header(buyer_b)).status_code == 422

    clock.advance(minutes=10)
    assert client.post(url, json={"amount": 50}, headers=auth_header(buyer_b)).status_code == 201

    detail = client.get(f"/api/v1/marketplace/listings/{listing_id}").json()["listing"]
    assert detail["highest_bid"] == 50
    assert detail["highest_bidder_id"] == buyer_b.userId

    bids = client.get(f"/api/v1/marketplace/listings/{listing_id}/bids").json()
    assert [b["amount"] for b in bids["bids"]] == [50, 45]

    farmer_view = client.get(f"/api/v1/farmer/listings/{listing_id}/bids", headers=auth_header(farmer)).json()
    assert farmer_view["count"] == 2

    mine = client.get("/api/v1/buyer/bids", headers=auth_header(buyer_a)).json()["bids"]
    assert mine[0]["status"] == "outbid"

    clock.set(END + timedelta(seconds=1))
    r = client.post(url, json={"amount": 99}, headers=auth_header(buyer_a))
    assert r.status_code == 409
    assert r.json()["error"] == "Auction has already ended"

    mine = client.get("/api/v1/buyer/bids?tab=completed", headers=auth_header(buyer_b)).json()["bids"]
    assert [b["status"] for b in mine] == ["won"]


def test_unknown_listing_is_404(client):
    r = client.get("/api/v1/marketplace/listings/000000000000000000000000")
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "Listing not found"}


def test_browse(client, listing_id):
    r = client.get("/api/v1/marketplace/listings", params={"q": "tomato", "open_only": True})
    assert r.json()["count"] == 1
    assert r.json()["listings"][0]["id"] == listing_id


# ========= checkout =========
def _run_auction(client, clock, listing_id, buyer_a, buyer_b, auth_header):
    url = f"/api/v1/buyer/listings/{listing_id}/bids"
    clock.advance(minutes=10)
    client.post(url, json={"amount": 45}, headers=auth_header(buyer_a))
    clock.advance(minutes=20)
    client.post(url, json={"amount": 50}, headers=auth_header(buyer_b))
    clock.set(END + timedelta(seconds=1))


def test_cod_checkout_and_farmer_confirmation(client, clock, listing_id, buyer_a, buyer_b, farmer, auth_header):
    _run_auction(client, clock, listing_id, buyer_a, buyer_b, auth_header)
    checkout = f"/api/v1/buyer/listings/{listing_id}/checkout"
    body = {"payment_method": "cod", "delivery_address": ADDRESS}

    r = client.post(checkout, json=body, headers=auth_header(buyer_a))
    assert r.status_code == 409
    assert r.json()["error"] == "You are not the highest bidder"

    r = client.post(checkout, json=body, headers=auth_header(buyer_b))
    assert r.status_code == 200
    sale = r.json()["sale"]
    assert sale["payment_status"] == "pending"

    r = client.post(checkout, json=body, headers=auth_header(buyer_b))
    assert r.status_code == 409
    assert r.json()["error"] == "This listing has already been sold"

    r = client.post(f"/api/v1/farmer/sales/{sale['id']}/confirm-cod", headers=auth_header(farmer))
    assert r.json()["sale"]["payment_status"] == "completed"

    orders = client.get("/api/v1/buyer/orders", headers=auth_header(buyer_b)).json()
    assert orders["count"] == 1

    receipt = client.get(f"/api/v1/buyer/orders/{sale['id']}/receipt", headers=auth_header(buyer_b)).json()["receipt"]
    assert receipt["amount_label"] == "₹50"
    assert client.get(f"/api/v1/farmer/sales/{sale['id']}/receipt", headers=auth_header(farmer)).status_code == 200

    summary = client.get("/api/v1/farmer/dashboard", headers=auth_header(farmer)).json()["summary"]
    assert summary["total_revenue"] == 50
    assert client.get("/api/v1/farmer/sales", headers=auth_header(farmer)).json()["count"] == 1


def test_card_checkout_and_verify(client, clock, listing_id, buyer_a, buyer_b, auth_header, razorpay_session):
    _run_auction(client, clock, listing_id, buyer_a, buyer_b, auth_header)

    r = client.post(
        f"/api/v1/buyer/listings/{listing_id}/checkout",
        json={"payment_method": "card", "delivery_address": ADDRESS},
        headers=auth_header(buyer_b),
    )
    assert r.status_code == 200
    order = r.json()
    assert order["order_id"] == "order_TEST123"
    assert razorpay_session.calls[0]["json"]["amount"] == 5000

    verify = f"/api/v1/buyer/listings/{listing_id}/payment/verify"
    body = {"order_id": order["order_id"], "payment_id": "pay_9", "signature": "nope", "delivery_address": ADDRESS}
    r = client.post(verify, json=body, headers=auth_header(buyer_b))
    assert r.status_code == 409
    assert r.json()["error"] == "Payment verification failed"

    body["signature"] = sign(order["order_id"], "pay_9")
    r = client.post(verify, json=body, headers=auth_header(buyer_b))
    assert r.status_code == 200
    assert r.json()["sale"]["transaction_id"] == "pay_9"


def test_reported_payment_failure(client, clock, listing_id, buyer_a, buyer_b, auth_header):
    _run_auction(client, clock, listing_id, buyer_a, buyer_b, auth_header)
    r = client.post(
        f"/api/v1/buyer/listings/{listing_id}/payment/failed",
        json={"payment_method": "upi", "reason": "cancelled by user"},
        headers=auth_header(buyer_b),
    )
    assert r.status_code == 200
    assert r.json()["sale"]["payment_status"] == "failed"
    assert client.get(f"/api/v1/marketplace/listings/{listing_id}").json()["listing"]["available"] is True


# ========= farmer listing management =========
def test_farmer_edits_and_deletes(client, listing_id, farmer, auth_header):
    url = f"/api/v1/farmer/listings/{listing_id}"
    r = client.patch(url, json={"price": 55}, headers=auth_header(farmer))
    assert r.status_code == 200
    assert r.json()["listing"]["price"] == 55

    assert client.get("/api/v1/farmer/listings", headers=auth_header(farmer)).json()["count"] == 1
    assert client.delete(url, headers=auth_header(farmer)).status_code == 200
    assert client.get(f"/api/v1/marketplace/listings/{listing_id}").status_code == 404


def test_create_listing_validates_window(client, farmer, auth_header):
    r = client.post(
        "/api/v1/farmer/listings",
        json={"name": "Rice", "category": "grains", "quantity": 5, "price": 30,
              "bid_start": END.isoformat(), "bid_end": T0.isoformat()},
        headers=auth_header(farmer),
    )
    assert r.status_code == 422


def test_create_listing_accepts_naive_start_with_aware_end(client, farmer, auth_header):
    r = client.post(
        "/api/v1/farmer/listings",
        json={"name": "Rice", "category": "grains", "quantity": 5, "price": 30,
              "bid_start": "2025-06-01T09:00:00", "bid_end": END.isoformat()},
        headers=auth_header(farmer),
    )
    assert r.status_code == 201, r.text
    assert r.json()["listing"]["bid_start"] == T0.isoformat()

    r = client.post(
        "/api/v1/farmer/listings",
        json={"name": "Rice", "category": "grains", "quantity": 5, "price": 30,
              "bid_start": "2025-06-01T10:00:00", "bid_end": END.isoformat()},
        headers=auth_header(farmer),
    )
    assert r.status_code == 422


def test_patch_cannot_null_out_price(client, clock, listing_id, farmer, buyer_a, auth_header):
    url = f"/api/v1/farmer/listings/{listing_id}"
    assert client.patch(url, json={"price": None}, headers=auth_header(farmer)).status_code == 422
    assert client.patch(url, json={"name": None}, headers=auth_header(farmer)).status_code == 422

    clock.advance(minutes=1)
    r = client.post(f"/api/v1/buyer/listings/{listing_id}/bids", json={"amount": 45}, headers=auth_header(buyer_a))
    assert r.status_code == 201, r.text


# ========= notifications =========
def test_notifications_endpoints(client, clock, listing_id, buyer_a, farmer, auth_header):
    clock.advance(minutes=5)
    client.post(f"/api/v1/buyer/listings/{listing_id}/bids", json={"amount": 45}, headers=auth_header(buyer_a))

    r = client.get("/api/v1/notifications", headers=auth_header(farmer)).json()
    assert r["unread"] == 1
    note = r["notifications"][0]
    assert note["type"] == "new_bid"

    assert client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth_header(farmer)).status_code == 200
    assert client.get("/api/v1/notifications?unread_only=true", headers=auth_header(farmer)).json()["notifications"] == []

    r = client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth_header(buyer_a))
    assert r.status_code == 404
    assert client.post("/api/v1/notifications/read-all", headers=auth_header(farmer)).json()["updated"] == 0
    assert client.get("/api/v1/notifications").status_code == 401


# ========= live feed =========
def test_feed_sends_snapshot_then_updates(client, clock, listing_id, buyer_a, auth_header):
    clock.advance(minutes=5)
    with client.websocket_connect(f"/api/v1/marketplace/listings/{listing_id}/feed") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert first["reason"] == "connected"
        assert first["listing"]["highest_bid"] is None
        assert first["bids"] == []

        r = client.post(f"/api/v1/buyer/listings/{listing_id}/bids", json={"amount": 45}, headers=auth_header(buyer_a))
        assert r.status_code == 201

        update = ws.receive_json()
        assert update["reason"] == "bid_placed"
        assert update["listing"]["highest_bid"] == 45
        assert [b["amount"] for b in update["bids"]] == [45]


def test_feed_for_unknown_listing_is_refused(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/marketplace/listings/000000000000000000000000/feed") as ws:
            ws.receive_json()
    assert exc.value.code == 4404

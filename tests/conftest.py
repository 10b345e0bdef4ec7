# tests/conftest.py
#
# Every test runs against a fresh in-memory Mongo (mongomock) and a clock that
# only moves when the test moves it.

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from gofresh.app_config import AppConfig
from gofresh.clock import FixedClock
from gofresh.fastapi.security import jwt_issue
from gofresh.models.auth_models import Identity, Role
from gofresh.models.marketplace.listing_models import ListingCreateModel
from gofresh.mongo import ensure_indexes, init_mongo
from gofresh.services.listing_service import ListingService
from gofresh.services.razorpay_client import RazorpayClient

T0 = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_SECRET = "rzp_test_secret"


@pytest.fixture
def config():
    return AppConfig(
        mongo_db_name="gofresh_test",
        jwt_secret_key="test-secret",
        razorpay_key_id=RAZORPAY_KEY_ID,
        razorpay_key_secret=RAZORPAY_SECRET,
    )


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient(tz_aware=True)


@pytest.fixture
def db(config, mongo_client):
    database = init_mongo(config, client=mongo_client)
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def farmer():
    return Identity(userId="FARAAA0011", name="Ravi Farms", email="ravi@farm.in", role=Role.FARMER)


@pytest.fixture
def buyer_a():
    return Identity(userId="BUYAAA0001", name="Asha", email="asha@buy.in", role=Role.BUYER)


@pytest.fixture
def buyer_b():
    return Identity(userId="BUYBBB0002", name="Bala", email="bala@buy.in", role=Role.BUYER)


@pytest.fixture
def make_listing(db, farmer):
    """Create a listing owned by `farmer` with an auction window [T0, T0 + 1h] by default."""

    def _make(price=40, start=T0, end=T0 + timedelta(hours=1), now=T0 - timedelta(days=1), **fields):
        body = ListingCreateModel(
            name=fields.pop("name", "Tomatoes"),
            category=fields.pop("category", "Vegetables"),
            quantity=fields.pop("quantity", 100),
            price=price,
            bid_start=start,
            bid_end=end,
            **fields,
        )
        return ListingService.create_listing(farmer, body, now)

    return _make


@pytest.fixture
def auth_header(config):
    def _header(identity: Identity):
        tokens = jwt_issue(identity.public_payload(), config)
        return {"Authorization": f"Bearer {tokens['access_token']}"}

    return _header


# ========= payment provider fakes =========
class FakeResponse:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data

    def json(self):
        if self._data is None:
            raise ValueError("no json body")
        return self._data


class FakeSession:
    """Stands in for requests.Session; records every POST."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(200, {"id": "order_TEST123", "status": "created"})
        self.error = error
        self.calls = []

    def post(self, url, json=None, auth=None, timeout=None):
        self.calls.append({"url": url, "json": json, "auth": auth, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def razorpay_session():
    return FakeSession()


@pytest.fixture
def razorpay(razorpay_session):
    return RazorpayClient(RAZORPAY_KEY_ID, RAZORPAY_SECRET, session=razorpay_session)


def sign(order_id: str, payment_id: str, secret: str = RAZORPAY_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), f"{order_id}|{payment_id}".encode("utf-8"), hashlib.sha256).hexdigest()

# gofresh/services/auction_rules.py
#
# Pure auction rules: no Mongo, no wall clock. Every function takes `now`
# (or an already evaluated AuctionWindow) so callers decide what time it is.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gofresh.models.auth_models import Identity, Role

CURRENCY_SYMBOL = "₹"


class AuctionWindow(str, Enum):
    NOT_CONFIGURED = "not_configured"
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"


class BidStatus(str, Enum):
    WINNING = "winning"
    OUTBID = "outbid"
    WON = "won"
    LOST = "lost"


@dataclass(frozen=True)
class Decision:
    accepted: bool
    reason: Optional[str] = None
    code: Optional[str] = None          # window | auth | role | amount | winner | sold


ACCEPTED = Decision(accepted=True)


def _reject(reason: str, code: str) -> Decision:
    return Decision(accepted=False, reason=reason, code=code)


@dataclass(frozen=True)
class Winner:
    bidder_id: str
    bidder_name: str
    bid_id: str
    amount: int


def format_amount(amount: Any) -> str:
    return f"{CURRENCY_SYMBOL}{amount:,}"


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ========= Auction Window Evaluator =========
def evaluate_window(bid_start: Optional[datetime], bid_end: Optional[datetime], now: datetime) -> AuctionWindow:
    """
    Classify a listing's auction window at `now`.

    A listing without an end timestamp is not an auction and never takes bids.
    A missing start means bidding is open from creation until the end.
    Both boundaries are inclusive.
    """
    start, end, now = _utc(bid_start), _utc(bid_end), _utc(now)

    if end is None:
        return AuctionWindow.NOT_CONFIGURED
    if start is not None and now < start:
        return AuctionWindow.NOT_STARTED
    if now <= end:
        return AuctionWindow.ACTIVE
    return AuctionWindow.ENDED


_UNITS = (
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
)


def time_left(bid_end: Optional[datetime], now: datetime) -> str:
    """Human label for the remaining time, e.g. '2 hours left'."""
    end = _utc(bid_end)
    if end is None:
        return "No deadline"
    remaining = (end - _utc(now)).total_seconds()
    if remaining <= 0:
        return "Ended"
    for unit, seconds in _UNITS:
        if remaining >= seconds:
            n = int(remaining // seconds)
            return f"{n} {unit}{'' if n == 1 else 's'} left"
    return "less than a minute left"


# ========= Bid Validator =========
_WINDOW_REJECTIONS = {
    AuctionWindow.NOT_CONFIGURED: "Auction is not configured for bidding",
    AuctionWindow.NOT_STARTED: "Auction has not started yet",
    AuctionWindow.ENDED: "Auction has already ended",
}


def validate_bid(
    amount: int,
    base_price: int,
    current_highest: Optional[int],
    window: AuctionWindow,
    identity: Optional[Identity],
) -> Decision:
    """
    Rules are checked in order and the first failure wins:
      1. the window is active
      2. the caller is logged in and is a buyer
      3. the amount beats the current highest bid (base price when there are no bids)
      4. the amount beats the base price
    """
    if window is not AuctionWindow.ACTIVE:
        return _reject(_WINDOW_REJECTIONS[window], "window")

    if identity is None:
        return _reject("Login required to place a bid", "auth")
    if identity.role is Role.FARMER or identity.role is None:
        return _reject("Only buyers can place bids", "role")

    highest = base_price if current_highest is None else current_highest
    if amount <= highest:
        return _reject(f"Bid must exceed current highest bid of {format_amount(highest)}", "amount")
    if amount <= base_price:
        return _reject(f"Bid must exceed base price of {format_amount(base_price)}", "amount")

    return ACCEPTED


# ========= Winner Resolver =========
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def bid_rank_key(bid: Dict[str, Any]) -> Tuple[int, datetime, str]:
    """Highest amount first; equal amounts go to the earliest bid, then the lowest id."""
    return (-int(bid.get("amount") or 0), _utc(bid.get("created_at")) or _FAR_FUTURE, str(bid.get("_id", "")))


def rank_bids(bids: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(bids, key=bid_rank_key)


def highest_bid(bids: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    ranked = rank_bids(bids)
    return ranked[0] if ranked else None


def resolve_winner(bids: Iterable[Dict[str, Any]], window: AuctionWindow) -> Optional[Winner]:
    """The top ranked bid wins once the window has ended; no bids means unsold."""
    if window is not AuctionWindow.ENDED:
        return None
    top = highest_bid(bids)
    if top is None:
        return None
    return Winner(
        bidder_id=top["bidder_id"],
        bidder_name=top.get("bidder_name") or "",
        bid_id=str(top["_id"]),
        amount=int(top["amount"]),
    )


# ========= Payment Gate =========
def check_payment_gate(
    identity: Optional[Identity],
    window: AuctionWindow,
    winner: Optional[Winner],
    already_sold: bool,
) -> Decision:
    if identity is None:
        return _reject("Login required to pay", "auth")
    if identity.role is not Role.BUYER:
        return _reject("Only buyers can pay for listings", "role")

    if window is AuctionWindow.NOT_CONFIGURED:
        return _reject("Auction is not configured for this listing", "window")
    if window is not AuctionWindow.ENDED:
        return _reject("Auction is still active", "window")

    if winner is None:
        return _reject("No winning bid for this listing", "winner")
    if winner.bidder_id != identity.userId:
        return _reject("You are not the highest bidder", "winner")
    if already_sold:
        return _reject("This listing has already been sold", "sold")

    return ACCEPTED


# ========= Buyer-facing bid status =========
def bid_status(user_id: str, highest_bidder_id: Optional[str], window: AuctionWindow) -> BidStatus:
    leading = highest_bidder_id is not None and highest_bidder_id == user_id
    if window is AuctionWindow.ENDED:
        return BidStatus.WON if leading else BidStatus.LOST
    return BidStatus.WINNING if leading else BidStatus.OUTBID

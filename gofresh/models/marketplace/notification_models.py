# gofresh/models/marketplace/notification_models.py

from enum import Enum


class NotificationType(str, Enum):
    NEW_BID = "new_bid"
    AUCTION_ENDED = "auction_ended"
    PAYMENT_RECEIVED = "payment_received"

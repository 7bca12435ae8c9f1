from rebooked.models.user import User
from rebooked.models.book import Book
from rebooked.models.order import Order
from rebooked.models.buyer_feedback import BuyerFeedback
from rebooked.models.wallet import UserWallet, WalletTransaction
from rebooked.models.payout_request import PayoutRequest
from rebooked.models.notification import Notification
from rebooked.models.webhook_event import WebhookEvent
from rebooked.models.platform_event import PlatformEvent

__all__ = [
    "User",
    "Book",
    "Order",
    "BuyerFeedback",
    "UserWallet",
    "WalletTransaction",
    "PayoutRequest",
    "Notification",
    "WebhookEvent",
    "PlatformEvent",
]

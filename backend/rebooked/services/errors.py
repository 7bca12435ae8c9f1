from __future__ import annotations


class ServiceError(Exception):
    """Base for expected business failures; segments render these as JSON."""

    code = "SERVICE_ERROR"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, cause_code: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.cause_code = cause_code

    def to_dict(self) -> dict:
        payload = {"success": False, "ok": False, "error": self.message, "code": self.code}
        if self.cause_code:
            payload["cause"] = self.cause_code
        return payload


# Orders / commitment

class OrderError(ServiceError):
    code = "ORDER_ERROR"


class OrderNotFound(OrderError):
    code = "ORDER_NOT_FOUND"
    status = 404
    default_message = "Order not found"


class Unauthorized(OrderError):
    code = "UNAUTHORIZED"
    status = 401
    default_message = "Unauthorized"


class Forbidden(OrderError):
    code = "FORBIDDEN"
    status = 403
    default_message = "Not allowed for this order"


class InvalidState(OrderError):
    code = "INVALID_STATE"
    default_message = "Order cannot be changed in its current status"


class CommitInProgress(InvalidState):
    code = "COMMIT_IN_PROGRESS"
    status = 409
    default_message = "A commit for this order is already in progress"


class NoCourierSelected(OrderError):
    code = "NO_COURIER_SELECTED"
    default_message = "No courier was selected for this order"


class MissingPickupInfo(OrderError):
    code = "MISSING_PICKUP_INFO"
    default_message = "Seller pickup address or locker could not be found"


class MissingDeliveryInfo(OrderError):
    code = "MISSING_DELIVERY_INFO"
    default_message = "Buyer delivery address or locker could not be found"


class ShipmentCreationFailed(OrderError):
    code = "SHIPMENT_CREATION_FAILED"
    default_message = "Courier shipment could not be created"


class PersistenceFailed(OrderError):
    code = "PERSISTENCE_FAILED"
    default_message = "Failed to update order"


# Wallet

class WalletError(ServiceError):
    code = "WALLET_ERROR"


class InvalidAmount(WalletError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be greater than zero"


class InsufficientFunds(WalletError):
    code = "INSUFFICIENT_FUNDS"
    default_message = "Amount exceeds available balance"


class PayoutNotFound(WalletError):
    code = "PAYOUT_NOT_FOUND"
    status = 404
    default_message = "Payout request not found"


class InvalidPayoutState(WalletError):
    code = "INVALID_PAYOUT_STATE"
    default_message = "Payout request cannot move to that status"


# Checkout

class CheckoutError(ServiceError):
    code = "CHECKOUT_ERROR"


class BookUnavailable(CheckoutError):
    code = "BOOK_UNAVAILABLE"
    default_message = "This book is no longer available"


class AddressEncryptionFailed(CheckoutError):
    code = "ADDRESS_ENCRYPTION_FAILED"
    default_message = "We could not secure your shipping address. Please try again."


class DeliveryQuoteFailed(CheckoutError):
    code = "DELIVERY_QUOTE_FAILED"
    status = 502
    default_message = "Delivery rates are unavailable right now. Please try again."


class InvalidDeliveryOption(CheckoutError):
    code = "INVALID_DELIVERY_OPTION"
    default_message = "The selected delivery option is not available for this address"


class PaymentInitializationFailed(CheckoutError):
    code = "PAYMENT_INIT_FAILED"
    status = 502
    default_message = "Payment could not be started"


# Notifications

class NotificationFailed(ServiceError):
    code = "NOTIFICATION_FAILED"
    default_message = "Notification could not be delivered"

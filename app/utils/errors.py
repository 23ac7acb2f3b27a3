"""Domain errors raised by the fulfillment services.

Each error carries the HTTP status it maps to; ``app.main`` installs a single
exception handler that renders them as ``{"detail": ..., "code": ...}``.
"""

from fastapi import status


class FulfillmentError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request could not be processed."

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return type(self).__name__


class NotFoundError(FulfillmentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found."


class AlreadyExists(FulfillmentError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists."


class InvalidStateTransition(FulfillmentError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Operation not allowed in the current order status."


class AlreadyDelivered(InvalidStateTransition):
    default_detail = "Order is already delivered."


class NotOrderHolder(InvalidStateTransition):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "This order is not assigned to you."


class RiderUnavailable(InvalidStateTransition):
    default_detail = "Rider is offline or already fulfilling an order."


class ConflictAlreadyClaimed(FulfillmentError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Order already claimed by another rider."


class InsufficientBalance(FulfillmentError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Insufficient balance."


class InvalidRequest(FulfillmentError):
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamUnavailable(FulfillmentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "A required upstream party is unavailable."


class VendorOffline(UpstreamUnavailable):
    default_detail = (
        "Cannot place order. One or more vendors are currently offline. Kitchen is closed."
    )

    def __init__(self, vendor_ids=None, detail: str | None = None):
        self.vendor_ids = [str(vendor_id) for vendor_id in vendor_ids or []]
        super().__init__(detail)


class PaymentVerificationFailed(UpstreamUnavailable):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment verification failed."

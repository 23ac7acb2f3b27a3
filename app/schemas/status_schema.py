from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    RIDER = "rider"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Statuses watched by the preparation deadline monitor
PREPARATION_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)

CANCELLABLE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
)


class RiderOrderStatus(str, Enum):
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    ONLINE_PREPAID = "online_prepaid"


class VehicleType(str, Enum):
    BIKE = "bike"
    SCOOTER = "scooter"
    CAR = "car"
    BICYCLE = "bicycle"


class AccountType(str, Enum):
    VENDOR = "vendor"
    RIDER = "rider"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PREPARING = "order_preparing"
    FOOD_READY = "food_ready"
    ORDER_CLAIMED = "order_claimed"
    ORDER_PICKED_UP = "order_picked_up"
    CLAIM_RELEASED = "claim_released"
    RIDER_LOCATION = "rider_location"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"
    LATE_FEE_APPLIED = "late_fee_applied"
    EARNINGS_SETTLED = "earnings_settled"
    SETTLEMENT_FAILED = "settlement_failed"
    WITHDRAWAL_PROCESSED = "withdrawal_processed"

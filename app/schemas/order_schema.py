from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.status_schema import OrderStatus, PaymentMethod


class OrderItemCreate(BaseModel):
    product_id: UUID
    vendor_id: UUID
    quantity: int = Field(..., ge=1)


class PaymentConfirmation(BaseModel):
    """Payment block returned by the provider's checkout for prepaid orders"""

    provider_order_id: str
    payment_id: str
    signature: str


class OrderCreate(BaseModel):
    user_id: UUID
    items: list[OrderItemCreate] = Field(..., min_length=1)
    payment_method: PaymentMethod
    subtotal: Decimal | None = Field(
        None, description="Client computed subtotal, advisory only"
    )
    payment: PaymentConfirmation | None = None


class OrderItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    vendor_id: UUID
    product_name: str | None = None
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: UUID
    user_id: UUID
    items: list[OrderItemResponse] = []
    subtotal: Decimal
    delivery_charge: Decimal
    platform_fee: Decimal
    total: Decimal
    payment_method: PaymentMethod
    payment_reference: str | None = None
    status: OrderStatus
    accepted_at: datetime | None = None
    preparation_deadline: datetime | None = None
    ready_at: datetime | None = None
    assigned_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    assigned_rider_id: UUID | None = None
    late_fee_applied: bool
    late_fee_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VendorActionSchema(BaseModel):
    vendor_id: UUID


class RiderActionSchema(BaseModel):
    rider_id: UUID


class DeliverOrderSchema(BaseModel):
    rider_id: UUID
    rating: int | None = Field(None, description="Customer rating for the rider, 1-5")


class CancelOrderSchema(BaseModel):
    reason: str | None = Field(None, max_length=255)


class ReadyOrderResponse(OrderResponse):
    notified_riders: list[UUID] = []

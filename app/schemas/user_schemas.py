from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.schemas.status_schema import RiderOrderStatus, UserRole, VehicleType


class BankDetails(BaseModel):
    bank_account_number: str | None = None
    bank_ifsc_code: str | None = None
    bank_account_holder: str | None = None


class BaseAccountCreate(BaseModel):
    email: EmailStr
    full_name: str | None = None
    phone_number: str | None = None


class CustomerCreate(BaseAccountCreate):
    role: Literal[UserRole.CUSTOMER]
    address: str | None = None


class VendorCreate(BaseAccountCreate, BankDetails):
    role: Literal[UserRole.VENDOR]
    shop_name: str
    shop_address: str | None = None


class RiderCreate(BaseAccountCreate, BankDetails):
    role: Literal[UserRole.RIDER]
    vehicle_type: VehicleType = VehicleType.BIKE
    vehicle_number: str | None = None


class AdminCreate(BaseAccountCreate):
    role: Literal[UserRole.ADMIN]


AccountCreate = Annotated[
    Union[CustomerCreate, VendorCreate, RiderCreate, AdminCreate],
    Field(discriminator="role"),
]


class VendorProfile(BaseModel):
    shop_name: str
    shop_address: str | None = None
    is_online: bool
    last_online_at: datetime | None = None
    total_earnings: Decimal
    wallet_balance: Decimal
    online_earnings: Decimal
    late_fee_deducted: Decimal
    total_withdrawn: Decimal

    model_config = ConfigDict(from_attributes=True)


class RiderProfile(BaseModel):
    vehicle_type: VehicleType
    vehicle_number: str | None = None
    is_online: bool
    is_available: bool
    current_order_id: UUID | None = None
    current_order_status: RiderOrderStatus | None = None
    latitude: float | None = None
    longitude: float | None = None
    wallet_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    total_deliveries: int
    total_cancellations: int
    average_rating: Decimal

    model_config = ConfigDict(from_attributes=True)


class AccountResponse(BaseModel):
    id: UUID
    role: UserRole
    email: str
    full_name: str | None = None
    phone_number: str | None = None
    vendor: VendorProfile | None = None
    delivery_partner: RiderProfile | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OnlineStatusUpdate(BaseModel):
    is_online: bool


class UserCoords(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ProductCreate(BaseModel):
    name: str
    description: str | None = None
    price: Decimal = Field(..., ge=0, decimal_places=2)
    in_stock: bool = True


class ProductResponse(ProductCreate):
    id: UUID
    vendor_id: UUID

    model_config = ConfigDict(from_attributes=True)

from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database.database import Base
from app.schemas.status_schema import (
    AccountType,
    OrderStatus,
    PaymentMethod,
    RiderOrderStatus,
    SettlementStatus,
    UserRole,
    VehicleType,
    WithdrawalStatus,
)


Money = Numeric(12, 2)
ZERO = Decimal("0.00")


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    role: Mapped[UserRole] = mapped_column(nullable=False, default=UserRole.CUSTOMER)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(nullable=True)
    phone_number: Mapped[str] = mapped_column(nullable=True)
    address: Mapped[str] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    vendor: Mapped[Optional["Vendor"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    delivery_partner: Mapped[Optional["DeliveryPartner"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    orders_placed: Mapped[list["Order"]] = relationship(back_populates="customer")


class Vendor(Base):
    __tablename__ = "vendors"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    shop_name: Mapped[str] = mapped_column(nullable=False)
    shop_address: Mapped[str] = mapped_column(nullable=True)
    is_online: Mapped[bool] = mapped_column(default=False)
    last_online_at: Mapped[datetime] = mapped_column(nullable=True)

    # All settled item income (cash + online), net of commission
    total_earnings: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    # Online-paid income only
    wallet_balance: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    online_earnings: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    late_fee_deducted: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, default=ZERO)

    bank_account_number: Mapped[str] = mapped_column(nullable=True)
    bank_ifsc_code: Mapped[str] = mapped_column(nullable=True)
    bank_account_holder: Mapped[str] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    user: Mapped["User"] = relationship(back_populates="vendor")
    products: Mapped[list["Product"]] = relationship(
        back_populates="vendor", cascade="all, delete-orphan"
    )


class DeliveryPartner(Base):
    __tablename__ = "delivery_partners"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    vehicle_type: Mapped[VehicleType] = mapped_column(default=VehicleType.BIKE)
    vehicle_number: Mapped[str] = mapped_column(nullable=True)

    is_online: Mapped[bool] = mapped_column(default=False)
    # True if ready to accept orders, False while delivering
    is_available: Mapped[bool] = mapped_column(default=True)
    last_online_at: Mapped[datetime] = mapped_column(nullable=True)

    # Back reference to the order being fulfilled, not an ownership relation
    current_order_id: Mapped[Optional[UUID]] = mapped_column(nullable=True)
    current_order_status: Mapped[Optional[RiderOrderStatus]] = mapped_column(
        nullable=True
    )

    latitude: Mapped[float] = mapped_column(nullable=True)
    longitude: Mapped[float] = mapped_column(nullable=True)
    location_updated_at: Mapped[datetime] = mapped_column(nullable=True)

    wallet_balance: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_earnings: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_deliveries: Mapped[int] = mapped_column(default=0)
    total_cancellations: Mapped[int] = mapped_column(default=0)
    average_rating: Mapped[Decimal] = mapped_column(
        Numeric(9, 6), default=Decimal("5.00")
    )

    bank_account_number: Mapped[str] = mapped_column(nullable=True)
    bank_ifsc_code: Mapped[str] = mapped_column(nullable=True)
    bank_account_holder: Mapped[str] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    user: Mapped["User"] = relationship(back_populates="delivery_partner")

    __table_args__ = (
        Index("ix_delivery_partners_idle", "is_online", "is_available"),
    )


class Product(Base):
    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    vendor_id: Mapped[UUID] = mapped_column(
        ForeignKey("vendors.user_id", ondelete="CASCADE")
    )
    name: Mapped[str]
    description: Mapped[str] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    in_stock: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    vendor: Mapped["Vendor"] = relationship(back_populates="products")

    __table_args__ = (CheckConstraint("price >= 0", name="ck_product_price"),)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"))

    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    delivery_charge: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    client_subtotal: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(nullable=False)
    payment_reference: Mapped[str] = mapped_column(nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        default=OrderStatus.PENDING, nullable=False
    )

    accepted_at: Mapped[datetime] = mapped_column(nullable=True)
    preparation_deadline: Mapped[datetime] = mapped_column(nullable=True)
    ready_at: Mapped[datetime] = mapped_column(nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=True)
    picked_up_at: Mapped[datetime] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(nullable=True)
    cancel_reason: Mapped[str] = mapped_column(nullable=True)

    assigned_rider_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("delivery_partners.user_id", ondelete="SET NULL"), nullable=True
    )

    late_fee_applied: Mapped[bool] = mapped_column(default=False)
    late_fee_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)

    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    customer: Mapped["User"] = relationship(back_populates="orders_placed")
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_assigned_rider_id", "assigned_rider_id"),
    )

    @property
    def vendor_ids(self) -> list[UUID]:
        seen = []
        for item in self.items:
            if item.vendor_id not in seen:
                seen.append(item.vendor_id)
        return seen


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"))
    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.user_id"))
    position: Mapped[int] = mapped_column(default=0)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    product_name: Mapped[str] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Settlement(Base):
    """Per-party earnings ledger written when an order is delivered."""

    __tablename__ = "settlements"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"))
    party_type: Mapped[AccountType]
    party_id: Mapped[UUID]
    item_total: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    commission: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_method: Mapped[PaymentMethod]
    credits_wallet: Mapped[bool] = mapped_column(default=False)
    status: Mapped[SettlementStatus] = mapped_column(default=SettlementStatus.PENDING)
    failure_reason: Mapped[str] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    settled_at: Mapped[datetime] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "order_id", "party_type", "party_id", name="uq_settlement_order_party"
        ),
        Index("ix_settlements_status", "status"),
    )


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"))
    account_type: Mapped[AccountType]
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    transfer_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    # portion taken from the online wallet balance, restored on reversal
    wallet_debit: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    status: Mapped[WithdrawalStatus] = mapped_column(default=WithdrawalStatus.PENDING)

    bank_account_number: Mapped[str] = mapped_column(nullable=True)
    bank_ifsc_code: Mapped[str] = mapped_column(nullable=True)
    bank_account_holder: Mapped[str] = mapped_column(nullable=True)

    transaction_id: Mapped[str] = mapped_column(nullable=True)
    failure_reason: Mapped[str] = mapped_column(nullable=True)
    notes: Mapped[str] = mapped_column(nullable=True)
    requested_at: Mapped[datetime] = mapped_column(default=datetime.now)
    processed_at: Mapped[datetime] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_withdrawals_account_requested", "account_id", "requested_at"),
        Index("ix_withdrawals_status", "status"),
    )

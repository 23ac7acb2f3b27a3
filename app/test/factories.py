"""Test data factories for creating test objects."""
import factory
from factory import Faker, SubFactory, SelfAttribute
from decimal import Decimal
from datetime import datetime
from uuid import uuid4

from app.models.models import DeliveryPartner, Product, User, Vendor
from app.schemas.status_schema import UserRole, VehicleType

ZERO = Decimal("0.00")


class UserFactory(factory.Factory):
    """Factory for creating User instances."""
    class Meta:
        model = User

    id = factory.LazyFunction(uuid4)
    role = UserRole.CUSTOMER
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    full_name = Faker('name')
    phone_number = Faker('phone_number')
    created_at = factory.LazyFunction(datetime.now)
    updated_at = factory.LazyFunction(datetime.now)


class VendorFactory(factory.Factory):
    """Factory for creating an online vendor with an empty wallet."""
    class Meta:
        model = Vendor

    user = SubFactory(UserFactory, role=UserRole.VENDOR)
    user_id = SelfAttribute('user.id')
    shop_name = Faker('company')
    shop_address = Faker('address')
    is_online = True
    total_earnings = ZERO
    wallet_balance = ZERO
    online_earnings = ZERO
    late_fee_deducted = ZERO
    total_withdrawn = ZERO
    bank_account_number = "000123456789"
    bank_ifsc_code = "FDSH0000001"
    bank_account_holder = Faker('name')


class RiderFactory(factory.Factory):
    """Factory for creating an online, idle delivery partner."""
    class Meta:
        model = DeliveryPartner

    user = SubFactory(UserFactory, role=UserRole.RIDER)
    user_id = SelfAttribute('user.id')
    vehicle_type = VehicleType.BIKE
    vehicle_number = Faker('license_plate')
    is_online = True
    is_available = True
    current_order_id = None
    wallet_balance = ZERO
    total_earnings = ZERO
    total_withdrawn = ZERO
    total_deliveries = 0
    total_cancellations = 0
    average_rating = Decimal("5.00")
    bank_account_number = "000987654321"
    bank_ifsc_code = "FDSH0000002"
    bank_account_holder = Faker('name')


class ProductFactory(factory.Factory):
    """Factory for creating Product instances."""
    class Meta:
        model = Product

    id = factory.LazyFunction(uuid4)
    vendor = SubFactory(VendorFactory)
    vendor_id = SelfAttribute('vendor.user_id')
    name = Faker('word')
    description = Faker('text', max_nb_chars=200)
    price = Decimal("100.00")
    in_stock = True

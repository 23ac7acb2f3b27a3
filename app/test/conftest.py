import os

os.environ["TEST"] = "true"
os.environ["NOTIFICATION_TRANSPORT"] = "none"
os.environ["PAYMENT_KEY_SECRET"] = "test_payment_secret"

from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import NullPool

from app.database.database import build_engine, create_tables, get_db
from app.main import app
from app.models.models import Order
from app.schemas.order_schema import OrderCreate, PaymentConfirmation
from app.schemas.status_schema import PaymentMethod
from app.services import order_service
from app.services.deadline_service import PreparationDeadlineMonitor
from app.services.notification_service import NotificationSink
from app.services.payment_service import HmacPaymentProvider
from app.utils.dependencies import (
    get_deadline_monitor,
    get_notifier,
    get_payment_provider,
    get_session_factory,
)
from app.test.factories import ProductFactory, RiderFactory, UserFactory, VendorFactory


class RecordingSink(NotificationSink):
    """Keeps every published event so tests can assert on them."""

    def __init__(self):
        self.published = []

    async def publish(self, channel, event):
        self.published.append((channel, event))

    def events_for(self, channel: str):
        return [event for published_channel, event in self.published if published_channel == channel]

    def types_for(self, channel: str):
        return [event.type for event in self.events_for(channel)]


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    A fresh file database per test. NullPool gives every session its own
    connection, so concurrent sessions really compete for the same rows.
    """
    test_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fulfillment_test.db'}", poolclass=NullPool
    )
    await create_tables(bind=test_engine)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as test_session:
        yield test_session


@pytest.fixture
def notifier() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def scheduler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def monitor(scheduler, session_factory, notifier) -> PreparationDeadlineMonitor:
    return PreparationDeadlineMonitor(scheduler, session_factory, notifier)


@pytest.fixture
def payment_provider() -> HmacPaymentProvider:
    return HmacPaymentProvider(secret="test_payment_secret")


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory, notifier, monitor, payment_provider
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test client; each request gets its own session on the test database.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as request_session:
            yield request_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_deadline_monitor] = lambda: monitor
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def save(session: AsyncSession):
    async def _save(*objects):
        session.add_all(objects)
        await session.commit()
        return objects[0] if len(objects) == 1 else objects

    return _save


@pytest_asyncio.fixture
async def customer(save):
    return await save(UserFactory())


@pytest_asyncio.fixture
async def vendor(save):
    return await save(VendorFactory())


@pytest_asyncio.fixture
async def burger(save, vendor):
    return await save(ProductFactory(vendor=vendor, name="Burger", price=Decimal("150.00")))


@pytest_asyncio.fixture
async def fries(save, vendor):
    return await save(ProductFactory(vendor=vendor, name="Fries", price=Decimal("50.00")))


@pytest.fixture
def make_rider(save):
    async def _make_rider(**kwargs):
        return await save(RiderFactory(**kwargs))

    return _make_rider


@pytest.fixture
def place_order(session, customer, notifier, payment_provider):
    """Place an order through the service; ``lines`` is a list of (product, quantity)."""

    async def _place_order(
        lines, payment_method=PaymentMethod.CASH_ON_DELIVERY, subtotal=None
    ) -> Order:
        payment = None
        if payment_method == PaymentMethod.ONLINE_PREPAID:
            payment = PaymentConfirmation(
                provider_order_id="order_test_1",
                payment_id="pay_test_1",
                signature=payment_provider.sign("order_test_1", "pay_test_1"),
            )
        data = OrderCreate(
            user_id=customer.id,
            items=[
                {"product_id": product.id, "vendor_id": product.vendor_id, "quantity": quantity}
                for product, quantity in lines
            ],
            payment_method=payment_method,
            subtotal=subtotal,
            payment=payment,
        )
        return await order_service.create_order(
            session, data, payment_provider=payment_provider, notifier=notifier
        )

    return _place_order


@pytest.fixture
def ready_order(session, place_order, monitor, notifier):
    """Place, confirm and mark an order ready; returns the ready order."""

    async def _ready_order(lines, payment_method=PaymentMethod.CASH_ON_DELIVERY) -> Order:
        order = await place_order(lines, payment_method=payment_method)
        await order_service.confirm_order(
            session, order.id, monitor=monitor, notifier=notifier
        )
        order, _ = await order_service.mark_ready(
            session,
            order.id,
            order.items[0].vendor_id,
            monitor=monitor,
            notifier=notifier,
        )
        return order

    return _ready_order

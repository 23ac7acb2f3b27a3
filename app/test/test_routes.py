from decimal import Decimal
from uuid import uuid4

import pytest

from app.test.factories import RiderFactory


pytestmark = pytest.mark.integration


async def register(client, **payload):
    response = await client.post("/api/accounts", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def go_online(client, kind, account):
    response = await client.put(
        f"/api/{kind}/{account['id']}/online-status", json={"is_online": True}
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def kitchen(client):
    """Register a vendor with one product over HTTP."""

    async def _kitchen(price="150.00"):
        vendor = await register(
            client,
            role="vendor",
            email=f"kitchen-{uuid4().hex[:8]}@example.com",
            shop_name="Mama's Kitchen",
        )
        await go_online(client, "vendors", vendor)
        response = await client.post(
            f"/api/vendors/{vendor['id']}/products",
            json={"name": "Thali", "price": price},
        )
        assert response.status_code == 201, response.text
        return vendor, response.json()

    return _kitchen


class TestAccounts:
    @pytest.mark.asyncio
    async def test_each_role_gets_its_profile(self, client):
        customer = await register(client, role="customer", email="eat@example.com")
        vendor = await register(
            client, role="vendor", email="cook@example.com", shop_name="Dosa Corner"
        )
        rider = await register(
            client, role="rider", email="ride@example.com", vehicle_type="scooter"
        )

        assert customer["vendor"] is None and customer["delivery_partner"] is None
        assert vendor["vendor"]["shop_name"] == "Dosa Corner"
        assert vendor["vendor"]["is_online"] is False
        assert rider["delivery_partner"]["vehicle_type"] == "scooter"
        assert rider["delivery_partner"]["is_available"] is True

    @pytest.mark.asyncio
    async def test_vendor_without_shop_name_is_invalid(self, client):
        response = await client.post(
            "/api/accounts", json={"role": "vendor", "email": "cook@example.com"}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client):
        await register(client, role="customer", email="twice@example.com")

        response = await client.post(
            "/api/accounts", json={"role": "customer", "email": "twice@example.com"}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyExists"

    @pytest.mark.asyncio
    async def test_unknown_account_is_404(self, client):
        response = await client.get(f"/api/accounts/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["code"] == "NotFoundError"


class TestOrderFlow:
    @pytest.mark.asyncio
    async def test_full_lifecycle_over_http(self, client, kitchen, scheduler):
        customer = await register(client, role="customer", email="hungry@example.com")
        rider = await register(client, role="rider", email="fast@example.com")
        await go_online(client, "riders", rider)
        vendor, thali = await kitchen()

        response = await client.post(
            "/api/orders",
            json={
                "user_id": customer["id"],
                "items": [
                    {"product_id": thali["id"], "vendor_id": vendor["id"], "quantity": 2}
                ],
                "payment_method": "cash_on_delivery",
                "subtotal": "1.00",
            },
        )
        assert response.status_code == 201, response.text
        order = response.json()
        assert order["status"] == "pending"
        assert Decimal(order["subtotal"]) == Decimal("300.00")
        assert Decimal(order["total"]) == Decimal("344.00")

        response = await client.put(f"/api/orders/{order['id']}/confirm")
        assert response.status_code == 200
        assert response.json()["preparation_deadline"] is not None
        scheduler.add_job.assert_called_once()

        response = await client.put(
            f"/api/orders/{order['id']}/ready", json={"vendor_id": vendor["id"]}
        )
        assert response.status_code == 200
        assert response.json()["notified_riders"] == [rider["id"]]

        response = await client.get("/api/orders/ready-for-pickup")
        assert [item["id"] for item in response.json()] == [order["id"]]

        response = await client.put(
            f"/api/orders/{order['id']}/claim", json={"rider_id": rider["id"]}
        )
        assert response.status_code == 200
        assert response.json()["assigned_rider_id"] == rider["id"]

        response = await client.get(f"/api/riders/{rider['id']}/current-order")
        assert response.json()["id"] == order["id"]

        response = await client.put(
            f"/api/orders/{order['id']}/pickup", json={"rider_id": rider["id"]}
        )
        assert response.status_code == 200

        response = await client.put(
            f"/api/orders/{order['id']}/deliver",
            json={"rider_id": rider["id"], "rating": 4},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "delivered"

        response = await client.put(
            f"/api/orders/{order['id']}/deliver", json={"rider_id": rider["id"]}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyDelivered"

        vendor_wallet = (await client.get(f"/api/wallets/{vendor['id']}")).json()
        assert Decimal(vendor_wallet["total_earnings"]) == Decimal("294.00")
        assert Decimal(vendor_wallet["wallet_balance"]) == Decimal("0.00")

        rider_wallet = (await client.get(f"/api/wallets/{rider['id']}")).json()
        assert Decimal(rider_wallet["wallet_balance"]) == Decimal("40.00")
        assert rider_wallet["total_deliveries"] == 1

        history = (await client.get(f"/api/accounts/{customer['id']}/orders")).json()
        assert [item["status"] for item in history] == ["delivered"]

    @pytest.mark.asyncio
    async def test_second_claim_is_409(self, client, kitchen):
        customer = await register(client, role="customer", email="c@example.com")
        first = await register(client, role="rider", email="r1@example.com")
        second = await register(client, role="rider", email="r2@example.com")
        await go_online(client, "riders", first)
        await go_online(client, "riders", second)
        vendor, thali = await kitchen()

        order = (
            await client.post(
                "/api/orders",
                json={
                    "user_id": customer["id"],
                    "items": [{"product_id": thali["id"], "vendor_id": vendor["id"], "quantity": 1}],
                    "payment_method": "cash_on_delivery",
                },
            )
        ).json()
        await client.put(f"/api/orders/{order['id']}/confirm")
        await client.put(f"/api/orders/{order['id']}/ready", json={"vendor_id": vendor["id"]})
        await client.put(f"/api/orders/{order['id']}/claim", json={"rider_id": first["id"]})

        response = await client.put(
            f"/api/orders/{order['id']}/claim", json={"rider_id": second["id"]}
        )

        assert response.status_code == 409
        assert response.json() == {
            "detail": "Order already claimed by another rider.",
            "code": "ConflictAlreadyClaimed",
        }

    @pytest.mark.asyncio
    async def test_offline_vendor_is_503_with_vendor_ids(self, client, kitchen):
        customer = await register(client, role="customer", email="late@example.com")
        vendor, thali = await kitchen()
        response = await client.put(
            f"/api/vendors/{vendor['id']}/online-status", json={"is_online": False}
        )
        assert response.json()["is_online"] is False

        response = await client.post(
            "/api/orders",
            json={
                "user_id": customer["id"],
                "items": [{"product_id": thali["id"], "vendor_id": vendor["id"], "quantity": 1}],
                "payment_method": "cash_on_delivery",
            },
        )

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "VendorOffline"
        assert body["vendor_ids"] == [vendor["id"]]
        assert (await client.get(f"/api/accounts/{customer['id']}/orders")).json() == []

    @pytest.mark.asyncio
    async def test_empty_order_is_invalid(self, client):
        response = await client.post(
            "/api/orders",
            json={"user_id": str(uuid4()), "items": [], "payment_method": "cash_on_delivery"},
        )

        assert response.status_code == 422


class TestRiders:
    @pytest.mark.asyncio
    async def test_location_update(self, client, notifier):
        rider = await register(client, role="rider", email="gps@example.com")

        response = await client.put(
            f"/api/riders/{rider['id']}/location",
            json={"latitude": 28.6139, "longitude": 77.209},
        )

        assert response.status_code == 200
        assert response.json()["latitude"] == 28.6139
        assert notifier.published == []

    @pytest.mark.asyncio
    async def test_out_of_range_location_is_invalid(self, client):
        rider = await register(client, role="rider", email="lost@example.com")

        response = await client.put(
            f"/api/riders/{rider['id']}/location",
            json={"latitude": 91, "longitude": 0},
        )

        assert response.status_code == 422


class TestPayments:
    @pytest.mark.asyncio
    async def test_valid_signature_is_accepted(self, client, payment_provider):
        response = await client.post(
            "/api/payments/verify",
            json={
                "provider_order_id": "order_9",
                "payment_id": "pay_9",
                "signature": payment_provider.sign("order_9", "pay_9"),
            },
        )

        assert response.status_code == 200
        assert response.json()["payment_id"] == "pay_9"

    @pytest.mark.asyncio
    async def test_bad_signature_is_402(self, client):
        response = await client.post(
            "/api/payments/verify",
            json={"provider_order_id": "order_9", "payment_id": "pay_9", "signature": "nope"},
        )

        assert response.status_code == 402
        assert response.json()["code"] == "PaymentVerificationFailed"


class TestWalletsAndAdmin:
    @pytest.mark.asyncio
    async def test_withdrawal_and_admin_reversal(self, client, save):

        rider = await save(RiderFactory(total_earnings=Decimal("300.00"), wallet_balance=Decimal("300.00")))

        response = await client.post(
            f"/api/wallets/{rider.user_id}/withdrawals", json={"amount": "200.00"}
        )
        assert response.status_code == 201, response.text
        withdrawal = response.json()
        assert Decimal(withdrawal["transfer_amount"]) == Decimal("196.00")

        response = await client.post(
            f"/api/wallets/{rider.user_id}/withdrawals", json={"amount": "200.00"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InsufficientBalance"

        response = await client.put(
            f"/api/admin/withdrawals/{withdrawal['id']}",
            json={"status": "failed", "failure_reason": "Account closed"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "failed"

        wallet = (await client.get(f"/api/wallets/{rider.user_id}")).json()
        assert Decimal(wallet["available_balance"]) == Decimal("300.00")

        history = (await client.get(f"/api/wallets/{rider.user_id}/withdrawals")).json()
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_reconcile_with_nothing_outstanding(self, client):
        response = await client.post("/api/admin/settlements/reconcile")

        assert response.status_code == 200
        assert response.json() == {"attempted": 0, "completed": 0, "failed": 0}

        response = await client.get("/api/admin/settlements")
        assert response.json() == []


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "OK"

    @pytest.mark.asyncio
    async def test_db_health(self, client):
        response = await client.get("/api/db")

        assert response.json()["database"] == "connected"

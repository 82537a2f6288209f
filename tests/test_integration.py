"""
Integration Tests for the HTTP and WebSocket API
Runs the FastAPI app against in-memory SQLite with dependency overrides
"""
import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from starlette.websockets import WebSocketDisconnect

from denasetu.api.deps import get_session_factory
from denasetu.core.circuit_breaker import CircuitBreaker
from denasetu.database.database import get_db
from denasetu.main import app
from denasetu.schemas.session import Role
from denasetu.services.payment_gateway import GatewayUnavailable, RazorpayClient, get_payment_gateway
from denasetu.services.session import get_session_manager
from denasetu.store.changes import get_change_bus

from tests.conftest import GATEWAY_URL, KEY_ID, KEY_SECRET, WEBHOOK_SECRET, sign_body, sign_payment


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def overrides(session_factory, bus, gateway, session_manager, seeded):
    """Point the app at the test database, bus, gateway and session store"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_bus] = lambda: bus
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_session_manager] = lambda: session_manager
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(overrides):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac


def auth(session_manager, store, user_id, role):
    token = session_manager.open_session(store, user_id, role).token
    return {"X-Session-Token": token}


@pytest.fixture
def donor_headers(session_manager, seeded):
    return auth(session_manager, seeded, "d-42", Role.DONOR)


@pytest.fixture
def ngo_headers(session_manager, seeded):
    return auth(session_manager, seeded, "n-7", Role.NGO)


@pytest.fixture
def other_ngo_headers(session_manager, seeded):
    return auth(session_manager, seeded, "n-8", Role.NGO)


@pytest.fixture
def volunteer_headers(session_manager, seeded):
    return auth(session_manager, seeded, "v-1", Role.VOLUNTEER)


# ============================================================================
# HEALTH CHECK TESTS
# ============================================================================

class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.get("/health")
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


# ============================================================================
# ORDER ENDPOINT TESTS
# ============================================================================

class TestCreateOrderEndpoint:

    @pytest.mark.asyncio
    async def test_create_order(self, client, gateway_stub):
        response = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"})

        assert response.status_code == 200
        data = response.json()
        assert data["amount"] == 50000
        assert data["currency"] == "INR"
        assert data["id"].startswith("order_")
        assert gateway_stub.payloads[0]["receipt"].startswith("campaign_c1_")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    async def test_other_methods_not_allowed(self, client, gateway_stub, method):
        response = await client.request(method, "/api/create-order")

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
        assert gateway_stub.requests == []

    @pytest.mark.asyncio
    async def test_gateway_failure_is_500_with_error(self, client, gateway_stub, seeded):
        gateway_stub.fail_with = (400, {"error": {"description": "The amount must be atleast INR 1.00"}})

        response = await client.post("/api/create-order", json={"amount": 0.5, "campaign_id": "c1"})

        assert response.status_code == 500
        assert response.json() == {"error": "The amount must be atleast INR 1.00"}
        assert seeded.select("payment_orders") == []
        assert seeded.select("campaign_donations") == []
        assert seeded.select("donations") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        httpx.Response(200, text="<html>upstream proxy error</html>"),
        httpx.Response(200, json={"status": "weird"}),
    ], ids=["not-json", "no-id"])
    async def test_malformed_gateway_reply_is_500_with_error(self, client, seeded, reply):
        app.dependency_overrides[get_payment_gateway] = lambda: RazorpayClient(
            KEY_ID, KEY_SECRET, WEBHOOK_SECRET, GATEWAY_URL,
            transport=httpx.MockTransport(lambda request: reply),
            breaker=CircuitBreaker("t", expected_exception=GatewayUnavailable),
        )

        response = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"})

        assert response.status_code == 500
        assert response.json() == {"error": "Payment gateway returned an invalid order"}
        assert seeded.select("payment_orders") == []
        assert seeded.select("campaign_donations") == []
        assert seeded.select("donations") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount(self, client, gateway_stub, amount):
        response = await client.post("/api/create-order", json={"amount": amount, "campaign_id": "c1"})

        assert response.status_code == 422
        assert gateway_stub.requests == []

    @pytest.mark.asyncio
    async def test_idempotency_key_header(self, client, gateway_stub):
        headers = {"Idempotency-Key": "checkout-abc"}
        first = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"}, headers=headers)
        second = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"}, headers=headers)

        assert first.json()["id"] == second.json()["id"]
        assert len(gateway_stub.requests) == 1

        conflict = await client.post("/api/create-order", json={"amount": 700, "campaign_id": "c1"}, headers=headers)
        assert conflict.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, client):
        response = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "nope"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_bad_session_token(self, client):
        response = await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"},
                                     headers={"X-Session-Token": "expired"})
        assert response.status_code == 401


# ============================================================================
# PAYMENT ENDPOINT TESTS
# ============================================================================

class TestPaymentEndpoints:

    @pytest.mark.asyncio
    async def test_confirm_records_campaign_donation(self, client, donor_headers, seeded):
        order = (await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"},
                                   headers=donor_headers)).json()

        response = await client.post("/api/payments/confirm", json={
            "razorpay_order_id": order["id"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign_payment(order["id"], "pay_1"),
        })

        assert response.status_code == 201
        data = response.json()
        assert data["relation"] == "campaign_donations"
        assert data["donor_id"] == "d-42"
        assert Decimal(data["amount"]) == Decimal("500")

        donors = (await client.get("/api/campaigns/c1/donations")).json()
        assert donors["total"] == 1
        assert donors["donations"][0]["donor"]["name"] == "Asha Rao"

        campaign = (await client.get("/api/campaigns/c1")).json()
        assert Decimal(campaign["raised_amount"]) == Decimal("500")

    @pytest.mark.asyncio
    async def test_confirm_bad_signature(self, client):
        order = (await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"})).json()

        response = await client.post("/api/payments/confirm", json={
            "razorpay_order_id": order["id"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "0" * 64,
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_confirm_unknown_order(self, client):
        response = await client.post("/api/payments/confirm", json={
            "razorpay_order_id": "order_unknown",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign_payment("order_unknown", "pay_1"),
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_webhook(self, client, seeded):
        order = (await client.post("/api/create-order", json={"amount": 500, "campaign_id": "c1"})).json()
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_w", "order_id": order["id"]}}},
        }).encode()

        response = await client.post("/api/payments/webhook", content=body,
                                     headers={"X-Razorpay-Signature": sign_body(body),
                                              "Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert len(seeded.select("campaign_donations")) == 1

    @pytest.mark.asyncio
    async def test_webhook_without_signature(self, client):
        response = await client.post("/api/payments/webhook", content=b"{}")
        assert response.status_code == 400


# ============================================================================
# DONATION ENDPOINT TESTS
# ============================================================================

class TestDonationEndpoints:

    async def _create(self, client, donor_headers):
        response = await client.post("/api/donations", json={
            "ngo_id": "n-7", "category": "Clothes", "description": "Winter wear", "quantity": 3,
        }, headers=donor_headers)
        assert response.status_code == 201
        return response.json()

    @pytest.mark.asyncio
    async def test_accept_flow(self, client, donor_headers, ngo_headers):
        donation = await self._create(client, donor_headers)
        assert donation["status"] == "Pending"

        pending = (await client.get("/api/ngos/n-7/donations/pending", headers=ngo_headers)).json()
        assert [d["id"] for d in pending["donations"]] == [donation["id"]]
        assert pending["donations"][0]["donor"]["name"] == "Asha Rao"

        response = await client.post(f"/api/donations/{donation['id']}/accept", headers=ngo_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "Accepted"

        pending = (await client.get("/api/ngos/n-7/donations/pending", headers=ngo_headers)).json()
        assert pending["total"] == 0

        events = (await client.get(f"/api/donations/{donation['id']}/events")).json()
        assert [e["event"] for e in events] == ["Donation Created", "Donation Accepted"]

    @pytest.mark.asyncio
    async def test_terminal_state_is_409(self, client, donor_headers, ngo_headers):
        donation = await self._create(client, donor_headers)
        await client.post(f"/api/donations/{donation['id']}/reject", headers=ngo_headers)

        response = await client.post(f"/api/donations/{donation['id']}/accept", headers=ngo_headers)

        assert response.status_code == 409
        final = (await client.get(f"/api/donations/{donation['id']}")).json()
        assert final["status"] == "Cancelled"

    @pytest.mark.asyncio
    async def test_stale_version_is_409(self, client, donor_headers, ngo_headers):
        donation = await self._create(client, donor_headers)
        await client.post(f"/api/donations/{donation['id']}/accept", json={"expected_version": 1},
                          headers=ngo_headers)

        response = await client.post(f"/api/donations/{donation['id']}/complete", json={"expected_version": 1},
                                     headers=ngo_headers)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_other_ngo_forbidden(self, client, donor_headers, other_ngo_headers):
        donation = await self._create(client, donor_headers)

        response = await client.post(f"/api/donations/{donation['id']}/accept", headers=other_ngo_headers)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_status_change_needs_session(self, client, donor_headers):
        donation = await self._create(client, donor_headers)

        response = await client.post(f"/api/donations/{donation['id']}/accept")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_pending_list_is_private(self, client, other_ngo_headers):
        response = await client.get("/api/ngos/n-7/donations/pending", headers=other_ngo_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_donation(self, client):
        response = await client.get("/api/donations/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_donor_history(self, client, donor_headers):
        donation = await self._create(client, donor_headers)

        response = await client.get("/api/donors/d-42/donations", headers=donor_headers)

        assert response.status_code == 200
        assert [d["id"] for d in response.json()["donations"]] == [donation["id"]]


# ============================================================================
# SESSION, LOCATION AND NOTIFICATION ENDPOINT TESTS
# ============================================================================

class TestSessionEndpoints:

    @pytest.mark.asyncio
    async def test_open_me_close(self, client):
        opened = await client.post("/api/sessions", json={"user_id": "n-7", "role": "ngo"})
        assert opened.status_code == 201
        headers = {"X-Session-Token": opened.json()["token"]}

        me = await client.get("/api/sessions/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["profile"]["name"] == "Helping Hands"

        closed = await client.delete("/api/sessions", headers=headers)
        assert closed.status_code == 204

        assert (await client.get("/api/sessions/me", headers=headers)).status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_identity(self, client):
        response = await client.post("/api/sessions", json={"user_id": "ghost", "role": "donor"})
        assert response.status_code == 404


class TestActivityEndpoints:

    @pytest.mark.asyncio
    async def test_location_reporting(self, client, volunteer_headers):
        response = await client.post("/api/locations", json={
            "assignment_id": "a-1", "latitude": 18.52, "longitude": 73.85, "accuracy": 8,
        }, headers=volunteer_headers)
        assert response.status_code == 201

        track = (await client.get("/api/assignments/a-1/locations")).json()
        assert track["latest"]["volunteer_id"] == "v-1"
        assert len(track["samples"]) == 1

    @pytest.mark.asyncio
    async def test_location_out_of_range(self, client, volunteer_headers):
        response = await client.post("/api/locations", json={
            "assignment_id": "a-1", "latitude": 123, "longitude": 73.85,
        }, headers=volunteer_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_donor_cannot_report_location(self, client, donor_headers):
        response = await client.post("/api/locations", json={
            "assignment_id": "a-1", "latitude": 1, "longitude": 1,
        }, headers=donor_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_donor_notified_on_status_change(self, client, donor_headers, ngo_headers):
        donation = (await client.post("/api/donations", json={"ngo_id": "n-7", "category": "Books"},
                                      headers=donor_headers)).json()
        await client.post(f"/api/donations/{donation['id']}/accept", headers=ngo_headers)

        notes = (await client.get("/api/notifications", headers=donor_headers)).json()
        assert [n["title"] for n in notes] == ["Donation Accepted"]

        read = await client.post(f"/api/notifications/{notes[0]['id']}/read", headers=donor_headers)
        assert read.json()["is_read"] is True


# ============================================================================
# CAMPAIGN ENDPOINT TESTS
# ============================================================================

class TestCampaignEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_list(self, client, ngo_headers):
        created = await client.post("/api/campaigns", json={"title": "Books drive", "goal_amount": 15000},
                                    headers=ngo_headers)
        assert created.status_code == 201

        listed = (await client.get("/api/campaigns")).json()
        assert created.json()["id"] in {c["id"] for c in listed["campaigns"]}

    @pytest.mark.asyncio
    async def test_money_received(self, client, ngo_headers, seeded):
        seeded.insert("campaign_donations", {"campaign_id": "c1", "amount": Decimal("300"),
                                             "payment_id": "pay_1", "order_id": "order_1"})

        response = await client.get("/api/ngos/n-7/money-received", headers=ngo_headers)

        assert response.status_code == 200
        assert Decimal(response.json()["total_amount"]) == Decimal("300")


# ============================================================================
# LIVE FEED TESTS
# ============================================================================

class TestLiveFeed:

    def test_snapshot_on_connect_and_after_change(self, overrides, seeded):
        client = TestClient(app)
        with client.websocket_connect("/api/campaigns/c1/donations/live") as websocket:
            initial = websocket.receive_json()
            assert initial == {"campaign_id": "c1", "donations": [], "total": 0}

            seeded.insert("campaign_donations", {"campaign_id": "c1", "donor_id": "d-42",
                                                 "amount": Decimal("500"), "payment_id": "pay_1",
                                                 "order_id": "order_1"})
            updated = websocket.receive_json()
            assert updated["total"] == 1
            assert updated["donations"][0]["donor"]["name"] == "Asha Rao"

            websocket.send_text("refresh")
            refreshed = websocket.receive_json()
            assert refreshed["total"] == 1

    def test_unknown_campaign_closes(self, overrides):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/campaigns/nope/donations/live") as websocket:
                websocket.receive_json()
        assert exc_info.value.code == 4404

    def test_feed_failure_does_not_escape_after_disconnect(self, overrides, monkeypatch):
        class BrokenFeed:
            def __init__(self, campaign_id, listener, **kwargs):
                self.refreshed = 0

            async def run(self):
                raise RuntimeError("send failed")

            async def refresh(self):
                self.refreshed += 1
                return []

            def stop(self):
                pass

        monkeypatch.setattr("denasetu.api.campaigns.CampaignDonationFeed", BrokenFeed)
        client = TestClient(app)

        # Leaving the block closes the socket and waits for the handler to finish
        with client.websocket_connect("/api/campaigns/c1/donations/live") as websocket:
            websocket.send_text("refresh")

"""
Shared fixtures: in-memory SQLite store, isolated change bus, gateway client
on a mock transport and an in-memory stand-in for Redis.
"""
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from denasetu.core.circuit_breaker import CircuitBreaker
from denasetu.models import Base
from denasetu.schemas.session import SessionContext, Role
from denasetu.services.payment_gateway import GatewayUnavailable, RazorpayClient
from denasetu.services.session import SessionManager
from denasetu.store.changes import ChangeBus
from denasetu.store.data_store import DataStore

KEY_ID = "rzp_test_key"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"
GATEWAY_URL = "https://gateway.test/v1"


def sign_payment(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def sign_body(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def make_session(user_id: str, role: Role) -> SessionContext:
    return SessionContext(token=f"token-{user_id}", user_id=user_id, role=role)


# ============================================================================
# DATABASE / STORE
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def bus():
    return ChangeBus(origin="test-instance", queue_size=16)


@pytest.fixture
def store(db, bus):
    return DataStore(db, bus)


@pytest.fixture
def seeded(store):
    """Donor d-42, NGO n-7 with Active campaign c1, a second NGO and a volunteer"""
    store.insert("donors", {"id": "d-42", "name": "Asha Rao", "email": "asha@example.com",
                            "image_url": "https://img.test/asha.png"})
    store.insert("donors", {"id": "d-43", "name": "Vikram Shah", "email": "vikram@example.com"})
    store.insert("ngos", {"id": "n-7", "name": "Helping Hands", "city": "Pune", "state": "MH", "verified": True})
    store.insert("ngos", {"id": "n-8", "name": "Food First", "city": "Mumbai", "state": "MH"})
    store.insert("volunteers", {"id": "v-1", "name": "Ravi", "ngo_id": "n-7"})
    store.insert("ngo_campaigns", {"id": "c1", "ngo_id": "n-7", "title": "Winter blankets",
                                   "goal_amount": Decimal("100000"), "raised_amount": Decimal("0")})
    store.insert("ngo_campaigns", {"id": "c2", "ngo_id": "n-8", "title": "Meals for kids",
                                   "goal_amount": Decimal("50000"), "raised_amount": Decimal("0")})
    return store


@pytest.fixture
def donor_session():
    return make_session("d-42", Role.DONOR)


@pytest.fixture
def ngo_session():
    return make_session("n-7", Role.NGO)


@pytest.fixture
def other_ngo_session():
    return make_session("n-8", Role.NGO)


@pytest.fixture
def volunteer_session():
    return make_session("v-1", Role.VOLUNTEER)


# ============================================================================
# PAYMENT GATEWAY
# ============================================================================

class GatewayStub:
    """Records order requests and answers like the gateway would"""

    def __init__(self):
        self.requests = []
        self.fail_with = None
        self.counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, json=body)
        payload = json.loads(request.content)
        self.counter += 1
        return httpx.Response(200, json={
            "id": f"order_test{self.counter}",
            "entity": "order",
            "amount": payload["amount"],
            "currency": payload["currency"],
            "receipt": payload["receipt"],
            "status": "created",
            "notes": payload.get("notes", {}),
        })

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def gateway_stub():
    return GatewayStub()


@pytest.fixture
def gateway(gateway_stub):
    return RazorpayClient(
        key_id=KEY_ID,
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        base_url=GATEWAY_URL,
        transport=httpx.MockTransport(gateway_stub),
        breaker=CircuitBreaker("test-gateway", failure_threshold=3, expected_exception=GatewayUnavailable),
    )


# ============================================================================
# SESSIONS
# ============================================================================

class FakeRedis:
    """Dict-backed stand-in for the few Redis calls the session manager makes"""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def ping(self):
        return True

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def pipeline(self):
        return FakePipeline(self)

    def close(self):
        pass


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def setex(self, key, ttl, value):
        self.calls.append((key, ttl, value))
        return self

    def execute(self):
        return [self.client.setex(*call) for call in self.calls]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_manager(fake_redis):
    manager = SessionManager()
    manager.redis_client = fake_redis
    return manager

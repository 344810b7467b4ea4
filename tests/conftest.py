import json
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DOKU_CLIENT_ID"] = "MCH-0001-TEST"
os.environ["DOKU_SECRET_KEY"] = "SK-test-secret"
os.environ["DOKU_BASE_URL"] = "https://api-sandbox.doku.com"
os.environ["REDIS_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.game import Game
from app.models.transaction import Transaction  # noqa: F401
from app.models.user import User
from app.services.gateway import GatewayClient, GatewayConfig


GATEWAY_CONFIG = GatewayConfig(
    client_id="MCH-0001-TEST",
    secret_key="SK-test-secret",
    base_url="https://api-sandbox.doku.com",
    timeout_seconds=5.0,
)


class FakeGateway:
    """In-process stand-in for the DOKU API, mounted through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.checkout_status = 200
        self.checkout_body = None
        self.status_code = 200
        self.transaction_status = "PENDING"
        self.raise_on_status = None

    def checkout_response(self, request_payload):
        if self.checkout_body is not None:
            return self.checkout_body
        invoice = request_payload["order"]["invoice_number"]
        return {
            "message": ["SUCCESS"],
            "response": {
                "order": {"invoice_number": invoice, "amount": request_payload["order"]["amount"]},
                "payment": {
                    "url": f"https://sandbox.doku.com/checkout/link/{invoice}",
                    "qr_checkout_string": "00020101021226670016COM.NOBUBANK.WWW",
                },
            },
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/checkout/v1/payment":
            payload = json.loads(request.content)
            return httpx.Response(self.checkout_status, json=self.checkout_response(payload))
        if request.method == "GET" and request.url.path.startswith("/orders/v1/status/"):
            if self.raise_on_status is not None:
                raise self.raise_on_status
            invoice = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                self.status_code,
                json={
                    "order": {"invoice_number": invoice},
                    "transaction": {"status": self.transaction_status},
                },
            )
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def engine():
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
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(name="Budi", email=None):
        counter["n"] += 1
        user = User(name=name, email=email or f"user{counter['n']}@example.com")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_game(db, make_user):
    def _make_game(slug="space-runner", price=50000, price_type="paid", owner=None, title=None):
        owner = owner or make_user(name="Uploader")
        game = Game(
            slug=slug,
            title=title or slug.replace("-", " ").title(),
            price=price,
            price_type=price_type,
            user_id=owner.id,
        )
        db.add(game)
        db.commit()
        db.refresh(game)
        return game

    return _make_game


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def gateway_client(fake_gateway):
    return GatewayClient(GATEWAY_CONFIG, transport=httpx.MockTransport(fake_gateway))


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def notifier(notifications):
    return notifications.append


@pytest.fixture
def client(session_factory, gateway_client, notifier):
    from app.api.deps import get_gateway_client, get_notifier, get_optional_gateway_client
    from app.core.database import get_db
    from app.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_optional_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from app.services.security import create_access_token

    def _auth_headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _auth_headers

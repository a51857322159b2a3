import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from relay.config import Settings
from relay.database import Base, build_engine, build_session_factory
from relay.main import create_app
from relay.models import Payment, PaymentStatus
from relay.providers import build_providers

MOMO_A_SECRET = "momo-a-test-secret"
MOMO_B_SECRET = "momo-b-test-secret"
JWT_SECRET = "jwt-test-secret"

CART = [
    {"id": "sku-1", "title": "Sneakers", "price": 50, "quantity": 1, "image": "sneakers.png"},
    {"id": "sku-2", "title": "Socks", "price": 10, "quantity": 2, "image": "socks.png"},
]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'relay.db'}",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        mobile_money_a_secret=MOMO_A_SECRET,
        mobile_money_b_secret=MOMO_B_SECRET,
        base_currency="usd",
        alternate_currency="ghs",
        exchange_rate=15.0,
        jwt_secret=JWT_SECRET,
        log_json=False,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def session_factory(client):
    """Sessions against the running app's database."""
    return client.app.state.session_factory


@pytest.fixture
def db_factory(settings):
    """Standalone database for engine-level tests (no HTTP app)."""
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def providers(settings):
    return build_providers(settings)


@pytest.fixture
def make_payment():
    counter = {"n": 0}

    def _make(factory, provider="card", status=PaymentStatus.PENDING.value, **fields):
        counter["n"] += 1
        payment = Payment(
            payment_id=fields.pop("payment_id", f"pay_test_{counter['n']}"),
            provider=provider,
            provider_reference=fields.pop("provider_reference", f"ref_{counter['n']}"),
            amount=fields.pop("amount", 7000),
            currency=fields.pop("currency", "usd"),
            status=status,
            customer_email=fields.pop("customer_email", "buyer@example.com"),
            cart_snapshot=fields.pop("cart_snapshot", [
                {"id": "sku-1", "title": "Sneakers", "price": "50", "quantity": 1, "image": None},
            ]),
            **fields,
        )
        db = factory()
        db.add(payment)
        db.commit()
        payment_id = payment.payment_id
        db.close()
        return payment_id

    return _make


def sign_momo_a(body: bytes, secret: str = MOMO_A_SECRET) -> dict:
    return {"X-Callback-Signature": hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()}


def sign_momo_b(body: bytes, secret: str = MOMO_B_SECRET) -> dict:
    return {"X-Signature": hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()}


def momo_a_body(payment_id: str, status: str = "SUCCESSFUL", **extra) -> bytes:
    body = {
        "externalId": payment_id,
        "financialTransactionId": "mma-txn-1",
        "status": status,
        "amount": "7000",
        "currency": "USD",
    }
    body.update(extra)
    return json.dumps(body).encode()


def momo_b_body(payment_id: str, status: str = "success") -> bytes:
    return json.dumps({
        "event": "charge.success" if status == "success" else "charge.update",
        "data": {"reference": payment_id, "id": 4099260516, "status": status, "amount": 7000, "currency": "USD"},
    }).encode()


def stripe_event(payment_id, event_type="payment_intent.succeeded", intent_id="pi_mock_123"):
    return {
        "id": "evt_test",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "amount": 7000,
                "currency": "usd",
                "metadata": {"payment_id": payment_id} if payment_id else {},
            }
        },
    }


def operator_headers(secret: str = JWT_SECRET) -> dict:
    return {"Authorization": f"Bearer {jwt.encode({'sub': 'ops'}, secret, algorithm='HS256')}"}

"""Pytest fixtures: test client, test DB (in-memory SQLite), sahte ödeme sağlayıcıları, kaydedici mailer."""
import json
import os

import pytest
from fastapi.testclient import TestClient

# Test ortamında in-memory SQLite (app import edilmeden önce set edilmeli)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("RATE_LIMIT_CHECKOUT_PER_MINUTE", "5")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("STRIPE_SECRET_KEY", "")
os.environ.setdefault("PAYPAL_CLIENT_ID", "")

from sqlmodel import Session, SQLModel  # noqa: E402

from app.api.deps import get_mailer  # noqa: E402
from app.core.database import engine  # noqa: E402
from app.core.errors import GatewayError  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.gateways import GatewayRegistry, get_gateways  # noqa: E402
from app.gateways.base import (  # noqa: E402
    EVENT_CAPTURED,
    EVENT_FAILED,
    EVENT_IGNORED,
    GatewayAdapter,
    RemoteIntent,
    RemoteRefund,
    WebhookEvent,
)
from app.main import app  # noqa: E402
from app.models import InventoryItem, Product, ProductFile  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}
BUYER_EMAIL = "buyer@example.com"


class FakeGateway(GatewayAdapter):
    """Ağ çağrısı yapmayan sağlayıcı; webhook gövdesi düz JSON olay."""

    def __init__(self, name: str, signature_error_status: int = 400):
        self.name = name
        self.signature_error_status = signature_error_status
        self.webhook_secret = f"{name}-secret"
        self.signature_valid = True
        self.intent_error: str | None = None
        self.refund_error: str | None = None
        self.refund_status = "succeeded"
        self.intents: list[dict] = []
        self.refunds: list[dict] = []

    def create_remote_intent(self, amount_minor, currency, correlation_id, metadata=None):
        if self.intent_error:
            raise GatewayError(self.intent_error, gateway=self.name)
        self.intents.append({"amount": amount_minor, "currency": currency, "correlation_id": correlation_id, "metadata": metadata})
        n = len(self.intents)
        return RemoteIntent(remote_id=f"{self.name}_intent_{n}", client_secret_or_approval_url=f"secret_{n}")

    def verify_webhook_signature(self, raw_body, headers, secret):
        return self.signature_valid and secret == self.webhook_secret

    def create_remote_refund(self, remote_charge_id, amount_minor, currency, reason=None):
        self.refunds.append({"charge": remote_charge_id, "amount": amount_minor, "currency": currency, "reason": reason})
        if self.refund_error:
            raise GatewayError(self.refund_error, gateway=self.name)
        return RemoteRefund(remote_refund_id=f"{self.name}_refund_{len(self.refunds)}", status=self.refund_status)

    def parse_event(self, raw_body):
        data = json.loads(raw_body)
        kind = data.get("kind", EVENT_CAPTURED)
        if kind not in (EVENT_CAPTURED, EVENT_FAILED):
            kind = EVENT_IGNORED
        return WebhookEvent(
            kind=kind,
            event_type=data.get("type", kind),
            transaction_number=data.get("transaction_number"),
            order_id=data.get("order_id"),
            external_id=data.get("external_id"),
            amount_minor=data.get("amount"),
            currency=data.get("currency"),
            raw=data,
        )


class RecordingMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.error: Exception | None = None

    def __call__(self, to_email, order_id, fulfillment_text, amount_minor, currency):
        if self.error:
            raise self.error
        self.sent.append({"to": to_email, "order_id": order_id, "text": fulfillment_text, "amount": amount_minor, "currency": currency})
        return True


@pytest.fixture(autouse=True)
def _fresh_db():
    """Her test boş tablolarla ve sıfırlanmış rate limit sayaçlarıyla başlar."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def stripe_gateway():
    return FakeGateway("stripe", signature_error_status=400)


@pytest.fixture
def paypal_gateway():
    return FakeGateway("paypal", signature_error_status=401)


@pytest.fixture
def gateways(stripe_gateway, paypal_gateway):
    return GatewayRegistry({"stripe": stripe_gateway, "paypal": paypal_gateway})


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(gateways, mailer):
    """TestClient; sağlayıcılar ve mailer dependency override ile sahte."""
    app.dependency_overrides[get_gateways] = lambda: gateways
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_product(db):
    def _make(price=5000, product_type="license_code", codes=0, **fields):
        product = Product(name=fields.pop("name", f"Ürün {product_type}"), price=price, product_type=product_type, **fields)
        db.add(product)
        db.commit()
        db.refresh(product)
        if codes:
            db.add_all([InventoryItem(product_id=product.id, license_code=f"KEY-{product.id}-{i}") for i in range(codes)])
            db.commit()
        if product_type == "digital":
            db.add(ProductFile(product_id=product.id, file_key=f"files/{product.id}.zip", file_name="urun.zip"))
            db.commit()
        return product

    return _make


@pytest.fixture
def place_order(client):
    """HTTP üzerinden misafir taslak siparişi."""
    def _place(product_id, quantity=1, email=BUYER_EMAIL):
        r = client.post("/api/orders", json={"product_id": product_id, "quantity": quantity, "customer_email": email})
        assert r.status_code == 201, r.text
        return r.json()

    return _place


@pytest.fixture
def create_intent(client):
    def _intent(order_id, method="stripe", email=BUYER_EMAIL):
        r = client.post(f"/api/payments/{method}/intent", params={"email": email}, json={"order_id": order_id})
        assert r.status_code == 200, r.text
        return r.json()

    return _intent


@pytest.fixture
def send_webhook(client):
    def _send(method, transaction_number, amount, order_id=None, kind=EVENT_CAPTURED, external_id="ext_capture_1", currency=None):
        body = {
            "kind": kind,
            "transaction_number": transaction_number,
            "order_id": order_id,
            "external_id": external_id,
            "amount": amount,
            "currency": currency,
        }
        return client.post(f"/api/payments/{method}/webhook", content=json.dumps(body).encode())

    return _send

import hashlib
import hmac
import json

import pytest

from app import create_app
from config import Settings
from db import Database
from db.models import create_user, get_user
from utils.security import encode_password

WEBHOOK_SECRET = "teste123"


class FakeReportClient:
    def __init__(self, ok=True):
        self.ok = ok
        self.calls = []

    def analyze_idea(self, query, model="free"):
        self.calls.append((query, model))
        if not self.ok:
            return {"ok": False, "error": "OpenAI fora do ar"}
        return {"ok": True, "report": {
            "executiveSummary": "Vale a pena.",
            "score": {"total": 72, "volume": 20, "intensity": 20, "gap": 18, "momentum": 14,
                      "interpretation": "Alta"},
            "query": query,
            "modelUsed": model,
        }}


@pytest.fixture(autouse=True)
def _mock_ai(monkeypatch):
    monkeypatch.setenv("MOCK_AI", "1")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'clarid.db'}",
        secret_key="test-secret",
        kiwify_webhook_secret=WEBHOOK_SECRET,
        free_credits=3,
        payment_provider="mock",
        rate_limit_per_minute=1000,
        rate_limit_min_interval_ms=0,
        setup_token="setup",
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    database.init_schema()
    return database


@pytest.fixture
def report_client():
    return FakeReportClient()


@pytest.fixture
def app(settings, db, report_client):
    return create_app(settings, report_client=report_client)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(db):
    def _make(email="a@b.com", credits=5, tier="free", password="senha123"):
        user_id = create_user(db, email=email, password_hash=encode_password(password),
                              credits=credits, tier=tier)
        return get_user(db, user_id)
    return _make


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def order_event(event="order_paid", order_id="ord_1", email="a@b.com", product_id="prod_50_creditos",
                price=49.9, **extra):
    payload = {
        "event": event,
        "order_id": order_id,
        "customer": {"email": email, "name": "Ana"},
        "product": {"id": product_id, "name": product_id, "price": price},
        "payment": {"method": "pix", "status": "paid"},
        "created_at": "2025-01-01T12:00:00Z",
    }
    payload.update(extra)
    return payload


@pytest.fixture
def post_event(client):
    def _post(payload, signature=None, secret=WEBHOOK_SECRET):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        headers = {}
        if signature is None and secret:
            signature = sign(body, secret)
        if signature:
            headers["x-kiwify-signature"] = signature
        return client.post("/webhooks/kiwify", data=body, headers=headers, content_type="application/json")
    return _post

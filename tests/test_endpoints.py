from conftest import FakeReportClient
from app import create_app
from config import Settings
from db.models import create_user, get_user, list_transactions
from utils.security import encode_password, make_token


def _auth(user_id, secret="test-secret"):
    return {"Authorization": f"Bearer {make_token(secret, user_id)}"}


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["status"] == "ok"


def test_register_login_and_profile(client):
    r = client.post("/auth/register", json={"email": " Ana@B.com ", "password": "segredo", "full_name": "Ana"})
    assert r.status_code == 200
    assert r.json["granted_credits"] == 3

    assert client.post("/auth/register", json={"email": "ana@b.com", "password": "x"}).status_code == 409
    assert client.post("/auth/login", json={"email": "ana@b.com", "password": "errada"}).status_code == 401

    r = client.post("/auth/login", json={"email": "ANA@b.com", "password": "segredo"})
    assert r.status_code == 200
    token = r.json["token"]

    r = client.get("/user/profile", headers={"Authorization": f"Bearer {token}"})
    data = r.json["data"]
    assert data["logged_in"] is True
    assert (data["email"], data["credits"], data["credits_used"], data["tier"]) == ("ana@b.com", 3, 0, "free")


def test_profile_anonymous(client):
    r = client.get("/user/profile", headers={"Authorization": "Bearer 1.forjado"})
    assert r.json["data"] == {"logged_in": False, "history": []}


def test_analyze_requires_login(client, report_client):
    r = client.post("/analyze", json={"query": "delivery de marmitas fit"})
    assert r.status_code == 401
    assert report_client.calls == []


def test_analyze_spends_one_credit(client, db, make_user, report_client):
    user = make_user(credits=2)
    r = client.post("/analyze", json={"query": "delivery de marmitas fit"}, headers=_auth(user.id))
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["report"]["score"]["total"] == 72
    assert r.json["credits_remaining"] == 1
    assert report_client.calls == [("delivery de marmitas fit", "free")]

    after = get_user(db, user.id)
    assert (after.credits, after.credits_used) == (1, 1)
    history = client.get("/user/profile", headers=_auth(user.id)).json["data"]["history"]
    assert [h["query"] for h in history] == ["delivery de marmitas fit"]


def test_analyze_without_credits_does_not_call_model(client, db, make_user, report_client):
    user = make_user(credits=0)
    r = client.post("/analyze", json={"query": "app de pets"}, headers=_auth(user.id))
    assert r.status_code == 402
    assert "créditos suficientes" in r.json["error"]
    assert report_client.calls == []
    assert get_user(db, user.id).credits_used == 0


def test_analyze_failure_keeps_credit_spent(settings, db, make_user):
    failing = FakeReportClient(ok=False)
    client = create_app(settings, report_client=failing).test_client()
    user = make_user(credits=1)
    r = client.post("/analyze", json={"query": "app de pets"}, headers=_auth(user.id))
    assert r.status_code == 502
    assert get_user(db, user.id).credits == 0


def test_analyze_model_gated_by_tier(client, make_user, report_client):
    free_user = make_user(email="free@b.com", credits=3)
    r = client.post("/analyze", json={"query": "x", "model": "opus"}, headers=_auth(free_user.id))
    assert r.status_code == 403

    pro_user = make_user(email="pro@b.com", credits=3, tier="pro")
    r = client.post("/analyze", json={"query": "x", "model": "pro"}, headers=_auth(pro_user.id))
    assert r.status_code == 200
    assert report_client.calls == [("x", "pro")]


def test_analyze_empty_query(client, make_user):
    user = make_user(credits=1)
    r = client.post("/analyze", json={"query": "   "}, headers=_auth(user.id))
    assert r.status_code == 400


def test_analyze_rate_limited(tmp_path, make_user, report_client):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'clarid.db'}", secret_key="test-secret",
                        rate_limit_per_minute=1, rate_limit_min_interval_ms=0)
    client = create_app(settings, report_client=report_client).test_client()
    user = make_user(credits=5)
    assert client.post("/analyze", json={"query": "a"}, headers=_auth(user.id)).status_code == 200
    assert client.post("/analyze", json={"query": "b"}, headers=_auth(user.id)).status_code == 429


def test_rate_limit_keys_on_first_forwarded_hop(tmp_path, make_user, report_client):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'clarid.db'}", secret_key="test-secret",
                        rate_limit_per_minute=1, rate_limit_min_interval_ms=0)
    client = create_app(settings, report_client=report_client).test_client()
    user = make_user(credits=5)

    def post(forwarded):
        headers = {**_auth(user.id), "X-Forwarded-For": forwarded}
        return client.post("/analyze", json={"query": "a"}, headers=headers).status_code

    assert post("1.1.1.1, 10.0.0.1") == 200
    # lixo diferente depois do primeiro hop não abre janela nova
    assert post("1.1.1.1, 10.0.0.2") == 429
    assert post("2.2.2.2") == 200


def test_mock_purchase_credits_through_webhook_pipeline(client, db, make_user):
    user = make_user(credits=0)
    r = client.post("/purchase", json={"product_id": "prod-100-creditos"}, headers=_auth(user.id))
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["checkout"]["status"] == "paid"
    assert get_user(db, user.id).credits == 100
    (row,) = list_transactions(db, email=user.email)
    assert row.order_id == r.json["checkout"]["order_id"]


def test_kiwify_purchase_returns_checkout_url(settings, db, make_user, report_client):
    settings.payment_provider = "kiwify"
    client = create_app(settings, report_client=report_client).test_client()
    user = make_user(email="ana@b.com", credits=0)
    r = client.post("/purchase", json={"product_id": "prod_plano_pro"}, headers=_auth(user.id))
    checkout = r.json["checkout"]
    assert checkout["status"] == "redirect"
    assert checkout["checkout_url"].startswith("https://pay.kiwify.com.br/n9tcsfk?")
    assert "email=ana%40b.com" in checkout["checkout_url"]
    assert get_user(db, user.id).credits == 0


def test_purchase_defaults_to_real_checkout(tmp_path, db, make_user, report_client, monkeypatch):
    monkeypatch.delenv("PAYMENT_PROVIDER", raising=False)
    assert Settings.from_env().payment_provider == "kiwify"

    settings = Settings(database_url=f"sqlite:///{tmp_path / 'clarid.db'}", secret_key="test-secret")
    client = create_app(settings, report_client=report_client).test_client()
    user = make_user(credits=0)
    r = client.post("/purchase", json={"product_id": "prod_plano_opus"}, headers=_auth(user.id))
    assert r.json["checkout"]["status"] == "redirect"
    assert get_user(db, user.id).credits == 0
    assert list_transactions(db) == []


def test_purchase_requires_login(client):
    assert client.post("/purchase", json={}).status_code == 401


def test_admin_ensure_schema(client):
    assert client.get("/__admin/ensure_schema?token=errado").status_code == 403
    r = client.get("/__admin/ensure_schema?token=setup")
    assert r.json == {"ok": True}


def test_cli_replay_pending(app, db, post_event):
    post_event({"event": "order_paid", "order_id": "ord_cli", "customer": {"email": "novo@b.com"},
                "product": {"id": "prod_50_creditos", "price": 49.9}})
    user_id = create_user(db, email="novo@b.com", password_hash=encode_password("x"), credits=0)

    result = app.test_cli_runner().invoke(args=["replay-pending", "novo@b.com"])
    assert result.exit_code == 0
    assert "[ok] 50 créditos adicionados com sucesso" in result.output
    assert get_user(db, user_id).credits == 50

import json
import logging

from conftest import order_event, sign
from app import create_app
from db.models import get_user, list_transactions
from payments.kiwify import verify_signature


def test_options_preflight(client):
    r = client.options("/webhooks/kiwify")
    assert r.status_code == 204
    assert r.data == b""
    assert r.headers["Access-Control-Allow-Origin"] == "*"
    assert "x-kiwify-signature" in r.headers["Access-Control-Allow-Headers"]


def test_other_methods_not_allowed(client, db):
    for method in (client.get, client.put, client.delete):
        r = method("/webhooks/kiwify")
        assert r.status_code == 405
        assert r.json == {"error": "Método não permitido"}
    assert list_transactions(db) == []


def test_end_to_end_order_paid(post_event, db, make_user):
    user = make_user(email="a@b.com", credits=5)
    payload = order_event()

    r = post_event(payload)
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["message"] == "50 créditos adicionados com sucesso"
    assert r.json["data"]["credits_added"] == 50
    assert r.json["data"]["new_balance"] == 55

    r = post_event(payload)
    assert r.status_code == 200
    assert r.json == {"success": True, "message": "Pedido já processado anteriormente"}
    assert get_user(db, user.id).credits == 55


def test_wrong_signature_same_length_is_rejected(post_event, db, make_user):
    user = make_user(credits=5)
    body = json.dumps(order_event()).encode()
    good = sign(body)
    bad = ("0" if good[0] != "0" else "1") + good[1:]

    r = post_event(body, signature=bad)
    assert r.status_code == 401
    assert r.json == {"error": "Assinatura inválida"}
    assert get_user(db, user.id).credits == 5
    assert list_transactions(db) == []


def test_missing_signature_is_rejected(post_event, db, make_user):
    make_user(credits=5)
    r = post_event(order_event(), secret="")
    assert r.status_code == 401
    assert list_transactions(db) == []


def test_signature_covers_exact_raw_body(post_event, make_user):
    make_user(credits=5)
    # mesma semântica JSON, bytes diferentes
    body = json.dumps(order_event(), indent=2).encode()
    compact_sig = sign(json.dumps(order_event()).encode())
    assert post_event(body, signature=compact_sig).status_code == 401
    assert post_event(body, signature=sign(body)).status_code == 200


def test_insecure_mode_accepts_and_warns(settings, db, make_user, caplog):
    settings.kiwify_webhook_secret = ""
    client = create_app(settings).test_client()
    user = make_user(credits=0)
    with caplog.at_level(logging.WARNING):
        r = client.post("/webhooks/kiwify", data=json.dumps(order_event(product_id="prod_10_creditos")),
                        content_type="application/json")
    assert r.status_code == 200
    assert get_user(db, user.id).credits == 10
    assert any("pulando verificação" in rec.getMessage() for rec in caplog.records)


def test_malformed_body_is_500(post_event, db):
    r = post_event(b"{not json")
    assert r.status_code == 500
    assert r.json["success"] is False
    assert r.json["error"]
    assert list_transactions(db) == []


def test_missing_fields_is_500(post_event):
    r = post_event({"event": "order_paid", "order_id": "ord_1"})
    assert r.status_code == 500
    assert "customer.email" in r.json["error"]


def test_pending_account_still_answers_200(post_event, db):
    r = post_event(order_event(email="novo@b.com"))
    assert r.status_code == 200
    assert r.json["success"] is False
    assert r.json["data"] == {"pending": True, "email": "novo@b.com", "credits": 50}
    (row,) = list_transactions(db)
    assert (row.status, row.credits_added) == ("failed", 0)


def test_unknown_event_passes_through(post_event, db, make_user):
    user = make_user(credits=5)
    r = post_event({"event": "pix_gerado", "order_id": "ord_9"})
    assert r.status_code == 200
    assert r.json == {"success": True, "message": "Evento pix_gerado ignorado"}
    assert list_transactions(db) == []
    assert get_user(db, user.id).credits == 5


def test_verify_signature_unit():
    body = b'{"event":"order_paid"}'
    assert verify_signature(body, sign(body, "s"), "s") is True
    assert verify_signature(body, sign(body, "s").upper(), "s") is True
    assert verify_signature(body, sign(body, "s")[:-1], "s") is False
    assert verify_signature(body, None, "s") is False
    assert verify_signature(body, None, "") is True

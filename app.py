from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

import click
from flask import Flask, jsonify, request

from config import Settings
from db import Database
from db.models import (
    create_user,
    get_password_hash,
    get_user,
    get_user_by_email,
    list_analyses,
    normalize_email,
)
from payments import get_payment_provider
from payments.events import parse_event
from payments.kiwify import CORS_HEADERS, SIGNATURE_HEADER, verify_signature
from payments.products import ProductCatalog
from payments.webhook import process_event, replay_pending
from services.credits import spend_and_analyze
from services.report_client import MODEL_FREE, ReportClient
from utils.rate_limit import SimpleRateLimiter
from utils.security import check_password, encode_password, make_token, parse_token

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None,
               report_client: Optional[ReportClient] = None,
               catalog: Optional[ProductCatalog] = None) -> Flask:
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key

    # Banco e colaboradores: instâncias explícitas, sem globais de módulo
    db = Database(settings.database_url)
    db.init_schema()
    logger.info("[BOOT] DB inicializado.")

    catalog = catalog or ProductCatalog()
    ai_client = report_client or ReportClient()
    rate_limiter = SimpleRateLimiter(
        window_s=60,
        max_requests=settings.rate_limit_per_minute,
        min_interval_s=settings.rate_limit_min_interval_ms / 1000.0,
    )
    app.extensions["clarid"] = {"settings": settings, "db": db, "catalog": catalog, "ai": ai_client}

    if not settings.kiwify_webhook_secret:
        logger.warning("[BOOT] KIWIFY_WEBHOOK_SECRET vazio: webhook em modo inseguro.")
    if settings.payment_provider == "mock":
        logger.warning("[BOOT] PAYMENT_PROVIDER=mock: /purchase credita sem pagamento (somente dev).")

    # ==========================================================
    # Helpers de auth
    # ==========================================================
    def require_auth_maybe(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            auth = request.headers.get("Authorization", "")
            user_id = None
            if auth.startswith("Bearer "):
                user_id = parse_token(settings.secret_key, auth.replace("Bearer ", "", 1).strip())
            return fn(user_id, *args, **kwargs)
        return wrapper

    def rate_limit(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            forwarded = request.headers.get("X-Forwarded-For", "")
            key = forwarded.split(",")[0].strip() or request.remote_addr or "unknown"
            if not rate_limiter.allow(key):
                return jsonify({"ok": False, "error": "Muitas requisições. Tente novamente em instantes."}), 429
            return fn(*args, **kwargs)
        return wrapper

    def _login_required():
        return jsonify({"ok": False, "error": "Crie uma conta gratuita para realizar sua análise de mercado."}), 401

    # ==========================================================
    # Operação
    # ==========================================================
    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "time": datetime.now(timezone.utc).isoformat()})

    @app.get("/__admin/ensure_schema")
    def admin_ensure_schema():
        token = request.args.get("token")
        if not settings.setup_token or token != settings.setup_token:
            return jsonify({"ok": False, "error": "Forbidden"}), 403
        try:
            db.init_schema()
            with db.db_cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        except db.errors as e:
            logger.exception("[ADMIN] ensure_schema falhou")
            return jsonify({"ok": False, "error": str(e)}), 500
        return jsonify({"ok": True})

    # ==========================================================
    # Auth
    # ==========================================================
    @app.post("/auth/register")
    def auth_register():
        data = request.get_json(silent=True) or {}
        email = normalize_email(data.get("email"))
        password = data.get("password") or ""
        if not email or not password:
            return jsonify({"ok": False, "error": "Email e senha são obrigatórios."}), 400
        if get_user_by_email(db, email):
            return jsonify({"ok": False, "error": "Email já cadastrado."}), 409

        user_id = create_user(
            db,
            email=email,
            password_hash=encode_password(password),
            credits=settings.free_credits,
            full_name=(data.get("full_name") or "").strip() or None,
        )
        return jsonify({
            "ok": True,
            "token": make_token(settings.secret_key, user_id),
            "user_id": user_id,
            "granted_credits": settings.free_credits,
        })

    @app.post("/auth/login")
    def auth_login():
        data = request.get_json(silent=True) or {}
        email = normalize_email(data.get("email"))
        password = data.get("password") or ""
        if not email or not password:
            return jsonify({"ok": False, "error": "Email e senha são obrigatórios."}), 400
        user = get_user_by_email(db, email)
        if not user or not check_password(password, get_password_hash(db, user.id)):
            return jsonify({"ok": False, "error": "Credenciais inválidas."}), 401
        return jsonify({"ok": True, "token": make_token(settings.secret_key, user.id), "user_id": user.id})

    @app.get("/user/profile")
    @require_auth_maybe
    def user_profile(user_id: Optional[int]):
        user = get_user(db, user_id) if user_id else None
        if not user:
            return jsonify({"ok": True, "data": {"logged_in": False, "history": []}})
        return jsonify({"ok": True, "data": {
            "logged_in": True,
            "email": user.email,
            "full_name": user.full_name,
            "credits": user.credits,
            "credits_used": user.credits_used,
            "tier": user.tier,
            "subscription_id": user.subscription_id,
            "history": list_analyses(db, user.id),
        }})

    # ==========================================================
    # Análise (gasta 1 crédito)
    # ==========================================================
    @app.post("/analyze")
    @rate_limit
    @require_auth_maybe
    def analyze(user_id: Optional[int]):
        user = get_user(db, user_id) if user_id else None
        if not user:
            return _login_required()
        data = request.get_json(silent=True) or {}
        query = (data.get("query") or "").strip()
        if not query:
            return jsonify({"ok": False, "error": "Descreva sua ideia de negócio."}), 400
        model = (data.get("model") or MODEL_FREE).strip().lower()

        result = spend_and_analyze(db, ai_client, user, query, model)
        if result["ok"]:
            return jsonify(result)
        status = {"model_locked": 403, "no_credits": 402, "ai_failed": 502}[result["reason"]]
        return jsonify({"ok": False, "error": result["error"]}), status

    # ==========================================================
    # Pagamentos (checkout + webhook Kiwify)
    # ==========================================================
    @app.post("/purchase")
    @require_auth_maybe
    def purchase(user_id: Optional[int]):
        user = get_user(db, user_id) if user_id else None
        if not user:
            return jsonify({"ok": False, "error": "É necessário login para comprar créditos."}), 401
        data = request.get_json(silent=True) or {}
        product_id = (data.get("product_id") or "prod_10_creditos").strip()
        provider = get_payment_provider(settings, db, catalog)
        checkout = provider.start_checkout(user, product_id)
        return jsonify({"ok": checkout.get("ok", False), "checkout": checkout})

    def _webhook_response(payload: dict, status: int):
        resp = jsonify(payload)
        resp.status_code = status
        resp.headers.update(CORS_HEADERS)
        return resp

    @app.route("/webhooks/kiwify", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    def webhook_kiwify():
        """
        - OPTIONS: 204 com CORS.
        - Só POST processa; o resto é 405 sem efeito colateral.
        - Assinatura HMAC do corpo bruto antes de qualquer parse.
        - Todo resultado roteado (inclusive falha declarada) responde 200.
        """
        if request.method == "OPTIONS":
            return "", 204, CORS_HEADERS
        if request.method != "POST":
            return _webhook_response({"error": "Método não permitido"}, 405)

        try:
            raw = request.get_data(cache=False)
            if not verify_signature(raw, request.headers.get(SIGNATURE_HEADER), settings.kiwify_webhook_secret):
                logger.error("[WEBHOOK] Assinatura inválida do webhook.")
                return _webhook_response({"error": "Assinatura inválida"}, 401)

            event = parse_event(raw)
            result = process_event(db, catalog, event)
            return _webhook_response(result.to_dict(), 200)
        except Exception as e:
            logger.exception("[WEBHOOK] Erro no webhook")
            return _webhook_response({"success": False, "error": str(e) or "Erro interno"}, 500)

    # ==========================================================
    # CLI (flask --app wsgi <comando>)
    # ==========================================================
    @app.cli.command("init-db")
    def init_db_command():
        """Cria as tabelas se não existirem."""
        db.init_schema()
        click.echo("Schema ok.")

    @app.cli.command("replay-pending")
    @click.argument("email")
    def replay_pending_command(email: str):
        """Reprocessa compras pendentes do email (pagamento antes do cadastro)."""
        results = replay_pending(db, catalog, email)
        if not results:
            click.echo(f"Nenhuma compra pendente para {email}.")
        for r in results:
            click.echo(f"[{'ok' if r.success else 'falha'}] {r.message}")

    return app

import json
import logging
from typing import Any, Dict

from db import Database
from db.models import UserAccount, get_user, record_analysis
from services.ledger import CreditLedger
from services.report_client import MODEL_FREE, MODEL_GPT4, MODEL_OPUS, MODEL_PRO, ReportClient

logger = logging.getLogger(__name__)

# Modelos liberados por tier
TIER_MODELS = {
    "free": (MODEL_FREE,),
    "pro": (MODEL_FREE, MODEL_PRO, MODEL_GPT4),
    "opus": (MODEL_FREE, MODEL_PRO, MODEL_GPT4, MODEL_OPUS),
}

MSG_NO_CREDITS = "Você não possui créditos suficientes. Faça um upgrade para continuar."
MSG_MODEL_LOCKED = "Modelo indisponível para o seu plano. Faça um upgrade para usá-lo."


def model_allowed(tier: str, model: str) -> bool:
    return model in TIER_MODELS.get(tier, TIER_MODELS["free"])


def spend_and_analyze(db: Database, ai_client: ReportClient, user: UserAccount,
                      query: str, model: str = MODEL_FREE) -> Dict[str, Any]:
    """
    Debita 1 crédito e, só se o débito passar, gera o relatório.
    Se a IA falhar depois do débito o crédito NÃO é devolvido.
    Retorna {ok, report, credits_remaining} ou {ok: False, reason, error}.
    """
    if not model_allowed(user.tier, model):
        return {"ok": False, "reason": "model_locked", "error": MSG_MODEL_LOCKED}

    if not CreditLedger(db).debit(user.id):
        return {"ok": False, "reason": "no_credits", "error": MSG_NO_CREDITS}

    result = ai_client.analyze_idea(query, model)
    if not result.get("ok"):
        logger.warning("[ANALYZE] IA falhou para user_id=%s após débito", user.id)
        return {"ok": False, "reason": "ai_failed", "error": result.get("error", "Falha na análise de IA.")}

    report = result["report"]
    try:
        record_analysis(db, user_id=user.id, query=query, model=model,
                        score_total=int(report["score"]["total"]), report=json.dumps(report, ensure_ascii=False))
    except db.errors:
        # o relatório já foi pago; histórico é secundário
        logger.exception("[ANALYZE] Falha ao gravar histórico de user_id=%s", user.id)

    fresh = get_user(db, user.id)
    return {
        "ok": True,
        "report": report,
        "credits_remaining": fresh.credits if fresh else 0,
    }

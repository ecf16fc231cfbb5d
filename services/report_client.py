# services/report_client.py
# CLARID: cliente do modelo que gera o relatório de viabilidade
# Requisitos: pip install openai
# Variáveis de ambiente:
#   - OPENAI_API_KEY           (obrigatória fora do modo mock)
#   - OPENAI_MODEL_FREE / _PRO / _OPUS / _GPT4 (opcionais)

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

logger = logging.getLogger(__name__)

# Opções de modelo expostas ao usuário
MODEL_FREE = "free"
MODEL_PRO = "pro"
MODEL_OPUS = "opus"
MODEL_GPT4 = "gpt4"

MODEL_LABELS = {
    MODEL_FREE: "Gemini 2.0 Flash",
    MODEL_PRO: "Gemini 2.0 Pro",
    MODEL_OPUS: "Opus 4.5",
    MODEL_GPT4: "GPT-4o",
}

_SYSTEM_PROMPT = (
    "Você é o 'Clarid', um validador de ideias de negócio de nível mundial. "
    "Valide a ideia do usuário simulando uma pesquisa ampla em Reddit, Twitter, LinkedIn e fóruns brasileiros.\n"
    "1. Refine o nicho: se a entrada for vaga, assuma um subnicho específico e viável no Brasil.\n"
    "2. Procure reclamações, frustração, disposição a pagar e concorrentes existentes.\n"
    "3. Pontuação 0-100: Volume (0-30), Intensidade da dor (0-25), Lacuna de mercado (0-25), Momento (0-20).\n"
    "4. Concorrentes diretos e indiretos no mercado brasileiro.\n"
    "Responda EM JSON puro, SEM comentários, no formato:\n"
    "{\n"
    '  "executiveSummary": "3 a 5 linhas: vale a pena?",\n'
    '  "score": {"total": 0, "volume": 0, "intensity": 0, "gap": 0, "momentum": 0, "interpretation": "Alta|Moderada|Baixa"},\n'
    '  "evidence": [{"text": "...", "source": "...", "date": "..."}],\n'
    '  "potential": {"monetization": {"score": 0, "explanation": "..."}, '
    '"execution": {"score": 0, "explanation": "..."}, "defensibility": {"score": 0, "explanation": "..."}},\n'
    '  "competitors": {"list": [{"name": "...", "description": "...", "type": "Direct|Indirect", "weakness": "..."}], '
    '"marketStatus": "...", "isSaturated": false},\n'
    '  "sources": [{"name": "...", "count": 0}],\n'
    '  "alternatives": [{"title": "...", "description": "..."}]\n'
    "}\n"
    "Seja honesto e direto. Se a ideia for ruim ou saturada, diga no resumo. "
    "Priorize o contexto brasileiro (sites .br, Reclame Aqui etc.)."
)

# teto de cada componente do score
_SCORE_CAPS = {"total": 100, "volume": 30, "intensity": 25, "gap": 25, "momentum": 20}


def _clamp(v: Any, hi: int, default: int = 0) -> int:
    try:
        i = int(round(float(v)))
    except (TypeError, ValueError):
        return default
    return max(0, min(hi, i))


def _as_list(v: Any) -> List[Any]:
    if isinstance(v, list):
        return v
    return [] if v in (None, "") else [v]


def _metric(v: Any) -> Dict[str, Any]:
    v = v if isinstance(v, dict) else {}
    return {"score": _clamp(v.get("score"), 100), "explanation": str(v.get("explanation") or "")}


def normalize_report(data: Dict[str, Any]) -> Dict[str, Any]:
    """Saneamento mínimo do JSON do modelo (tipos e faixas do score)."""
    score = data.get("score") if isinstance(data.get("score"), dict) else {}
    potential = data.get("potential") if isinstance(data.get("potential"), dict) else {}
    competitors = data.get("competitors") if isinstance(data.get("competitors"), dict) else {}

    out_score = {k: _clamp(score.get(k), cap) for k, cap in _SCORE_CAPS.items()}
    if not score.get("total"):
        out_score["total"] = min(100, sum(out_score[k] for k in ("volume", "intensity", "gap", "momentum")))
    out_score["interpretation"] = str(score.get("interpretation") or "")

    return {
        "executiveSummary": str(data.get("executiveSummary") or ""),
        "score": out_score,
        "evidence": [e for e in _as_list(data.get("evidence")) if isinstance(e, dict)],
        "potential": {k: _metric(potential.get(k)) for k in ("monetization", "execution", "defensibility")},
        "competitors": {
            "list": [c for c in _as_list(competitors.get("list")) if isinstance(c, dict)],
            "marketStatus": str(competitors.get("marketStatus") or ""),
            "isSaturated": bool(competitors.get("isSaturated")),
        },
        "sources": [s for s in _as_list(data.get("sources")) if isinstance(s, dict)],
        "alternatives": [a for a in _as_list(data.get("alternatives")) if isinstance(a, dict)],
    }


def _parse_model_json(s: str) -> Dict[str, Any]:
    """
    Extrai o JSON da resposta (tolera bloco ```json ... ```).
    Levanta ValueError se não houver JSON utilizável.
    """
    s = (s or "").strip()
    if s.startswith("```"):
        for chunk in s.split("```"):
            chunk = (chunk or "").strip()
            if chunk.startswith("json"):
                chunk = chunk[4:].strip()
            if chunk.startswith("{") and chunk.endswith("}"):
                s = chunk
                break
    data = json.loads(s)
    if not isinstance(data, dict):
        raise ValueError("Resposta do modelo não é um objeto JSON")
    return data


class ReportClient:
    """
    - Nunca levanta exceção para o chamador: sempre retorna dict {ok: bool, ...}.
    - Sem OPENAI_API_KEY, ou com MOCK_AI=1, responde um relatório simulado.
    """

    def __init__(self):
        self.api_key = os.environ.get("OPENAI_API_KEY", "").strip()
        self.models = {
            MODEL_FREE: os.environ.get("OPENAI_MODEL_FREE", "gpt-4o-mini"),
            MODEL_PRO: os.environ.get("OPENAI_MODEL_PRO", "gpt-4o"),
            MODEL_OPUS: os.environ.get("OPENAI_MODEL_OPUS", "gpt-4o"),
            MODEL_GPT4: os.environ.get("OPENAI_MODEL_GPT4", "gpt-4o"),
        }
        self.request_timeout_s = float(os.environ.get("OPENAI_TIMEOUT_S", "60"))
        self.retries = int(os.environ.get("OPENAI_RETRIES", "2"))
        self.retry_backoff_s = float(os.environ.get("OPENAI_BACKOFF_S", "1.2"))
        self.mock = os.environ.get("MOCK_AI", "").lower() in ("1", "true", "yes", "on")

        self.client = None
        if self.api_key and not self.mock:
            self.client = OpenAI(api_key=self.api_key, timeout=self.request_timeout_s)

    @staticmethod
    def _err(msg: str) -> Dict[str, Any]:
        return {"ok": False, "error": msg}

    def _mock_report(self, query: str) -> Dict[str, Any]:
        return normalize_report({
            "executiveSummary": f"Análise simulada (mock) para “{query}”. Demanda moderada e concorrência fragmentada.",
            "score": {"volume": 18, "intensity": 15, "gap": 14, "momentum": 11, "interpretation": "Moderada"},
            "evidence": [{"text": "Alguém resolve isso direito?", "source": "Reddit", "date": "2025-01-01"}],
            "potential": {
                "monetization": {"score": 60, "explanation": "Disposição a pagar existe em nichos B2B."},
                "execution": {"score": 70, "explanation": "MVP simples com ferramentas prontas."},
                "defensibility": {"score": 35, "explanation": "Baixa barreira de entrada."},
            },
            "competitors": {"list": [], "marketStatus": "Fragmentado", "isSaturated": False},
            "sources": [{"name": "Reddit", "count": 12}, {"name": "Reclame Aqui", "count": 4}],
            "alternatives": [{"title": "Versão B2B", "description": "Vender para pequenas empresas."}],
        })

    def analyze_idea(self, query: str, model: str = MODEL_FREE) -> Dict[str, Any]:
        model = model if model in self.models else MODEL_FREE
        if self.mock or self.client is None:
            report = self._mock_report(query)
        else:
            report = self._call_model(query, model)
            if report is None:
                return self._err("Falha na análise de IA.")
        report["query"] = query
        report["modelUsed"] = MODEL_LABELS[model]
        return {"ok": True, "report": report}

    def _call_model(self, query: str, model: str) -> Optional[Dict[str, Any]]:
        user_prompt = f'Analise a viabilidade desta ideia/nicho de negócio: "{query}".'
        for attempt in range(self.retries + 1):
            try:
                resp = self.client.chat.completions.create(
                    model=self.models[model],
                    messages=[
                        {"role": "system", "content": _SYSTEM_PROMPT},
                        {"role": "user", "content": user_prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.7,
                )
                text = (resp.choices[0].message.content or "").strip()
                if not text:
                    raise ValueError("Nenhuma resposta gerada")
                return normalize_report(_parse_model_json(text))
            except Exception:
                logger.exception("[AI] Falha na análise (tentativa %d/%d)", attempt + 1, self.retries + 1)
                if attempt < self.retries:
                    time.sleep(self.retry_backoff_s)
        return None

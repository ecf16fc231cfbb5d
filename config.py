import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Variável de ambiente {name} inválida: {raw!r}")


@dataclass
class Settings:
    """
    Configuração da aplicação (lida do ambiente em produção, montada à mão nos testes).
    """
    database_url: str = "sqlite:///clarid.db"
    secret_key: str = "dev-secret-clarid"
    # Vazio = modo inseguro (webhook aceito sem assinatura, com aviso no log)
    kiwify_webhook_secret: str = ""
    free_credits: int = 3
    payment_provider: str = "kiwify"
    kiwify_checkout_url: str = "https://pay.kiwify.com.br/n9tcsfk"
    rate_limit_per_minute: int = 6
    rate_limit_min_interval_ms: int = 1000
    setup_token: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DATABASE_URL", "sqlite:///clarid.db").strip(),
            secret_key=os.environ.get("SECRET_KEY", "dev-secret-clarid"),
            kiwify_webhook_secret=os.environ.get("KIWIFY_WEBHOOK_SECRET", ""),
            free_credits=_env_int("FREE_CREDITS", 3),
            payment_provider=os.environ.get("PAYMENT_PROVIDER", "kiwify").strip().lower(),
            kiwify_checkout_url=os.environ.get("KIWIFY_CHECKOUT_URL", "https://pay.kiwify.com.br/n9tcsfk"),
            rate_limit_per_minute=_env_int("RATE_LIMIT_PER_MINUTE", 6),
            rate_limit_min_interval_ms=_env_int("RATE_LIMIT_MIN_INTERVAL_MS", 1000),
            setup_token=os.environ.get("SETUP_TOKEN", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

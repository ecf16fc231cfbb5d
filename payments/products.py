# payments/products.py
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class ProductCreditRule:
    credits: int
    tier: Optional[str] = None


# IDs de produto da Kiwify -> créditos (e tier, nos planos de assinatura)
DEFAULT_PRODUCT_CREDITS: Dict[str, ProductCreditRule] = {
    # Pacotes avulsos
    "prod_10_creditos": ProductCreditRule(10),
    "prod_50_creditos": ProductCreditRule(50),
    "prod_100_creditos": ProductCreditRule(100),
    "prod_500_creditos": ProductCreditRule(500),
    # Planos
    "prod_plano_pro": ProductCreditRule(100, "pro"),
    "prod_plano_opus": ProductCreditRule(500, "opus"),
    # Fallback para produtos não mapeados
    "default": ProductCreditRule(10),
}

_SEPARATORS = re.compile(r"[\s\-._]+")


def normalize_product_id(product_id: str) -> str:
    return _SEPARATORS.sub("_", (product_id or "").strip().lower())


class ProductCatalog:
    """Tabela estática produto -> regra; só leitura em runtime."""

    def __init__(self, rules: Mapping[str, ProductCreditRule] = DEFAULT_PRODUCT_CREDITS):
        normalized = {normalize_product_id(k): v for k, v in rules.items()}
        if "default" not in normalized:
            raise ValueError("Tabela de produtos precisa de uma entrada 'default'.")
        self._rules = normalized

    def rule_for(self, product_id: str) -> ProductCreditRule:
        return self._rules.get(normalize_product_id(product_id), self._rules["default"])

    def __contains__(self, product_id: str) -> bool:
        return normalize_product_id(product_id) in self._rules

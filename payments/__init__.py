# payments/__init__.py
from config import Settings
from db import Database

from .products import ProductCatalog


def get_payment_provider(settings: Settings, db: Database, catalog: ProductCatalog):
    """
    Retorna a implementação do provedor de checkout conforme PAYMENT_PROVIDER.
    - kiwify (default): devolve a URL do checkout; o crédito chega pelo webhook.
    - mock: simula o webhook order_paid na hora (só desenvolvimento, precisa ser explícito).
    """
    if settings.payment_provider == "mock":
        from .mock import MockProvider
        return MockProvider(db, catalog)
    from .kiwify import KiwifyProvider
    return KiwifyProvider(settings.kiwify_checkout_url)

# payments/mock.py
import json
import uuid
from typing import Any, Dict

from db import Database
from db.models import UserAccount

from .events import parse_event
from .products import ProductCatalog
from .webhook import process_event


class MockProvider:
    """
    Provider fictício para desenvolvimento.
    - Gera um evento order_paid e passa pelo mesmo roteamento/auditoria do webhook.
    - NÃO usar em produção.
    """
    def __init__(self, db: Database, catalog: ProductCatalog):
        self.db = db
        self.catalog = catalog

    def start_checkout(self, user: UserAccount, product_id: str) -> Dict[str, Any]:
        order_id = f"MOCK-{uuid.uuid4().hex[:12]}"
        body = json.dumps({
            "event": "order_paid",
            "order_id": order_id,
            "customer": {"email": user.email, "name": user.full_name or ""},
            "product": {"id": product_id, "name": product_id, "price": 0},
            "payment": {"method": "mock", "status": "paid"},
        })
        result = process_event(self.db, self.catalog, parse_event(body))
        return {
            "ok": result.success,
            "status": "paid" if result.success else "failed",
            "order_id": order_id,
            "result": result.to_dict(),
        }

# payments/webhook.py
import logging
from typing import List

from db import Database

from .audit import pending_orders, record_transaction
from .events import Event, UnknownEvent, parse_event
from .handlers import HandlerResult, dispatch_event
from .products import ProductCatalog

logger = logging.getLogger(__name__)


def process_event(db: Database, catalog: ProductCatalog, event: Event) -> HandlerResult:
    """Roteia o evento e registra a auditoria (eventos desconhecidos não geram linha)."""
    if not isinstance(event, UnknownEvent):
        logger.info("[WEBHOOK] Evento Kiwify recebido: %s (pedido %s, %s, produto %s)",
                    event.event, event.order_id, event.customer.email, event.product.id)
    result = dispatch_event(db, catalog, event)
    if not isinstance(event, UnknownEvent):
        record_transaction(db, event, result)
    return result


def replay_pending(db: Database, catalog: ProductCatalog, email: str) -> List[HandlerResult]:
    """
    Reprocessa as compras pendentes do email a partir do payload bruto guardado.
    Pedidos já aplicados voltam como 'já processado' (claim por order_id).
    """
    results = []
    seen = set()
    for tx in pending_orders(db, email):
        if tx.order_id in seen or not tx.raw_payload:
            continue
        seen.add(tx.order_id)
        result = process_event(db, catalog, parse_event(tx.raw_payload))
        logger.info("[WEBHOOK] Replay do pedido %s: %s", tx.order_id, result.message)
        results.append(result)
    return results

# payments/audit.py
# Trilha de auditoria: uma linha por evento roteado. Best-effort, nunca derruba o webhook.
import logging
from typing import List

from db import Database
from db.models import CreditTransaction, insert_transaction, list_transactions

from .events import OrderEvent, PurchaseApproved, SubscriptionActivated
from .handlers import HandlerResult

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def record_transaction(db: Database, event: OrderEvent, result: HandlerResult) -> None:
    try:
        insert_transaction(db, CreditTransaction(
            user_id=result.user_id,
            order_id=event.order_id,
            product_id=event.product.id,
            product_name=event.product.name,
            amount=event.product.price,
            credits_added=result.credits_delta,
            event_type=event.event,
            status=STATUS_COMPLETED if result.success else STATUS_FAILED,
            customer_email=event.customer.email,
            raw_payload=event.raw,
            result_message=result.message,
        ))
    except Exception:
        logger.exception("[WEBHOOK] Erro ao registrar transação do pedido %s", event.order_id)


def pending_orders(db: Database, email: str) -> List[CreditTransaction]:
    """
    Compras que falharam para o email (ex.: pagamento antes do cadastro),
    candidatas a reprocessamento.
    """
    grant_events = PurchaseApproved.kinds + SubscriptionActivated.kinds
    return [
        tx for tx in list_transactions(db, email=email, status=STATUS_FAILED, limit=500)
        if tx.event_type in grant_events
    ]

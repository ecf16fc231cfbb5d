# payments/handlers.py
# Handlers por tipo de evento. Nunca levantam exceção de banco para o chamador:
# devolvem HandlerResult (success=False é falha declarada, não erro HTTP).
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from db import Database
from db.models import get_user_by_email
from services.ledger import ACTION_GRANT, ACTION_REFUND, CreditLedger, OrderRefunded

from .events import (
    Event,
    OrderEvent,
    PurchaseApproved,
    RefundRequested,
    SubscriptionActivated,
    SubscriptionCancelled,
    UnknownEvent,
)
from .products import ProductCatalog

logger = logging.getLogger(__name__)

MSG_ALREADY_PROCESSED = "Pedido já processado anteriormente"
MSG_REFUND_ALREADY_PROCESSED = "Reembolso já processado anteriormente"
MSG_ORDER_REFUNDED = "Pedido reembolsado anteriormente; créditos não adicionados"


@dataclass
class HandlerResult:
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    # conta resolvida e delta efetivamente aplicado (para a auditoria)
    user_id: Optional[int] = None
    credits_delta: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


def handle_purchase(db: Database, catalog: ProductCatalog, event: OrderEvent) -> HandlerResult:
    rule = catalog.rule_for(event.product.id)
    email = event.customer.email
    ledger = CreditLedger(db)
    try:
        # Caminho rápido; a garantia real é a PK de order_claims em apply_order
        if ledger.is_claimed(event.order_id, ACTION_GRANT):
            return HandlerResult(True, MSG_ALREADY_PROCESSED)
        if ledger.is_claimed(event.order_id, ACTION_REFUND):
            logger.warning("[WEBHOOK] Pedido %s já reembolsado; compra ignorada", event.order_id)
            return HandlerResult(True, MSG_ORDER_REFUNDED)

        profile = get_user_by_email(db, email)
        if not profile:
            # Pagamento pode chegar antes do cadastro: não criamos conta aqui
            logger.warning("[WEBHOOK] Usuário não encontrado: %s (pedido %s)", email, event.order_id)
            return HandlerResult(
                False,
                f"Usuário {email} não encontrado. Créditos serão adicionados quando criar conta.",
                data={"pending": True, "email": email, "credits": rule.credits},
            )

        change = ledger.apply_order(event.order_id, ACTION_GRANT, profile.id, rule.credits, tier=rule.tier)
    except OrderRefunded:
        logger.warning("[WEBHOOK] Pedido %s já reembolsado; compra ignorada", event.order_id)
        return HandlerResult(True, MSG_ORDER_REFUNDED, user_id=profile.id)
    except db.errors:
        logger.exception("[WEBHOOK] Erro ao atualizar créditos (pedido %s)", event.order_id)
        return HandlerResult(False, "Erro ao adicionar créditos")

    if change is None:
        return HandlerResult(True, MSG_ALREADY_PROCESSED, user_id=profile.id)

    logger.info("[WEBHOOK] Créditos adicionados: %d para %s", rule.credits, email)
    return HandlerResult(
        True,
        f"{rule.credits} créditos adicionados com sucesso",
        data={
            "user_id": profile.id,
            "credits_added": rule.credits,
            "new_balance": change.new_balance,
            "tier": change.tier,
        },
        user_id=profile.id,
        credits_delta=change.delta,
    )


def handle_subscription_activated(db: Database, catalog: ProductCatalog, event: OrderEvent) -> HandlerResult:
    # Mesmo processo da compra; depois guarda o id da assinatura
    result = handle_purchase(db, catalog, event)
    if not result.success or not event.subscription_id or result.message == MSG_ORDER_REFUNDED:
        return result

    user_id = result.user_id
    try:
        if user_id is None:
            profile = get_user_by_email(db, event.customer.email)
            user_id = profile.id if profile else None
        if user_id is not None:
            CreditLedger(db).set_subscription(user_id, event.subscription_id)
            result.user_id = user_id
    except db.errors:
        logger.exception("[WEBHOOK] Falha ao salvar subscription_id=%s", event.subscription_id)
    return result


def handle_subscription_cancelled(db: Database, catalog: ProductCatalog, event: OrderEvent) -> HandlerResult:
    email = event.customer.email
    try:
        profile = get_user_by_email(db, email)
        if not profile:
            return HandlerResult(True, "Usuário não encontrado")
        CreditLedger(db).cancel_subscription(profile.id)
    except db.errors:
        logger.exception("[WEBHOOK] Erro ao atualizar tier de %s", email)
        return HandlerResult(False, "Erro ao atualizar tier")

    logger.info("[WEBHOOK] Assinatura cancelada: %s -> tier free", email)
    return HandlerResult(
        True,
        "Assinatura cancelada, tier alterado para free",
        data={"user_id": profile.id, "new_tier": "free"},
        user_id=profile.id,
    )


def handle_refund(db: Database, catalog: ProductCatalog, event: OrderEvent) -> HandlerResult:
    rule = catalog.rule_for(event.product.id)
    email = event.customer.email
    ledger = CreditLedger(db)
    try:
        if ledger.is_claimed(event.order_id, ACTION_REFUND):
            return HandlerResult(True, MSG_REFUND_ALREADY_PROCESSED)

        profile = get_user_by_email(db, email)
        if not profile:
            # Marca o pedido mesmo sem conta: um replay posterior da compra fica bloqueado
            if not ledger.claim(event.order_id, ACTION_REFUND):
                return HandlerResult(True, MSG_REFUND_ALREADY_PROCESSED)
            logger.warning("[WEBHOOK] Reembolso sem conta para %s (pedido %s)", email, event.order_id)
            return HandlerResult(True, "Usuário não encontrado para reembolso")

        # Reembolso de plano implica cancelamento
        change = ledger.apply_order(
            event.order_id,
            ACTION_REFUND,
            profile.id,
            -rule.credits,
            tier="free" if rule.tier else None,
            clear_subscription=bool(rule.tier),
        )
    except db.errors:
        logger.exception("[WEBHOOK] Erro ao processar reembolso (pedido %s)", event.order_id)
        return HandlerResult(False, "Erro ao processar reembolso")

    if change is None:
        return HandlerResult(True, MSG_REFUND_ALREADY_PROCESSED, user_id=profile.id)

    logger.info("[WEBHOOK] Reembolso processado: %s, -%d créditos", email, rule.credits)
    return HandlerResult(
        True,
        f"Reembolso processado: {rule.credits} créditos removidos",
        data={
            "user_id": profile.id,
            "credits_removed": rule.credits,
            "new_balance": change.new_balance,
        },
        user_id=profile.id,
        credits_delta=change.delta,
    )


_HANDLERS = {
    PurchaseApproved: handle_purchase,
    SubscriptionActivated: handle_subscription_activated,
    SubscriptionCancelled: handle_subscription_cancelled,
    RefundRequested: handle_refund,
}


def dispatch_event(db: Database, catalog: ProductCatalog, event: Event) -> HandlerResult:
    if isinstance(event, UnknownEvent):
        # Kiwify pode criar tipos novos a qualquer momento: aceitamos e ignoramos
        logger.info("[WEBHOOK] Evento não processado: %s", event.event)
        return HandlerResult(True, f"Evento {event.event} ignorado")
    return _HANDLERS[type(event)](db, catalog, event)

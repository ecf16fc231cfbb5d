# payments/events.py
# Envelope tipado dos eventos da Kiwify, validado na borda do webhook.
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


class EnvelopeError(ValueError):
    """Payload malformado ou sem campos obrigatórios."""


@dataclass(frozen=True)
class Customer:
    email: str
    name: str = ""


@dataclass(frozen=True)
class Product:
    id: str
    name: str = ""
    price: float = 0


@dataclass(frozen=True)
class Payment:
    method: str = ""
    status: str = ""
    installments: Optional[int] = None


@dataclass(frozen=True)
class OrderEvent:
    event: str
    order_id: str
    customer: Customer
    product: Product
    payment: Payment
    raw: str
    subscription_id: Optional[str] = None
    created_at: Optional[str] = None


class PurchaseApproved(OrderEvent):
    kinds = ("purchase_approved", "order_paid")


class SubscriptionActivated(OrderEvent):
    kinds = ("subscription_activated", "subscription_renewed")


class SubscriptionCancelled(OrderEvent):
    kinds = ("subscription_cancelled", "subscription_expired")


class RefundRequested(OrderEvent):
    kinds = ("refund_requested", "chargeback")


@dataclass(frozen=True)
class UnknownEvent:
    event: str
    raw: str


Event = Union[PurchaseApproved, SubscriptionActivated, SubscriptionCancelled, RefundRequested, UnknownEvent]

EVENT_TYPES = {
    kind: cls
    for cls in (PurchaseApproved, SubscriptionActivated, SubscriptionCancelled, RefundRequested)
    for kind in cls.kinds
}


def _section(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = payload.get(name) or {}
    if not isinstance(value, dict):
        raise EnvelopeError(f"Campo '{name}' deve ser um objeto")
    return value


def _required(section: Dict[str, Any], key: str, label: str) -> str:
    value = section.get(key)
    if value is None or str(value).strip() == "":
        raise EnvelopeError(f"Campo obrigatório ausente: {label}")
    return str(value).strip()


def _price(value: Any) -> float:
    if value in (None, ""):
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise EnvelopeError(f"Preço inválido: {value!r}")


def parse_event(raw_body: Union[bytes, str]) -> Event:
    """
    Converte o corpo bruto no envelope tipado. Eventos desconhecidos viram
    UnknownEvent (só 'event' é exigido); conhecidos exigem order_id,
    customer.email e product.id.
    """
    try:
        raw = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        payload = json.loads(raw)
    except ValueError as e:
        raise EnvelopeError(f"JSON inválido: {e}")
    if not isinstance(payload, dict):
        raise EnvelopeError("Payload deve ser um objeto JSON")

    kind = _required(payload, "event", "event")
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        return UnknownEvent(event=kind, raw=raw)

    customer = _section(payload, "customer")
    product = _section(payload, "product")
    payment = _section(payload, "payment")

    installments = payment.get("installments")
    subscription_id = payload.get("subscription_id")
    return cls(
        event=kind,
        order_id=_required(payload, "order_id", "order_id"),
        customer=Customer(
            email=_required(customer, "email", "customer.email"),
            name=str(customer.get("name") or ""),
        ),
        product=Product(
            id=_required(product, "id", "product.id"),
            name=str(product.get("name") or ""),
            price=_price(product.get("price")),
        ),
        payment=Payment(
            method=str(payment.get("method") or ""),
            status=str(payment.get("status") or ""),
            installments=int(installments) if isinstance(installments, (int, float)) else None,
        ),
        raw=raw,
        subscription_id=str(subscription_id) if subscription_id else None,
        created_at=payload.get("created_at"),
    )

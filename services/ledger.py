# services/ledger.py
# Primitivas atômicas de saldo. Toda mutação é um único UPDATE condicional
# ou uma única transação no banco; nada de ler-somar-gravar no cliente.
import logging
from dataclasses import dataclass
from typing import Optional

from db import Database

logger = logging.getLogger(__name__)

ACTION_GRANT = "grant"
ACTION_REFUND = "refund"


class OrderRefunded(Exception):
    """O pedido já tem reembolso registrado; o crédito não pode mais ser concedido."""


@dataclass(frozen=True)
class LedgerChange:
    user_id: int
    previous_balance: int
    new_balance: int
    tier: str

    @property
    def delta(self) -> int:
        return self.new_balance - self.previous_balance


class CreditLedger:
    def __init__(self, db: Database):
        self.db = db

    # -----------------------------------------------------
    # Débito (fluxo de análise)
    # -----------------------------------------------------
    def debit(self, user_id: int) -> bool:
        """
        Consome 1 crédito: credits -1 e credits_used +1 no mesmo UPDATE.
        Retorna False (não é erro) quando o usuário não tem saldo ou não existe.
        """
        with self.db.db_cursor() as cur:
            cur.execute(
                self.db.qp(
                    "UPDATE users SET credits = credits - 1, credits_used = credits_used + 1 "
                    "WHERE id = ? AND credits > 0"
                ),
                (user_id,),
            )
            ok = cur.rowcount == 1
        if not ok:
            logger.info("[LEDGER] débito recusado para user_id=%s (sem saldo)", user_id)
        return ok

    # -----------------------------------------------------
    # Crédito (webhook)
    # -----------------------------------------------------
    def _apply(self, cur, user_id: int, amount: int, tier: Optional[str],
               clear_subscription: bool) -> Optional[LedgerChange]:
        lock = " FOR UPDATE" if self.db.is_postgres else ""
        cur.execute(self.db.qp("SELECT credits FROM users WHERE id = ?" + lock), (user_id,))
        row = cur.fetchone()
        if not row:
            return None
        previous = row["credits"] or 0

        sets = [f"credits = {self.db.floor_zero('credits + ?')}"]
        params = [amount]
        if tier:
            sets.append("tier = ?")
            params.append(tier)
        if clear_subscription:
            sets.append("subscription_id = NULL")
        params.append(user_id)
        cur.execute(self.db.qp(f"UPDATE users SET {', '.join(sets)} WHERE id = ?"), tuple(params))

        cur.execute(self.db.qp("SELECT credits, tier FROM users WHERE id = ?"), (user_id,))
        after = cur.fetchone()
        return LedgerChange(user_id=user_id, previous_balance=previous,
                            new_balance=after["credits"], tier=after["tier"])

    def credit(self, user_id: int, amount: int, tier: Optional[str] = None) -> Optional[int]:
        """
        Soma amount (pode ser negativo; saldo nunca fica abaixo de 0) e,
        opcionalmente, sobrescreve o tier. Numa única transação: SELECT com trava
        da linha (FOR UPDATE no Postgres; BEGIN IMMEDIATE no SQLite), UPDATE com
        piso em zero calculado no servidor e releitura do saldo.
        Retorna o novo saldo ou None se o usuário não existe.
        """
        with self.db.db_cursor() as cur:
            change = self._apply(cur, user_id, amount, tier, clear_subscription=False)
        return change.new_balance if change else None

    def is_claimed(self, order_id: str, action: str) -> bool:
        with self.db.db_cursor() as cur:
            cur.execute(
                self.db.qp("SELECT 1 FROM order_claims WHERE order_id = ? AND action = ?"),
                (order_id, action),
            )
            return cur.fetchone() is not None

    def _lock_order(self, cur, order_id: str) -> None:
        # Serializa grant/refund do mesmo pedido; no SQLite o BEGIN IMMEDIATE já basta
        if self.db.is_postgres:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (order_id,))

    def claim(self, order_id: str, action: str, user_id: Optional[int] = None) -> bool:
        """
        Registra o claim sem mexer em saldo (ex.: reembolso de conta inexistente).
        Retorna False quando o claim já existia.
        """
        try:
            with self.db.db_cursor() as cur:
                self._lock_order(cur, order_id)
                cur.execute(
                    self.db.qp("INSERT INTO order_claims (order_id, action, user_id) VALUES (?,?,?)"),
                    (order_id, action, user_id),
                )
        except self.db.integrity_error:
            return False
        logger.info("[LEDGER] pedido %s marcado como %s sem alteração de saldo.", order_id, action)
        return True

    def apply_order(self, order_id: str, action: str, user_id: int, amount: int,
                    tier: Optional[str] = None, clear_subscription: bool = False) -> Optional[LedgerChange]:
        """
        Registra o claim (order_id, action) e aplica o crédito na mesma transação.
        Retorna None quando o pedido já foi aplicado (violação da PK de order_claims).
        Levanta OrderRefunded se for um grant de pedido já reembolsado.
        """
        try:
            with self.db.db_cursor() as cur:
                self._lock_order(cur, order_id)
                cur.execute(
                    self.db.qp("INSERT INTO order_claims (order_id, action, user_id) VALUES (?,?,?)"),
                    (order_id, action, user_id),
                )
                if action == ACTION_GRANT:
                    cur.execute(
                        self.db.qp("SELECT 1 FROM order_claims WHERE order_id = ? AND action = ?"),
                        (order_id, ACTION_REFUND),
                    )
                    if cur.fetchone() is not None:
                        raise OrderRefunded(order_id)
                change = self._apply(cur, user_id, amount, tier, clear_subscription)
                if change is None:
                    raise LookupError(f"Usuário {user_id} não existe")
                cur.execute(
                    self.db.qp("UPDATE order_claims SET credits_delta = ? WHERE order_id = ? AND action = ?"),
                    (change.delta, order_id, action),
                )
        except self.db.integrity_error:
            logger.info("[LEDGER] pedido %s (%s) já aplicado; ignorando duplicata.", order_id, action)
            return None
        logger.info("[LEDGER] %s %+d créditos para user_id=%s (pedido %s), saldo %d.",
                    action, change.delta, user_id, order_id, change.new_balance)
        return change

    # -----------------------------------------------------
    # Assinatura
    # -----------------------------------------------------
    def set_subscription(self, user_id: int, subscription_id: str) -> None:
        with self.db.db_cursor() as cur:
            cur.execute(self.db.qp("UPDATE users SET subscription_id = ? WHERE id = ?"), (subscription_id, user_id))

    def cancel_subscription(self, user_id: int) -> None:
        with self.db.db_cursor() as cur:
            cur.execute(
                self.db.qp("UPDATE users SET tier = 'free', subscription_id = NULL WHERE id = ?"),
                (user_id,),
            )

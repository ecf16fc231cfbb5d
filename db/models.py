from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import Database

# DDL (SERIAL/TIMESTAMP adaptados para sqlite em Database.adapt_ddl)
DDL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id              SERIAL PRIMARY KEY,
        email           TEXT UNIQUE NOT NULL,
        full_name       TEXT,
        password_hash   TEXT NOT NULL,
        credits         INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
        credits_used    INTEGER NOT NULL DEFAULT 0,
        tier            TEXT NOT NULL DEFAULT 'free',
        subscription_id TEXT,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # histórico de relatórios
    """
    CREATE TABLE IF NOT EXISTS analyses (
        id          SERIAL PRIMARY KEY,
        user_id     INTEGER NOT NULL,
        query       TEXT NOT NULL,
        model       TEXT NOT NULL,
        score_total INTEGER DEFAULT 0,
        report      TEXT,
        created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # trilha de auditoria do webhook (append-only)
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id              SERIAL PRIMARY KEY,
        user_id         INTEGER,
        order_id        TEXT NOT NULL,
        product_id      TEXT,
        product_name    TEXT,
        amount          NUMERIC DEFAULT 0,
        credits_added   INTEGER NOT NULL DEFAULT 0,
        event_type      TEXT NOT NULL,
        status          TEXT NOT NULL,
        customer_email  TEXT,
        raw_payload     TEXT,
        result_message  TEXT,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # uma mutação de saldo por (pedido, ação): a PK é a garantia de idempotência
    """
    CREATE TABLE IF NOT EXISTS order_claims (
        order_id      TEXT NOT NULL,
        action        TEXT NOT NULL,
        user_id       INTEGER,
        credits_delta INTEGER NOT NULL DEFAULT 0,
        created_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (order_id, action)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_email ON transactions (customer_email)",
]

TIERS = ("free", "pro", "opus")


@dataclass
class UserAccount:
    id: int
    email: str
    credits: int
    credits_used: int = 0
    tier: str = "free"
    subscription_id: Optional[str] = None
    full_name: Optional[str] = None


@dataclass
class CreditTransaction:
    order_id: str
    event_type: str
    status: str
    credits_added: int = 0
    user_id: Optional[int] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    amount: float = 0
    customer_email: Optional[str] = None
    raw_payload: Optional[str] = None
    result_message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[Any] = None


_USER_COLS = "id, email, full_name, credits, credits_used, tier, subscription_id"
_TX_COLS = (
    "id, user_id, order_id, product_id, product_name, amount, credits_added, event_type, "
    "status, customer_email, raw_payload, result_message, created_at"
)


def _user_from_row(r) -> UserAccount:
    return UserAccount(
        id=r["id"],
        email=r["email"],
        full_name=r["full_name"],
        credits=r["credits"] or 0,
        credits_used=r["credits_used"] or 0,
        tier=r["tier"] or "free",
        subscription_id=r["subscription_id"],
    )


def _tx_from_row(r) -> CreditTransaction:
    return CreditTransaction(**{k: r[k] for k in _TX_COLS.split(", ")})


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user(db: Database, user_id: int) -> Optional[UserAccount]:
    with db.db_cursor() as cur:
        cur.execute(db.qp(f"SELECT {_USER_COLS} FROM users WHERE id = ?"), (user_id,))
        r = cur.fetchone()
    return _user_from_row(r) if r else None


def get_user_by_email(db: Database, email: str) -> Optional[UserAccount]:
    with db.db_cursor() as cur:
        cur.execute(db.qp(f"SELECT {_USER_COLS} FROM users WHERE lower(email) = ?"), (normalize_email(email),))
        r = cur.fetchone()
    return _user_from_row(r) if r else None


def get_password_hash(db: Database, user_id: int) -> Optional[str]:
    with db.db_cursor() as cur:
        cur.execute(db.qp("SELECT password_hash FROM users WHERE id = ?"), (user_id,))
        r = cur.fetchone()
    return r["password_hash"] if r else None


def create_user(db: Database, email: str, password_hash: str, credits: int = 0,
                full_name: Optional[str] = None, tier: str = "free") -> int:
    sql = "INSERT INTO users (email, full_name, password_hash, credits, tier) VALUES (?,?,?,?,?)"
    params = (normalize_email(email), full_name, password_hash, credits, tier)
    with db.db_cursor() as cur:
        if db.is_postgres:
            cur.execute(db.qp(sql + " RETURNING id"), params)
            return cur.fetchone()["id"]
        cur.execute(sql, params)
        return cur.lastrowid


def record_analysis(db: Database, user_id: int, query: str, model: str, score_total: int, report: str) -> None:
    with db.db_cursor() as cur:
        cur.execute(
            db.qp("INSERT INTO analyses (user_id, query, model, score_total, report) VALUES (?,?,?,?,?)"),
            (user_id, query, model, score_total, report),
        )


def list_analyses(db: Database, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    with db.db_cursor() as cur:
        cur.execute(
            db.qp("SELECT id, query, model, score_total, created_at FROM analyses "
                  "WHERE user_id = ? ORDER BY id DESC LIMIT ?"),
            (user_id, limit),
        )
        rows = cur.fetchall()
    return [
        {"id": r["id"], "query": r["query"], "model": r["model"],
         "score_total": r["score_total"], "created_at": str(r["created_at"])}
        for r in rows
    ]


def insert_transaction(db: Database, tx: CreditTransaction) -> None:
    with db.db_cursor() as cur:
        cur.execute(
            db.qp(
                "INSERT INTO transactions (user_id, order_id, product_id, product_name, amount, credits_added, "
                "event_type, status, customer_email, raw_payload, result_message) VALUES (?,?,?,?,?,?,?,?,?,?,?)"
            ),
            (tx.user_id, tx.order_id, tx.product_id, tx.product_name, tx.amount, tx.credits_added,
             tx.event_type, tx.status, tx.customer_email, tx.raw_payload, tx.result_message),
        )


def list_transactions(db: Database, email: Optional[str] = None, status: Optional[str] = None,
                      limit: int = 50) -> List[CreditTransaction]:
    where, params = [], []
    if email:
        where.append("lower(customer_email) = ?")
        params.append(normalize_email(email))
    if status:
        where.append("status = ?")
        params.append(status)
    sql = f"SELECT {_TX_COLS} FROM transactions"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY id ASC LIMIT ?"
    params.append(limit)
    with db.db_cursor() as cur:
        cur.execute(db.qp(sql), tuple(params))
        rows = cur.fetchall()
    return [_tx_from_row(r) for r in rows]

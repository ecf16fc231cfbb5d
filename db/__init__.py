# db/__init__.py
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Tuple, Type


def _ensure_sqlite_path(url: str) -> str:
    # Aceita: sqlite:///arquivo.db | sqlite:////abs/arquivo.db | clarid.db
    if url.startswith("sqlite:////"):
        return url.replace("sqlite:////", "/", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "", 1)
    return url


class Database:
    """
    Cliente do banco (psycopg | sqlite3), criado uma vez pela app e passado
    explicitamente para ledger, handlers e rotas.
    Cada db_cursor() abre conexão própria e roda numa transação explícita.
    """

    def __init__(self, url: str, **conn_args: Any):
        self.url = (url or "").strip()
        self._conn_args = conn_args

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgres://", "postgresql://"))

    @property
    def errors(self) -> Tuple[Type[Exception], ...]:
        """Exceções de banco que os handlers convertem em falha declarada."""
        if self.is_postgres:
            import psycopg
            return (psycopg.Error,)
        return (sqlite3.Error,)

    @property
    def integrity_error(self) -> Type[Exception]:
        # Violação de UNIQUE/PK: usada como sinal de idempotência
        if self.is_postgres:
            import psycopg
            return psycopg.IntegrityError
        return sqlite3.IntegrityError

    def connect(self):
        """
        Retorna uma conexão aberta.
        Para Postgres: autocommit desabilitado; commit/rollback feito em db_cursor().
        """
        if self.is_postgres:
            import psycopg
            from psycopg.rows import dict_row

            return psycopg.connect(self.url, row_factory=dict_row, **self._conn_args)

        path = _ensure_sqlite_path(self.url)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, timeout=30, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    @contextmanager
    def db_cursor(self) -> Iterator[Any]:
        """
        Abre conexão + cursor e faz commit/rollback seguro.
        """
        conn = self.connect()
        cur = None
        try:
            if not self.is_postgres:
                # sqlite: BEGIN IMMEDIATE pega o lock de escrita logo no início
                conn.execute("BEGIN IMMEDIATE")
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if cur is not None:
                cur.close()
            conn.close()

    def qp(self, sql: str) -> str:
        """
        Converte placeholders estilo SQLite ('?') para Postgres ('%s') quando necessário.
        """
        if self.is_postgres:
            return sql.replace("?", "%s")
        return sql

    def floor_zero(self, expr: str) -> str:
        # max escalar: MAX(a, b) no sqlite, GREATEST(a, b) no Postgres
        fn = "GREATEST" if self.is_postgres else "MAX"
        return f"{fn}({expr}, 0)"

    def adapt_ddl(self, sql: str) -> str:
        if self.is_postgres:
            return sql
        sql = re.sub(r"\bSERIAL PRIMARY KEY\b", "INTEGER PRIMARY KEY AUTOINCREMENT", sql, flags=re.I)
        sql = sql.replace("NUMERIC", "REAL")
        sql = sql.replace("TIMESTAMP DEFAULT CURRENT_TIMESTAMP", "DATETIME DEFAULT CURRENT_TIMESTAMP")
        return sql

    def init_schema(self) -> None:
        """
        Cria as tabelas se não existirem. Idempotente.
        """
        from db.models import DDL_STATEMENTS

        with self.db_cursor() as cur:
            for stmt in DDL_STATEMENTS:
                cur.execute(self.adapt_ddl(stmt))

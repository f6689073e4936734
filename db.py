# db.py: psycopg3 + pooling, constructed once per process and injected
import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, parse_qs, unquote

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from config import CBTConfig


def _on_managed_runtime() -> bool:
    # GAE or Cloud Run, etc.
    return os.getenv("GAE_ENV", "").startswith("standard") or bool(os.getenv("K_SERVICE"))


def _log_choice(kwargs: dict, origin: str):
    if "host" in kwargs and isinstance(kwargs["host"], str) and kwargs["host"].startswith("/cloudsql/"):
        print(f"[DB] {origin}: Unix socket -> {kwargs['host']}")
    else:
        host = kwargs.get("host", "localhost")
        port = kwargs.get("port", 5432)
        print(f"[DB] {origin}: TCP -> {host}:{port}")


def parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # Normalize SA-style scheme to plain postgres for psycopg usage
    for pref in ("postgresql+psycopg://", "postgres+psycopg://",
                 "postgresql+psycopg2://", "postgres+psycopg2://"):
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = p.hostname
    if "host" in qs and qs["host"]:
        host = qs["host"][0]
    dbname = (p.path or "").lstrip("/")
    if not dbname:
        if "dbname" in qs and qs["dbname"]:
            dbname = qs["dbname"][0]
        else:
            raise ValueError("DATABASE_URL missing dbname")
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if "sslmode" in qs and qs["sslmode"]:
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs


def _tcp_kwargs(cfg: CBTConfig) -> dict:
    if not all([cfg.db_name, cfg.db_user, cfg.db_pass]):
        raise RuntimeError("DB_NAME, DB_USER, DB_PASS must be set for TCP mode.")
    return {
        "host": cfg.db_host or "127.0.0.1",
        "port": int(cfg.db_port or "5432"),
        "dbname": cfg.db_name,
        "user": cfg.db_user,
        "password": cfg.db_pass,
        "sslmode": "disable",
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }


def _socket_kwargs(cfg: CBTConfig) -> dict:
    if not all([cfg.instance_connection_name, cfg.db_name, cfg.db_user, cfg.db_pass]):
        raise RuntimeError("INSTANCE_CONNECTION_NAME, DB_NAME, DB_USER, DB_PASS must be set for socket mode.")
    return {
        "host": f"/cloudsql/{cfg.instance_connection_name}",
        "dbname": cfg.db_name,
        "user": cfg.db_user,
        "password": cfg.db_pass,
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }


def connection_kwargs(cfg: CBTConfig) -> dict:
    managed = _on_managed_runtime()

    if cfg.force_tcp and not managed:
        kwargs = _tcp_kwargs(cfg); _log_choice(kwargs, "FORCE_TCP"); return kwargs

    if cfg.database_url_local and not managed:
        try:
            kwargs = parse_database_url(cfg.database_url_local)
            _log_choice(kwargs, "DATABASE_URL_LOCAL"); return kwargs
        except Exception as e:
            print(f"[DB] Ignoring DATABASE_URL_LOCAL: {e}")

    if cfg.database_url:
        try:
            kwargs = parse_database_url(cfg.database_url)
            if str(kwargs.get("host", "")).startswith("/cloudsql/") and not managed:
                print("[DB] DATABASE_URL targets /cloudsql/ but we are local; ignoring and using TCP.")
            else:
                _log_choice(kwargs, "DATABASE_URL"); return kwargs
        except Exception as e:
            print(f"[DB] Ignoring DATABASE_URL: {e}")

    if managed and cfg.instance_connection_name:
        kwargs = _socket_kwargs(cfg); _log_choice(kwargs, "socket"); return kwargs
    kwargs = _tcp_kwargs(cfg); _log_choice(kwargs, "TCP"); return kwargs


def to_conninfo(kwargs: dict) -> str:
    # Build libpq conninfo string from kwargs dict
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if any(ch.isspace() for ch in s) or "'" in s or '"' in s:
            s = "'" + s.replace("'", r"\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)


class PgClient:
    """
    Lazily opened connection pool.
    Lifecycle: construct once at process start, pass to RecordStore, close() at exit.
    """

    def __init__(self, cfg: CBTConfig):
        self._cfg = cfg
        self._pool: Optional[ConnectionPool] = None

    def _ensure_pool(self) -> ConnectionPool:
        if self._pool is None:
            conninfo = to_conninfo(connection_kwargs(self._cfg))
            self._pool = ConnectionPool(conninfo=conninfo, min_size=1, max_size=self._cfg.pool_max_size)
        return self._pool

    @contextmanager
    def connection(self):
        with self._ensure_pool().connection() as conn:
            yield conn

    def fetch_all(self, q, params=None) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(q, params or ())
                return cur.fetchall()

    def execute(self, q, params=None) -> None:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(q, params or ())
            conn.commit()

    def execute_returning(self, q, params=None) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(q, params or ())
                rows = cur.fetchall()
            conn.commit()
            return rows

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

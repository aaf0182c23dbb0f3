# db.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

import psycopg2.extensions
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _pool_size() -> int:
    # API threads plus every submission worker may hold a connection at once
    return max(settings.DB_POOL_MAX_CONN, settings.PAYOUT_WORKER_CONCURRENCY + 2)


def init_pool(dsn: str | None = None) -> ThreadedConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            psycopg2.extras.register_uuid()
            _pool = ThreadedConnectionPool(
                minconn=1,
                maxconn=_pool_size(),
                dsn=dsn or settings.DATABASE_URL,
                connect_timeout=5,
                application_name="payout_engine",
                options=f"-c statement_timeout={int(settings.DB_STATEMENT_TIMEOUT_MS)}",
            )
        return _pool


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection]:
    """One transaction per block: commit on clean exit, rollback on any error."""
    pool = _pool or init_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)

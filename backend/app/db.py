from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings, _env_int

# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)

_pool: Optional[ConnectionPool] = None


def _get_pool() -> ConnectionPool:
    # Opened on first use so importing the routers never touches the network.
    global _pool
    if _pool is None:
        _pool = ConnectionPool(
            conninfo=settings.db_url,
            min_size=_POOL_MIN,
            max_size=max(_POOL_MIN, _POOL_MAX),
            kwargs={"row_factory": dict_row},
            open=True,
        )
    return _pool


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and returns the connection to the pool.
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_get_pool())


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    global _pool
    if _pool is None:
        return
    try:
        _pool.close()
    except Exception:
        pass
    _pool = None

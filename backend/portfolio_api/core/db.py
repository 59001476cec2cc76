import logging
import time
from contextlib import asynccontextmanager
from typing import Optional
from psycopg_pool import AsyncConnectionPool
from portfolio_api.core.settings import settings

log = logging.getLogger("uvicorn.error")
_pool: Optional[AsyncConnectionPool] = None
_open_failed_at: Optional[float] = None
# seconds to fail fast after the pool could not be opened
_REOPEN_AFTER_SECONDS = 5.0

def _normalize_conninfo(url: str) -> str:
    """Strip SQLAlchemy-style driver suffixes so psycopg accepts the URL."""
    for prefix in ("postgresql+psycopg2://", "postgresql+psycopg://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql://" + url.split("://", 1)[1]
    return url

async def get_pool(open_timeout: float = 10.0) -> AsyncConnectionPool:
    """Return the process-wide pool, opening it on first use."""
    global _pool, _open_failed_at
    if _pool is None:
        if _open_failed_at is not None and time.monotonic() - _open_failed_at < _REOPEN_AFTER_SECONDS:
            raise ConnectionError("database unavailable (recent connection attempt failed)")
        conninfo = _normalize_conninfo(settings.database_url)
        pool = AsyncConnectionPool(conninfo, min_size=1, max_size=10, open=False)
        try:
            await pool.open(wait=True, timeout=open_timeout)
        except Exception:
            _open_failed_at = time.monotonic()
            await pool.close()
            raise
        _pool = pool
        _open_failed_at = None
        log.info("[db] connection pool opened")
    return _pool

@asynccontextmanager
async def db_conn():
    pool = await get_pool()
    async with pool.connection() as conn:
        async with conn.cursor() as cur:
            yield conn, cur

async def ping(timeout: float = 2.0) -> bool:
    """True when a trivial query round-trips within timeout seconds."""
    try:
        pool = await get_pool(open_timeout=timeout)
        async with pool.connection(timeout=timeout) as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()
        return True
    except Exception as exc:
        log.warning(f"[db] ping failed: {exc}")
        return False

async def close_pool():
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        log.info("[db] connection pool closed")

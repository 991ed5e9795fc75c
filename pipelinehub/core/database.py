import logging
from typing import Any, Iterable, List, Optional
from psycopg_pool import AsyncConnectionPool
from psycopg.rows import dict_row
from psycopg import OperationalError, DatabaseError

from .config import settings

log = logging.getLogger(__name__)

pool: Optional[AsyncConnectionPool] = None


def _connection_kwargs():
    """Build connection kwargs for psycopg"""
    return {
        "sslmode": "require" if settings.database_ssl else "disable",
        # Cloud Run drops connections that take too long to establish
        "connect_timeout": 10,
        "application_name": "pipelinehub_backend",
    }


def _mask(conninfo: str) -> str:
    try:
        return conninfo.split("@")[0].rsplit(":", 1)[0] + ":****@" + conninfo.split("@")[1]
    except IndexError:
        return "postgresql://****"


def _diagnose(message: str) -> str:
    lowered = message.lower()
    if "timeout" in lowered:
        return "connection timeout (instance down or firewall)"
    if "password" in lowered or "authentication" in lowered:
        return "authentication failed (check the credentials in DATABASE_URL)"
    if "database" in lowered and "does not exist" in lowered:
        return "database named in DATABASE_URL does not exist"
    if "connection refused" in lowered:
        return "connection refused (check the host and port in DATABASE_URL)"
    return "unknown"


async def get_pool() -> AsyncConnectionPool:
    """
    Get or create the database connection pool.
    Optimized for Cloud Run with proper error handling.
    """
    global pool

    if pool is not None:
        return pool

    conninfo = settings.database_url

    if not conninfo:
        raise RuntimeError(
            "Database configuration is missing. "
            "Set the DATABASE_URL environment variable."
        )

    log.info("Initializing database pool for %s (ssl %s)", _mask(conninfo),
             "required" if settings.database_ssl else "disabled")

    try:
        pool = AsyncConnectionPool(
            conninfo=conninfo,
            open=False,
            kwargs=_connection_kwargs(),
            min_size=1,
            max_size=10,
            timeout=30,
            max_idle=300,
            max_lifetime=3600,
        )
        await pool.open(wait=True, timeout=30)

        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT version()")
                version = await cur.fetchone()
                log.info("Connected to %s", version[0][:80])

        return pool

    except OperationalError as e:
        log.exception("Database connection error: %s", _diagnose(str(e)))
        pool = None
        raise

    except DatabaseError:
        log.exception("Database error while opening pool")
        pool = None
        raise


async def close_pool():
    """Close the database connection pool"""
    global pool

    if pool:
        log.info("Closing database pool")
        await pool.close()
        pool = None


async def fetch(query: str, params: Iterable[Any] | None = None) -> List[dict]:
    """Execute a SELECT query and return all rows as dictionaries"""
    pool_instance = await get_pool()
    async with pool_instance.connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params or [])
            rows = await cur.fetchall()
            return [dict(r) for r in rows]


async def fetchrow(query: str, params: Iterable[Any] | None = None) -> Optional[dict]:
    """Execute a SELECT query and return a single row as a dictionary"""
    pool_instance = await get_pool()
    async with pool_instance.connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params or [])
            row = await cur.fetchone()
            return dict(row) if row else None


async def execute(query: str, params: Iterable[Any] | None = None) -> int:
    """Execute an INSERT/UPDATE/DELETE query and return affected row count"""
    pool_instance = await get_pool()
    async with pool_instance.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params or [])
            await conn.commit()
            return cur.rowcount

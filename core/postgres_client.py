"""
PostgreSQL Client Wrapper

asyncpg pool wrapper with the query helpers microservice repositories use.

Usage:
    from core.postgres_client import PostgresClientWrapper

    db = PostgresClientWrapper("match_service")
    await db.connect()
    row = await db.query_row("SELECT * FROM match.matches WHERE match_id = $1", match_id)

    async with db.transaction() as conn:
        await conn.execute(...)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import asyncpg

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper.

    Holds one asyncpg pool per service; host/port/credentials default to the
    platform InfraConfig.
    """

    def __init__(
        self,
        service_name: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        from core.config import get_settings

        infra = get_settings().infrastructure

        self.service_name = service_name
        self.host = host or infra.postgres_host
        self.port = port or infra.postgres_port
        self.database = database or infra.postgres_db
        self.username = username or infra.postgres_user
        self.password = password or infra.postgres_password
        self.min_size = min_size or infra.postgres_min_pool
        self.max_size = max_size or infra.postgres_max_pool

        self._pool: Optional[asyncpg.Pool] = None

        logger.info(
            f"PostgreSQL client configured for {service_name}: "
            f"{self.host}:{self.port}/{self.database}"
        )

    async def connect(self) -> None:
        """Create the connection pool"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            user=self.username,
            password=self.password,
            database=self.database,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool not initialized. Call connect() first.")
        return self._pool

    async def query(self, sql: str, *args: Any) -> List[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(sql, *args)

    async def query_row(self, sql: str, *args: Any) -> Optional[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(sql, *args)

    async def execute(self, sql: str, *args: Any) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction (commit on exit, rollback on error)"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> bool:
        try:
            return await self.query_row("SELECT 1 AS healthy") is not None
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

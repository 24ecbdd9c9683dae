"""
Shared Postgres connection pool

Manages the async connection pool shared by all workers, with retrying
start-up, server-side cursor streaming for extracts and stored-procedure calls
for inserts.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from asyncpg import Pool
from asyncpg.exceptions import (
    CannotConnectNowError,
    TooManyConnectionsError,
)

from solbatch.errors import DatabaseConnectError
from solbatch.models import AppConfig

logger = logging.getLogger(__name__)


class PostgresConnectionPool:
    """
    Async connection pool for Postgres with retrying initialization.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_size: int = 1,
        max_size: int = 10,
        max_inactive_connection_lifetime: float = 1800.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        command_timeout: Optional[float] = None,
        pool_name: str = "default",
    ):
        """
        Initialize Postgres connection pool.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Username
            password: Password
            min_size: Connections opened eagerly
            max_size: Maximum pool size (the run's concurrency)
            max_inactive_connection_lifetime: Seconds before an idle connection is closed
            max_retries: Max attempts for transient connect failures
            retry_delay: Base delay between attempts in seconds
            command_timeout: Per-statement timeout; None means no timeout
            pool_name: Descriptive name for logging
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_size = min(min_size, max_size)
        self.max_size = max_size
        self.max_inactive_connection_lifetime = max_inactive_connection_lifetime
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout
        self.pool_name = pool_name

        self._pool: Optional[Pool] = None
        self._initialized = False

        logger.info(
            f"[{pool_name}] Postgres pool configured: {user}@{host}:{port}/{database}, "
            f"size={self.min_size}-{max_size}"
        )

    @classmethod
    def from_app_config(cls, cfg: AppConfig) -> "PostgresConnectionPool":
        """Pool sized to the run: max = concurrency, eager = worker floor."""
        return cls(
            host=cfg.db_host,
            port=cfg.db_port,
            database=cfg.db_name,
            user=cfg.db_user,
            password=cfg.db_password,
            min_size=cfg.min_workers,
            max_size=cfg.concurrency,
            max_inactive_connection_lifetime=cfg.conn_max_lifetime_seconds,
            max_retries=cfg.connect_retries,
            pool_name="solbatch",
        )

    async def initialize(self):
        """Initialize the connection pool; raises DatabaseConnectError on failure."""
        if self._initialized:
            return

        logger.info(f"[{self.pool_name}] Creating Postgres connection pool...")

        for attempt in range(self.max_retries):
            try:
                self._pool = await asyncpg.create_pool(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    max_inactive_connection_lifetime=self.max_inactive_connection_lifetime,
                    command_timeout=self.command_timeout,
                )

                self._initialized = True
                logger.info(
                    f"[{self.pool_name}] Postgres pool ready "
                    f"(size: {self.min_size}-{self.max_size})"
                )
                return

            except (CannotConnectNowError, TooManyConnectionsError, OSError) as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Pool creation attempt {attempt + 1} failed, retrying: {e}"
                    )
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(
                        f"Failed to create pool after {self.max_retries} attempts"
                    )
                    raise DatabaseConnectError(
                        f"cannot connect to {self.host}:{self.port}/{self.database}: {e}"
                    ) from e
            except Exception as e:
                logger.error(f"Unexpected error creating pool: {e}")
                raise DatabaseConnectError(
                    f"cannot connect to {self.host}:{self.port}/{self.database}: {e}"
                ) from e

    @asynccontextmanager
    async def get_connection(self):
        """
        Get a connection from the pool (async context manager).

        Usage:
            async with pool.get_connection() as conn:
                result = await conn.fetch("SELECT 1")
        """
        if not self._initialized:
            await self.initialize()

        if self._pool is None:
            raise DatabaseConnectError("Pool not initialized")

        async with self._pool.acquire() as conn:
            yield conn

    @staticmethod
    def _convert_placeholders(query: str) -> str:
        """
        Convert `:N` and `?` placeholders to `$N` for asyncpg.

        Query shapes are written with Oracle-style positional binds (`:1`);
        asyncpg requires numbered `$N`. `?` placeholders are numbered in order.
        Text inside string literals is left alone, as are `::type` casts.
        """
        result = []
        idx = 0
        i = 0
        in_string = False
        string_char = None

        while i < len(query):
            ch = query[i]

            # Track string literals to avoid converting placeholders inside them
            if ch in ("'", '"') and (i == 0 or query[i - 1] != "\\"):
                if not in_string:
                    in_string = True
                    string_char = ch
                elif ch == string_char:
                    in_string = False
                    string_char = None

            if not in_string and ch == "?":
                idx += 1
                result.append(f"${idx}")
            elif (
                not in_string
                and ch == ":"
                and i + 1 < len(query)
                and query[i + 1].isdigit()
                and (i == 0 or query[i - 1] != ":")
            ):
                j = i + 1
                while j < len(query) and query[j].isdigit():
                    j += 1
                result.append(f"${query[i + 1:j]}")
                i = j
                continue
            else:
                result.append(ch)
            i += 1

        return "".join(result)

    async def fetch_val(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None,
    ) -> Any:
        """Fetch a single value from a query."""
        async with self.get_connection() as conn:
            return await conn.fetchval(
                self._convert_placeholders(query), *args, timeout=timeout
            )

    async def stream_rows(
        self,
        query: str,
        *args,
        batch_size: int = 500,
    ) -> AsyncIterator[List[asyncpg.Record]]:
        """
        Yield result rows in batches from a server-side cursor.

        The connection is held (inside a read transaction) until the iterator
        is exhausted or closed.

        Args:
            query: SQL query (`:N` / `?` placeholders are converted)
            *args: Query parameters
            batch_size: Rows per fetch
        """
        converted = self._convert_placeholders(query)
        async with self.get_connection() as conn:
            async with conn.transaction(readonly=True):
                cursor = await conn.cursor(converted, *args)
                while True:
                    batch = await cursor.fetch(batch_size)
                    if not batch:
                        break
                    yield batch

    async def call_procedure(
        self,
        package: str,
        procedure: str,
        *args,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Invoke ``CALL <package>.<procedure>(:1, ...)``.

        Returns:
            Status string reported by the server (e.g. "CALL")
        """
        binds = ", ".join(f":{n}" for n in range(1, len(args) + 1))
        query = f"CALL {package}.{procedure}({binds})"
        async with self.get_connection() as conn:
            return await conn.execute(
                self._convert_placeholders(query), *args, timeout=timeout
            )

    async def is_healthy(self) -> bool:
        """
        Check if the connection pool is healthy.

        Returns:
            bool: True if pool is healthy
        """
        if not self._initialized or self._pool is None:
            return False

        try:
            result = await self.fetch_val("SELECT 1")
            return result == 1
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def get_pool_stats(self) -> Dict[str, Any]:
        """
        Get connection pool statistics.

        Returns:
            Dict with pool statistics
        """
        if not self._initialized or self._pool is None:
            return {
                "initialized": False,
                "size": 0,
                "free": 0,
            }

        return {
            "initialized": True,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "size": self._pool.get_size(),
            "free": self._pool.get_idle_size(),
            "in_use": self._pool.get_size() - self._pool.get_idle_size(),
        }

    async def close(self):
        """Close the connection pool."""
        if self._pool is not None:
            logger.info(f"[{self.pool_name}] Closing Postgres pool")
            await self._pool.close()
            self._pool = None
            self._initialized = False
            logger.info(f"[{self.pool_name}] Postgres pool closed")

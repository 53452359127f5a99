import asyncio
from typing import Any, Dict, List, Mapping, Optional

import asyncpg
from asyncpg import Pool

from rule_anon.common.constants import SERVER_SETTINGS
from rule_anon.common.dto import ConnectionParams
from rule_anon.common.errors import QueryFailed, StoreUnavailable
from rule_anon.logger import get_logger

logger = get_logger()

CONNECTION_ERRORS = (
    OSError,
    asyncpg.InterfaceError,
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.PostgresConnectionError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
)


async def create_pool(connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS, min_size: int = 1, max_size: int = 10) -> Pool:
    return await asyncpg.create_pool(
        **connection_params.as_dict(),
        server_settings=server_settings,
        min_size=min_size,
        max_size=max_size,
    )


class AsyncpgStore:
    """
    Relational store connector over an asyncpg pool.

    ``fetch`` returns rows as dicts, ``execute`` returns the command status.
    Connectivity problems are raised as StoreUnavailable, everything the server
    rejects as QueryFailed.
    """

    def __init__(self, connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS, max_size: int = 10):
        self.connection_params = connection_params
        self.server_settings = server_settings
        self.max_size = max_size
        self._pool: Optional[Pool] = None
        self._pool_lock = asyncio.Lock()

    async def _get_pool(self) -> Pool:
        async with self._pool_lock:
            if self._pool is None:
                self._pool = await self._create_pool()
        return self._pool

    async def _create_pool(self) -> Pool:
        try:
            return await create_pool(
                self.connection_params,
                server_settings=self.server_settings,
                max_size=self.max_size,
            )
        except CONNECTION_ERRORS as exc:
            raise StoreUnavailable(f"Can't connect to {self.connection_params.host}:{self.connection_params.port}: {exc}") from exc
        except asyncpg.PostgresError as exc:
            raise StoreUnavailable(f"Connection rejected: {exc}") from exc

    async def fetch(self, sql: str) -> List[Mapping[str, Any]]:
        pool = await self._get_pool()
        logger.debug(f"fetch: {sql}")
        try:
            async with pool.acquire() as db_conn:
                records = await db_conn.fetch(sql)
        except CONNECTION_ERRORS as exc:
            raise StoreUnavailable(str(exc)) from exc
        except asyncpg.PostgresError as exc:
            raise QueryFailed(f"{exc}\n{sql}") from exc
        return [dict(record) for record in records]

    async def execute(self, sql: str) -> str:
        pool = await self._get_pool()
        logger.debug(f"execute: {sql}")
        try:
            async with pool.acquire() as db_conn:
                return await db_conn.execute(sql)
        except CONNECTION_ERRORS as exc:
            raise StoreUnavailable(str(exc)) from exc
        except asyncpg.PostgresError as exc:
            raise QueryFailed(f"{exc}\n{sql}") from exc

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import asyncpg

from ...config.settings import CONNECT_TIMEOUT_SECONDS
from ...models.gateway_models import (
    ColumnType,
    ConnectionDescriptor,
    EngineType,
    NormalizedResult,
    QuerySpec,
    WriteCounts,
)
from ..errors import DatabaseConnectionError, QueryExecutionError
from .base import BackendConnection, BackendDriver
from .statements import (
    POSTGRES_DIALECT,
    collect_columns,
    create_table_statement,
    postgres_delete_stale_statement,
    postgres_upsert_statement,
    preview_statement,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432

TABLES_QUERY = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = current_schema()
ORDER BY table_name
"""

COLUMNS_QUERY = """
SELECT column_name, data_type
FROM information_schema.columns
WHERE table_schema = current_schema() AND table_name = $1
ORDER BY ordinal_position
"""

PRIMARY_KEYS_QUERY = """
SELECT a.attname
FROM pg_index i
JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
WHERE i.indrelid = to_regclass($1) AND i.indisprimary
"""


@asynccontextmanager
async def _translate_errors(action: str) -> AsyncIterator[None]:
    """Re-raise asyncpg failures as gateway errors, keeping the backend message."""
    try:
        yield
    except asyncpg.PostgresError as e:
        raise QueryExecutionError(str(e)) from e
    except (asyncpg.InterfaceError, OSError) as e:
        raise DatabaseConnectionError(f"Postgres connection failed while {action}: {e}") from e


class PostgresDriver(BackendDriver):
    engine = EngineType.POSTGRES
    dialect = POSTGRES_DIALECT

    async def connect(self, descriptor: ConnectionDescriptor, timeout: Optional[float] = None) -> BackendConnection:
        try:
            conn = await asyncpg.connect(
                host=descriptor.host,
                port=descriptor.port or DEFAULT_PORT,
                user=descriptor.username,
                password=descriptor.password,
                database=descriptor.database,
                timeout=timeout or CONNECT_TIMEOUT_SECONDS,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            raise DatabaseConnectionError(
                f"Could not connect to Postgres at {descriptor.host}/{descriptor.database}: {e}"
            ) from e

        logger.info(f"Connected to Postgres {descriptor.host}/{descriptor.database}")
        return BackendConnection(self.engine, conn, conn.close, descriptor.database)

    async def list_tables(self, conn: BackendConnection) -> List[str]:
        async with _translate_errors("listing tables"):
            records = await conn.handle.fetch(TABLES_QUERY)
        return [record["table_name"] for record in records]

    async def _columns(self, conn: BackendConnection, table: str) -> List[asyncpg.Record]:
        async with _translate_errors(f"reading columns of {table}"):
            return await conn.handle.fetch(COLUMNS_QUERY, table)

    async def list_columns(self, conn: BackendConnection, table: str) -> List[str]:
        return [record["column_name"] for record in await self._columns(conn, table)]

    async def column_types(self, conn: BackendConnection, table: str) -> List[ColumnType]:
        return [
            ColumnType(column_name=record["column_name"], data_type=record["data_type"])
            for record in await self._columns(conn, table)
        ]

    async def primary_keys(self, conn: BackendConnection, table: str) -> List[str]:
        async with _translate_errors(f"reading primary keys of {table}"):
            records = await conn.handle.fetch(PRIMARY_KEYS_QUERY, self.dialect.ident(table))
        return [record["attname"] for record in records]

    async def execute(self, conn: BackendConnection, spec: QuerySpec) -> NormalizedResult:
        async with _translate_errors("executing a query"):
            # Preparing first gives column names even when no rows come back
            statement = await conn.handle.prepare(spec.effective_query)
            records = await statement.fetch()
        columns = [attribute.name for attribute in statement.get_attributes()]
        return NormalizedResult(columns=columns, rows=[dict(record) for record in records])

    def preview_query(self, table: str, limit: int) -> str:
        return preview_statement(self.dialect, table, limit)

    async def table_exists(self, conn: BackendConnection, table: str) -> bool:
        async with _translate_errors(f"checking for {table}"):
            return bool(await conn.handle.fetchval("SELECT to_regclass($1) IS NOT NULL", self.dialect.ident(table)))

    async def create_table(self, conn: BackendConnection, table: str, columns: Sequence[str], primary_key: str) -> None:
        statement = create_table_statement(self.dialect, table, columns, primary_key)
        async with _translate_errors(f"creating {table}"):
            await conn.handle.execute(statement)
        logger.info(f"Created table {table} with primary key {primary_key}")

    async def delete_stale(self, conn: BackendConnection, table: str, primary_key: str, keys: Sequence[Any]) -> int:
        statement = postgres_delete_stale_statement(table, primary_key)
        async with _translate_errors(f"deleting stale rows from {table}"):
            status = await conn.handle.execute(statement, [str(key) for key in keys])
        # Command tag looks like "DELETE 3"
        return int(status.split()[-1]) if status else 0

    async def write_rows(
        self,
        conn: BackendConnection,
        table: str,
        primary_key: str,
        rows: Sequence[Dict[str, Any]],
        batch_size: int,
    ) -> WriteCounts:
        inserted = updated = 0
        for start in range(0, len(rows), batch_size):
            batch = list(rows[start:start + batch_size])
            statement = postgres_upsert_statement(table, collect_columns(batch), primary_key)
            payload = json.dumps(batch, default=str)
            async with _translate_errors(f"upserting into {table}"):
                records = await conn.handle.fetch(statement, payload)
            batch_inserted = sum(1 for record in records if record["inserted"])
            inserted += batch_inserted
            updated += len(records) - batch_inserted
        return inserted, updated

    @asynccontextmanager
    async def transaction(self, conn: BackendConnection) -> AsyncIterator[None]:
        async with conn.handle.transaction():
            yield

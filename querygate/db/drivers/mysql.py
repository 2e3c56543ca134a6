import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import aiomysql

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
    MYSQL_DIALECT,
    collect_columns,
    create_table_statement,
    mysql_delete_stale_statement,
    mysql_existing_keys_statement,
    mysql_upsert_statement,
    preview_statement,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3306

PRIMARY_KEYS_QUERY = """
SELECT COLUMN_NAME
FROM information_schema.KEY_COLUMN_USAGE
WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY'
ORDER BY ORDINAL_POSITION
"""

TABLE_EXISTS_QUERY = """
SELECT 1 FROM information_schema.TABLES
WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s
"""


def _param(value: Any) -> Any:
    """Nested values are stored as JSON text."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


class MySQLDriver(BackendDriver):
    engine = EngineType.MYSQL
    dialect = MYSQL_DIALECT

    async def connect(self, descriptor: ConnectionDescriptor, timeout: Optional[float] = None) -> BackendConnection:
        try:
            conn = await aiomysql.connect(
                host=descriptor.host,
                port=descriptor.port or DEFAULT_PORT,
                user=descriptor.username,
                password=descriptor.password,
                db=descriptor.database,
                autocommit=True,
                connect_timeout=timeout or CONNECT_TIMEOUT_SECONDS,
            )
        except (aiomysql.Error, OSError, asyncio.TimeoutError) as e:
            raise DatabaseConnectionError(
                f"Could not connect to MySQL at {descriptor.host}/{descriptor.database}: {e}"
            ) from e

        logger.info(f"Connected to MySQL {descriptor.host}/{descriptor.database}")
        return BackendConnection(self.engine, conn, conn.ensure_closed, descriptor.database)

    async def _run(
        self,
        conn: BackendConnection,
        statement: str,
        params: Optional[Sequence[Any]] = None,
    ) -> Tuple[List[str], List[Dict[str, Any]], int]:
        """Execute one statement; returns (columns, rows, rowcount)."""
        try:
            async with conn.handle.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(statement, params)
                rows = list(await cursor.fetchall()) if cursor.description else []
                columns = [column[0] for column in cursor.description] if cursor.description else []
                return columns, rows, cursor.rowcount
        except aiomysql.OperationalError as e:
            # 2006/2013: server gone away / lost connection
            if e.args and e.args[0] in (2006, 2013):
                raise DatabaseConnectionError(f"MySQL connection lost: {e}") from e
            raise QueryExecutionError(str(e)) from e
        except aiomysql.Error as e:
            raise QueryExecutionError(str(e)) from e

    async def list_tables(self, conn: BackendConnection) -> List[str]:
        _, rows, _ = await self._run(conn, "SHOW TABLES")
        return [next(iter(row.values())) for row in rows]

    async def list_columns(self, conn: BackendConnection, table: str) -> List[str]:
        _, rows, _ = await self._run(conn, f"SHOW COLUMNS FROM {self.dialect.ident(table)}")
        return [row["Field"] for row in rows]

    async def column_types(self, conn: BackendConnection, table: str) -> List[ColumnType]:
        _, rows, _ = await self._run(conn, f"DESCRIBE {self.dialect.ident(table)}")
        return [ColumnType(column_name=row["Field"], data_type=str(row["Type"])) for row in rows]

    async def primary_keys(self, conn: BackendConnection, table: str) -> List[str]:
        _, rows, _ = await self._run(conn, PRIMARY_KEYS_QUERY, (table,))
        return [row["COLUMN_NAME"] for row in rows]

    async def execute(self, conn: BackendConnection, spec: QuerySpec) -> NormalizedResult:
        columns, rows, _ = await self._run(conn, spec.effective_query)
        return NormalizedResult(columns=columns, rows=rows)

    def preview_query(self, table: str, limit: int) -> str:
        return preview_statement(self.dialect, table, limit)

    async def table_exists(self, conn: BackendConnection, table: str) -> bool:
        _, rows, _ = await self._run(conn, TABLE_EXISTS_QUERY, (table,))
        return bool(rows)

    async def create_table(self, conn: BackendConnection, table: str, columns: Sequence[str], primary_key: str) -> None:
        # TEXT cannot be indexed without a prefix length
        statement = create_table_statement(self.dialect, table, columns, primary_key, key_type="VARCHAR(255)")
        await self._run(conn, statement)
        logger.info(f"Created table {table} with primary key {primary_key}")

    async def delete_stale(self, conn: BackendConnection, table: str, primary_key: str, keys: Sequence[Any]) -> int:
        statement = mysql_delete_stale_statement(table, primary_key, len(keys))
        _, _, deleted = await self._run(conn, statement, [_param(key) for key in keys])
        return max(deleted, 0)

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
            keys = [_param(row[primary_key]) for row in batch]

            lookup = mysql_existing_keys_statement(table, primary_key, len(keys))
            _, existing, _ = await self._run(conn, lookup, keys)
            existing_keys = {str(row[primary_key]) for row in existing}

            columns = collect_columns(batch)
            params = [_param(row.get(column)) for row in batch for column in columns]
            statement = mysql_upsert_statement(table, columns, primary_key, len(batch))
            await self._run(conn, statement, params)

            batch_updated = sum(1 for key in keys if str(key) in existing_keys)
            updated += batch_updated
            inserted += len(batch) - batch_updated
        return inserted, updated

    @asynccontextmanager
    async def transaction(self, conn: BackendConnection) -> AsyncIterator[None]:
        handle = conn.handle
        await handle.begin()
        try:
            yield
        except BaseException:
            await handle.rollback()
            raise
        else:
            await handle.commit()

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ...config.settings import CONNECT_TIMEOUT_SECONDS, RECONCILE_BATCH_SIZE
from ...models.gateway_models import (
    ColumnType,
    ConnectionDescriptor,
    EngineType,
    NormalizedResult,
    QuerySpec,
    ReconcileResult,
    WriteCounts,
)
from ..errors import DatabaseConnectionError, QueryExecutionError, SchemaIntrospectionError
from .statements import SqlDialect, source_table

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one backend connection; CLOSED is terminal"""
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    INTROSPECTING = "introspecting"
    EXECUTING = "executing"
    RECONCILING = "reconciling"
    CLOSED = "closed"


class BackendConnection:
    """A live backend handle scoped to a single gateway operation.

    The raw driver object is only reachable through ``handle``, which refuses
    access once the connection is closed.
    """

    def __init__(
        self,
        engine: EngineType,
        handle: Any,
        closer: Callable[[], Awaitable[None]],
        database: Optional[str] = None,
    ):
        self.engine = engine
        self.database = database
        self._handle = handle
        self._closer = closer
        self._state = ConnectionState.CONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == ConnectionState.CLOSED

    @property
    def handle(self) -> Any:
        if self.closed:
            raise DatabaseConnectionError(f"{self.engine.value} connection is already closed")
        return self._handle

    def enter(self, state: ConnectionState) -> None:
        if self.closed:
            raise DatabaseConnectionError(f"Cannot move a closed {self.engine.value} connection to {state.value}")
        self._state = state

    async def close(self) -> None:
        if self.closed:
            return
        self._state = ConnectionState.CLOSED
        try:
            await self._closer()
        finally:
            self._handle = None


class BackendDriver(ABC):
    """Capability interface every engine implements.

    Gateway code only talks to this class, never to a concrete driver.
    """
    engine: EngineType
    dialect: Optional[SqlDialect] = None

    @abstractmethod
    async def connect(self, descriptor: ConnectionDescriptor, timeout: Optional[float] = None) -> BackendConnection:
        """Open a connection or raise DatabaseConnectionError."""

    @abstractmethod
    async def list_tables(self, conn: BackendConnection) -> List[str]:
        ...

    @abstractmethod
    async def list_columns(self, conn: BackendConnection, table: str) -> List[str]:
        ...

    @abstractmethod
    async def column_types(self, conn: BackendConnection, table: str) -> List[ColumnType]:
        ...

    @abstractmethod
    async def primary_keys(self, conn: BackendConnection, table: str) -> List[str]:
        ...

    @abstractmethod
    async def execute(self, conn: BackendConnection, spec: QuerySpec) -> NormalizedResult:
        """Run spec.effective_query; raise QueryExecutionError on backend failure."""

    @abstractmethod
    def preview_query(self, table: str, limit: int) -> str:
        """Driver-native query returning the first rows of a table."""

    @abstractmethod
    async def table_exists(self, conn: BackendConnection, table: str) -> bool:
        ...

    @abstractmethod
    async def create_table(self, conn: BackendConnection, table: str, columns: Sequence[str], primary_key: str) -> None:
        ...

    @abstractmethod
    async def delete_stale(self, conn: BackendConnection, table: str, primary_key: str, keys: Sequence[Any]) -> int:
        """Delete rows whose key is not in keys, in one statement. Returns the count."""

    @abstractmethod
    async def write_rows(
        self,
        conn: BackendConnection,
        table: str,
        primary_key: str,
        rows: Sequence[Dict[str, Any]],
        batch_size: int,
    ) -> WriteCounts:
        """Upsert rows in batches. Returns (inserted, updated)."""

    def prepare_query(self, raw_query: str, default_limit: int) -> QuerySpec:
        """Append the default cap unless the query already mentions a limit.

        The cap goes on its own line so a trailing -- comment cannot swallow it.
        """
        cleaned = raw_query.strip().rstrip(";").rstrip()
        if "limit" in cleaned.lower():
            return QuerySpec(raw_query=raw_query, effective_query=cleaned, applied_limit=None)
        return QuerySpec(
            raw_query=raw_query,
            effective_query=f"{cleaned}\nLIMIT {default_limit}",
            applied_limit=default_limit,
        )

    async def query_metadata(
        self,
        conn: BackendConnection,
        spec: QuerySpec,
        result: NormalizedResult,
    ) -> Tuple[List[ColumnType], List[str]]:
        """Column types and primary keys of the table a query reads from.

        Best effort: empty lists when the query has no single source table or
        its metadata cannot be read.
        """
        if self.dialect is None:
            return [], []
        table = source_table(spec.effective_query, self.dialect.name)
        if table is None:
            return [], []
        try:
            return await self.column_types(conn, table), await self.primary_keys(conn, table)
        except (QueryExecutionError, SchemaIntrospectionError) as e:
            logger.warning(f"Could not read metadata for {table}: {e.message}")
            return [], []

    async def upsert(
        self,
        conn: BackendConnection,
        table: str,
        primary_key: str,
        rows: Sequence[Dict[str, Any]],
        batch_size: int = RECONCILE_BATCH_SIZE,
    ) -> ReconcileResult:
        """Make the table hold exactly ``rows``: stale delete, then batched upsert."""
        keys = [row[primary_key] for row in rows]
        deleted = await self.delete_stale(conn, table, primary_key, keys)
        inserted, updated = await self.write_rows(conn, table, primary_key, rows, batch_size)
        logger.info(
            f"Reconciled {table}: {inserted} inserted, {updated} updated, {deleted} deleted"
        )
        return ReconcileResult(inserted_count=inserted, updated_count=updated, deleted_count=deleted)

    @asynccontextmanager
    async def transaction(self, conn: BackendConnection) -> AsyncIterator[None]:
        """No transaction support by default."""
        yield


@asynccontextmanager
async def open_connection(
    driver: BackendDriver,
    descriptor: ConnectionDescriptor,
    state: ConnectionState,
    timeout: Optional[float] = CONNECT_TIMEOUT_SECONDS,
) -> AsyncIterator[BackendConnection]:
    """Open a connection for one operation and always close it afterwards,
    including on error, timeout and cancellation.
    """
    conn = await driver.connect(descriptor, timeout=timeout)
    try:
        conn.enter(state)
        yield conn
    finally:
        try:
            await conn.close()
        except Exception as e:  # close errors are logged, never raised
            logger.warning(f"Error closing {driver.engine.value} connection {descriptor.id}: {e}")

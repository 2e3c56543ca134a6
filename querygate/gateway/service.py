import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from ..config.settings import (
    CONNECT_TIMEOUT_SECONDS,
    DEFAULT_ROW_LIMIT,
    OPERATION_TIMEOUT_SECONDS,
    RECONCILE_ATOMIC,
    RECONCILE_BATCH_SIZE,
)
from ..db.cache import ConnectionCache
from ..db.drivers import get_driver
from ..db.drivers.base import BackendConnection, BackendDriver, ConnectionState, open_connection
from ..db.errors import OperationTimeoutError, QueryExecutionError, StoreError
from ..db.stores import ConnectionStore, DatasetStore
from ..models.gateway_models import (
    ConnectionDescriptor,
    DatasetQueryResult,
    DateGranularity,
    EngineType,
    ExecutionResult,
    ReconcileResult,
    SchemaInfo,
    TablePreview,
    parse_granularity,
)
from .executor import execute_query
from .introspector import introspect_schema
from .reconcile import Reconciler, build_upsert_request
from .resolver import DescriptorResolver
from .rewriter import rewrite_for_bucket

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QUERY_TEXT_RE = re.compile(r"\s*(SELECT|WITH)\b", re.IGNORECASE)


def looks_like_query(text: str) -> bool:
    """True for SQL SELECT/WITH text or a MongoDB JSON query, False for a table name."""
    return bool(_QUERY_TEXT_RE.match(text)) or text.lstrip().startswith("{")


async def with_deadline(operation: Awaitable[T], timeout: Optional[float], description: str) -> T:
    """Await operation, raising OperationTimeoutError once timeout seconds pass."""
    if timeout is None:
        return await operation
    try:
        return await asyncio.wait_for(operation, timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{description} timed out after {timeout}s")
        raise OperationTimeoutError(f"{description} timed out after {timeout}s") from e


class DatabaseGateway:
    """Entry point for every gateway operation.

    Each call resolves the connection descriptor, opens one backend
    connection, runs under a deadline and closes the connection on the way
    out, whatever the outcome.
    """

    def __init__(
        self,
        connection_store: ConnectionStore,
        dataset_store: Optional[DatasetStore] = None,
        cache: Optional[ConnectionCache] = None,
        drivers: Optional[Dict[EngineType, BackendDriver]] = None,
        default_limit: int = DEFAULT_ROW_LIMIT,
        timeout: Optional[float] = OPERATION_TIMEOUT_SECONDS,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        batch_size: int = RECONCILE_BATCH_SIZE,
        atomic_reconcile: bool = RECONCILE_ATOMIC,
    ):
        self.connection_store = connection_store
        self.dataset_store = dataset_store
        self.resolver = DescriptorResolver(connection_store, cache)
        self.drivers = drivers
        self.default_limit = default_limit
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.reconciler = Reconciler(batch_size=batch_size, atomic=atomic_reconcile)

    def driver_for(self, descriptor: ConnectionDescriptor) -> BackendDriver:
        return get_driver(descriptor.engine_type, self.drivers)

    async def _run(
        self,
        connection_id: str,
        state: ConnectionState,
        operation: Callable[[BackendDriver, BackendConnection], Awaitable[T]],
        description: str,
        timeout: Optional[float] = None,
        guard: Optional[asyncio.Lock] = None,
    ) -> T:
        async def bound() -> T:
            descriptor = await self.resolver.resolve(connection_id)
            driver = self.driver_for(descriptor)
            async with open_connection(driver, descriptor, state, self.connect_timeout) as conn:
                return await operation(driver, conn)

        async def guarded() -> T:
            if guard is None:
                return await bound()
            async with guard:
                return await bound()

        return await with_deadline(guarded(), timeout if timeout is not None else self.timeout, description)

    async def introspect(self, connection_id: str, timeout: Optional[float] = None) -> SchemaInfo:
        return await self._run(
            connection_id,
            ConnectionState.INTROSPECTING,
            introspect_schema,
            f"Introspecting connection {connection_id}",
            timeout,
        )

    async def list_tables(self, connection_id: str, timeout: Optional[float] = None) -> List[str]:
        async def operation(driver: BackendDriver, conn: BackendConnection) -> List[str]:
            return await driver.list_tables(conn)

        return await self._run(
            connection_id, ConnectionState.INTROSPECTING, operation,
            f"Listing tables for connection {connection_id}", timeout,
        )

    async def list_columns(self, connection_id: str, table_or_query: str, timeout: Optional[float] = None) -> List[str]:
        """Columns of a table, or of the result of a query (run with a cap of one row)."""
        async def operation(driver: BackendDriver, conn: BackendConnection) -> List[str]:
            if looks_like_query(table_or_query):
                execution = await execute_query(driver, conn, table_or_query, default_limit=1)
                return execution.result.columns
            return await driver.list_columns(conn, table_or_query)

        state = ConnectionState.EXECUTING if looks_like_query(table_or_query) else ConnectionState.INTROSPECTING
        return await self._run(
            connection_id, state, operation,
            f"Reading columns for connection {connection_id}", timeout,
        )

    async def preview_table(
        self,
        connection_id: str,
        table: str,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> TablePreview:
        """First rows of a table plus its column types and primary keys."""
        row_limit = limit or self.default_limit

        async def operation(driver: BackendDriver, conn: BackendConnection) -> TablePreview:
            execution = await execute_query(driver, conn, driver.preview_query(table, row_limit), row_limit)
            preview = TablePreview(table=table, execution=execution)
            try:
                preview.column_types = await driver.column_types(conn, table)
                preview.primary_keys = await driver.primary_keys(conn, table)
            except QueryExecutionError as e:
                logger.warning(f"Could not read metadata for {table}: {e.message}")
            return preview

        return await self._run(
            connection_id, ConnectionState.EXECUTING, operation,
            f"Previewing {table} on connection {connection_id}", timeout,
        )

    async def run_query(self, connection_id: str, query: str, timeout: Optional[float] = None) -> ExecutionResult:
        """Run an ad hoc query, plus best effort metadata for the table it reads."""
        if not query or not query.strip():
            raise QueryExecutionError("Query is required", status_code=400)

        async def operation(driver: BackendDriver, conn: BackendConnection) -> ExecutionResult:
            execution = await execute_query(driver, conn, query, self.default_limit)
            execution.column_types, execution.primary_keys = await driver.query_metadata(
                conn, execution.spec, execution.result
            )
            return execution

        return await self._run(
            connection_id, ConnectionState.EXECUTING, operation,
            f"Query on connection {connection_id}", timeout,
        )

    async def run_dataset_query(
        self,
        connection_id: str,
        dataset_id: str,
        override_query: Optional[str] = None,
        date_bucket: Union[str, DateGranularity, None] = None,
        date_column: Optional[str] = None,
        group_by: Union[str, Sequence[str], None] = None,
        timeout: Optional[float] = None,
    ) -> DatasetQueryResult:
        """
        Run a saved dataset, optionally bucketed by date.

        Bucketing options not passed in fall back to the ones stored on the
        dataset. The rewritten text is returned as the effective query.
        """
        if self.dataset_store is None:
            raise StoreError("No dataset store configured")

        async def prepare() -> DatasetQueryResult:
            dataset = await self.dataset_store.fetch(connection_id, dataset_id)
            query = override_query or dataset.saved_query
            if not query or not query.strip():
                raise QueryExecutionError(f"Dataset {dataset_id} has no saved query", status_code=400)

            bucket = date_bucket or dataset.date_bucket
            if bucket:
                descriptor = await self.resolver.resolve(connection_id)
                query = rewrite_for_bucket(
                    query,
                    date_column or dataset.date_column,
                    bucket,
                    group_by if group_by is not None else dataset.group_by,
                    dialect=descriptor.engine_type,
                )

            async def operation(driver: BackendDriver, conn: BackendConnection) -> ExecutionResult:
                return await execute_query(driver, conn, query, self.default_limit)

            execution = await self._run(
                connection_id, ConnectionState.EXECUTING, operation,
                f"Dataset {dataset_id} on connection {connection_id}", timeout=None,
            )
            granularity = None
            if bucket:
                granularity = parse_granularity(bucket)
            return DatasetQueryResult(dataset=dataset, execution=execution, date_bucket=granularity)

        return await with_deadline(
            prepare(),
            timeout if timeout is not None else self.timeout,
            f"Dataset {dataset_id} on connection {connection_id}",
        )

    async def dataset_columns(self, connection_id: str, dataset_id: str, timeout: Optional[float] = None) -> List[str]:
        if self.dataset_store is None:
            raise StoreError("No dataset store configured")
        dataset = await self.dataset_store.fetch(connection_id, dataset_id)
        if not dataset.saved_query.strip():
            raise QueryExecutionError(f"Dataset {dataset_id} has no saved query", status_code=400)
        return await self.list_columns(connection_id, dataset.saved_query, timeout)

    async def reconcile(
        self,
        connection_id: str,
        table_name: str,
        rows: Sequence[Any],
        primary_key: str = "id",
        timeout: Optional[float] = None,
    ) -> ReconcileResult:
        """
        Make table_name hold exactly rows, keyed on primary_key.

        The batch is validated before a connection is opened, so a bad batch
        causes no writes at all.
        """
        request = build_upsert_request(table_name, primary_key, rows)

        async def operation(driver: BackendDriver, conn: BackendConnection) -> ReconcileResult:
            return await self.reconciler.apply(driver, conn, request)

        result = await self._run(
            connection_id,
            ConnectionState.RECONCILING,
            operation,
            f"Reconciling {request.table_name} on connection {connection_id}",
            timeout,
            guard=self.reconciler.lock_for(connection_id, request.table_name),
        )

        try:
            await self.connection_store.mark_refreshed(connection_id)
        except StoreError as e:
            logger.warning(f"Synced {request.table_name} but could not record the refresh: {e.message}")
        return result

    def invalidate(self, connection_id: str) -> bool:
        return self.resolver.invalidate(connection_id)


def rewrite_query(
    query: str,
    date_by: Union[str, DateGranularity],
    date_column: Optional[str] = None,
    additional_group_by: Union[str, Sequence[str], None] = None,
    engine: Union[str, EngineType] = EngineType.POSTGRES,
) -> str:
    """Stand-alone rewrite, no connection involved."""
    return rewrite_for_bucket(query, date_column, date_by, additional_group_by, dialect=engine)



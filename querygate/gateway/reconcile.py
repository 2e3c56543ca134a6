import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Sequence, Tuple

from ..config.settings import RECONCILE_ATOMIC, RECONCILE_BATCH_SIZE
from ..db.drivers.base import BackendConnection, BackendDriver
from ..db.errors import GatewayError, SyncError
from ..models.gateway_models import ReconcileResult, UpsertRequest

logger = logging.getLogger(__name__)


def build_upsert_request(table_name: str, primary_key: str, rows: Sequence[Any]) -> UpsertRequest:
    """
    Validate an incoming row-set before anything touches the backend.

    Raises:
        SyncError (400): empty batch, non-object row, missing or null key,
            or a key that appears twice
    """
    if not table_name or not table_name.strip():
        raise SyncError("Table name is required", status_code=400)
    if not primary_key or not primary_key.strip():
        raise SyncError("Primary key column is required", status_code=400)
    if not rows:
        raise SyncError("No rows supplied; refusing to empty the table", status_code=400)

    seen = set()
    validated: List[Dict[str, Any]] = []
    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            raise SyncError(f"Row {position} is not an object", status_code=400)
        key = row.get(primary_key)
        if key is None:
            raise SyncError(f"Row {position} has no value for primary key {primary_key!r}", status_code=400)
        identity = str(key)
        if identity in seen:
            raise SyncError(f"Duplicate primary key {key!r} in row {position}", status_code=400)
        seen.add(identity)
        validated.append(row)

    return UpsertRequest(table_name=table_name.strip(), primary_key=primary_key, rows=validated)


@asynccontextmanager
async def _no_transaction() -> AsyncIterator[None]:
    yield


class Reconciler:
    """Makes a live table mirror a supplied row-set.

    Only one reconcile per (connection, table) runs at a time in this process.
    """

    def __init__(self, batch_size: int = RECONCILE_BATCH_SIZE, atomic: bool = RECONCILE_ATOMIC):
        self.batch_size = batch_size
        self.atomic = atomic
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, connection_id: str, table_name: str) -> asyncio.Lock:
        key = (connection_id, table_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def apply(self, driver: BackendDriver, conn: BackendConnection, request: UpsertRequest) -> ReconcileResult:
        """Create-if-absent, stale delete and upsert. Caller holds the table lock."""
        table = request.table_name
        created = False
        try:
            if not await driver.table_exists(conn, table):
                # Schema-on-write: one text column per key of the first row
                await driver.create_table(conn, table, list(request.rows[0].keys()), request.primary_key)
                created = True

            scope = driver.transaction(conn) if self.atomic else _no_transaction()
            async with scope:
                result = await driver.upsert(conn, table, request.primary_key, request.rows, self.batch_size)
        except SyncError:
            raise
        except GatewayError as e:
            logger.error(f"Reconciliation of {table} failed: {e.message}")
            raise SyncError(f"Reconciliation of {table!r} failed: {e.message}") from e

        result.created_table = created
        return result

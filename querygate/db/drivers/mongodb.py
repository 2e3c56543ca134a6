import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from bson import ObjectId
from pymongo import AsyncMongoClient, ReplaceOne
from pymongo.errors import ConnectionFailure, PyMongoError

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

logger = logging.getLogger(__name__)

# Collections are schemaless, so no real column type exists
MIXED_TYPE = "mixed"


def mongo_uri(descriptor: ConnectionDescriptor) -> str:
    """Connection URI for a descriptor; a host that already is a URI wins."""
    if descriptor.host.startswith(("mongodb://", "mongodb+srv://")):
        return descriptor.host
    host = f"{descriptor.host}:{descriptor.port}" if descriptor.port else descriptor.host
    credentials = ""
    if descriptor.username:
        credentials = f"{quote_plus(descriptor.username)}:{quote_plus(descriptor.password)}@"
    return f"mongodb://{credentials}{host}/{descriptor.database}"


@dataclass
class MongoQuery:
    """Parsed form of the JSON query text MongoDB connections accept."""
    collection: str
    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None
    sort: List[Tuple[str, int]] = field(default_factory=list)
    limit: Optional[int] = None
    pipeline: Optional[List[Dict[str, Any]]] = None


def parse_mongo_query(text: str) -> MongoQuery:
    """Parse ``{"collection": ..., "filter"|"pipeline": ...}`` query text.

    ``collectionName`` and ``findParams`` are accepted as aliases.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise QueryExecutionError(f"MongoDB queries must be JSON: {e}", status_code=400) from e
    if not isinstance(payload, dict):
        raise QueryExecutionError("MongoDB queries must be JSON objects", status_code=400)

    collection = payload.get("collection") or payload.get("collectionName")
    if not collection or not isinstance(collection, str):
        raise QueryExecutionError("MongoDB query is missing 'collection'", status_code=400)

    pipeline = payload.get("pipeline")
    if pipeline is not None and not (isinstance(pipeline, list) and all(isinstance(s, dict) for s in pipeline)):
        raise QueryExecutionError("'pipeline' must be a list of stage objects", status_code=400)

    query_filter = payload.get("filter", payload.get("findParams")) or {}
    if not isinstance(query_filter, dict):
        raise QueryExecutionError("'filter' must be an object", status_code=400)

    sort = payload.get("sort") or []
    if isinstance(sort, dict):
        sort = list(sort.items())
    try:
        sort = [(str(name), int(direction)) for name, direction in sort]
    except (TypeError, ValueError) as e:
        raise QueryExecutionError(f"'sort' must map field names to 1 or -1: {e}", status_code=400) from e

    limit = payload.get("limit")
    if limit is not None:
        try:
            limit = int(limit)
        except (TypeError, ValueError) as e:
            raise QueryExecutionError(f"'limit' must be an integer: {e}", status_code=400) from e

    return MongoQuery(
        collection=collection,
        filter=query_filter,
        projection=payload.get("projection"),
        sort=sort,
        limit=limit,
        pipeline=pipeline,
    )


def to_jsonable(value: Any) -> Any:
    """Replace ObjectIds (at any depth) with their hex string."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    return value


def to_object_id(primary_key: str, value: Any) -> Any:
    """Undo to_jsonable for _id keys so they match the stored ObjectId."""
    if primary_key == "_id" and isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, datetime):
        return "date"
    return type(value).__name__


def infer_column_types(result: NormalizedResult) -> List[ColumnType]:
    """Column types from the values a query returned; MIXED_TYPE where they disagree."""
    column_types = []
    for column in result.columns:
        seen = {_type_name(row[column]) for row in result.rows if row.get(column) is not None}
        if len(seen) == 1:
            data_type = seen.pop()
        else:
            data_type = MIXED_TYPE if seen else "null"
        column_types.append(ColumnType(column_name=column, data_type=data_type))
    return column_types


class MongoDriver(BackendDriver):
    engine = EngineType.MONGODB

    async def connect(self, descriptor: ConnectionDescriptor, timeout: Optional[float] = None) -> BackendConnection:
        timeout_ms = int((timeout or CONNECT_TIMEOUT_SECONDS) * 1000)
        client = None
        try:
            client = AsyncMongoClient(
                mongo_uri(descriptor),
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
            await client.admin.command("ping")
        except PyMongoError as e:
            if client is not None:
                await client.close()
            raise DatabaseConnectionError(
                f"Could not connect to MongoDB at {descriptor.host}/{descriptor.database}: {e}"
            ) from e

        logger.info(f"Connected to MongoDB {descriptor.database}")
        return BackendConnection(self.engine, client[descriptor.database], client.close, descriptor.database)

    async def list_tables(self, conn: BackendConnection) -> List[str]:
        try:
            return sorted(await conn.handle.list_collection_names())
        except ConnectionFailure as e:
            raise DatabaseConnectionError(f"MongoDB connection lost: {e}") from e
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e

    async def list_columns(self, conn: BackendConnection, table: str) -> List[str]:
        # Inferred from one document; other documents may carry different keys
        try:
            document = await conn.handle[table].find_one()
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e
        return list(document.keys()) if document else []

    async def column_types(self, conn: BackendConnection, table: str) -> List[ColumnType]:
        return [ColumnType(column_name=name, data_type=MIXED_TYPE) for name in await self.list_columns(conn, table)]

    async def primary_keys(self, conn: BackendConnection, table: str) -> List[str]:
        return ["_id"]

    def prepare_query(self, raw_query: str, default_limit: int) -> QuerySpec:
        """The cap is applied on the cursor, so the query text is left as is."""
        text = raw_query.strip()
        if "limit" in text.lower():
            return QuerySpec(raw_query=raw_query, effective_query=text, applied_limit=None)
        return QuerySpec(raw_query=raw_query, effective_query=text, applied_limit=default_limit)

    async def execute(self, conn: BackendConnection, spec: QuerySpec) -> NormalizedResult:
        query = parse_mongo_query(spec.effective_query)
        collection = conn.handle[query.collection]
        try:
            if query.pipeline is not None:
                pipeline = list(query.pipeline)
                if spec.applied_limit is not None and not any("$limit" in stage for stage in pipeline):
                    pipeline.append({"$limit": spec.applied_limit})
                cursor = await collection.aggregate(pipeline)
            else:
                cursor = collection.find(query.filter, query.projection)
                if query.sort:
                    cursor = cursor.sort(query.sort)
                limit = query.limit if query.limit is not None else spec.applied_limit
                if limit:
                    cursor = cursor.limit(limit)
            documents = await cursor.to_list()
        except ConnectionFailure as e:
            raise DatabaseConnectionError(f"MongoDB connection lost: {e}") from e
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e

        rows = [to_jsonable(document) for document in documents]
        columns: List[str] = []
        for row in rows:
            columns.extend(key for key in row if key not in columns)
        return NormalizedResult(columns=columns, rows=rows)

    async def query_metadata(
        self,
        conn: BackendConnection,
        spec: QuerySpec,
        result: NormalizedResult,
    ) -> Tuple[List[ColumnType], List[str]]:
        """Types are inferred from the returned documents."""
        return infer_column_types(result), (["_id"] if "_id" in result.columns else [])

    def preview_query(self, table: str, limit: int) -> str:
        return json.dumps({"collection": table, "filter": {}, "limit": int(limit)})

    async def table_exists(self, conn: BackendConnection, table: str) -> bool:
        try:
            names = await conn.handle.list_collection_names(filter={"name": table})
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e
        return table in names

    async def create_table(self, conn: BackendConnection, table: str, columns: Sequence[str], primary_key: str) -> None:
        try:
            collection = await conn.handle.create_collection(table)
            if primary_key != "_id":
                await collection.create_index(primary_key, unique=True)
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e
        logger.info(f"Created collection {table} keyed on {primary_key}")

    async def delete_stale(self, conn: BackendConnection, table: str, primary_key: str, keys: Sequence[Any]) -> int:
        try:
            result = await conn.handle[table].delete_many(
                {primary_key: {"$nin": [to_object_id(primary_key, key) for key in keys]}}
            )
        except PyMongoError as e:
            raise QueryExecutionError(str(e)) from e
        return result.deleted_count

    async def write_rows(
        self,
        conn: BackendConnection,
        table: str,
        primary_key: str,
        rows: Sequence[Dict[str, Any]],
        batch_size: int,
    ) -> WriteCounts:
        collection = conn.handle[table]
        inserted = updated = 0
        for start in range(0, len(rows), batch_size):
            operations = []
            for row in rows[start:start + batch_size]:
                document = dict(row)
                key = to_object_id(primary_key, row[primary_key])
                if primary_key == "_id":
                    document["_id"] = key
                else:
                    # _id is server-assigned when another column is the key
                    document.pop("_id", None)
                operations.append(ReplaceOne({primary_key: key}, document, upsert=True))
            try:
                result = await collection.bulk_write(operations, ordered=True)
            except PyMongoError as e:
                raise QueryExecutionError(str(e)) from e
            inserted += result.upserted_count
            updated += result.matched_count
        return inserted, updated

"""Driver behaviour against mocked backend handles; no database is needed."""
import json
from contextlib import asynccontextmanager
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiomysql
import asyncpg
import pytest
from bson import ObjectId
from pymongo import ReplaceOne
from pymongo.errors import InvalidURI

from querygate.db.drivers.base import BackendConnection
from querygate.db.drivers.mongodb import MongoDriver, infer_column_types
from querygate.db.drivers.mysql import MySQLDriver
from querygate.db.drivers.postgres import PostgresDriver
from querygate.db.errors import DatabaseConnectionError, QueryExecutionError
from querygate.models.gateway_models import ConnectionDescriptor, EngineType, NormalizedResult

FIRST_ID = "65a1f0c2e4b0a1b2c3d4e5f6"
SECOND_ID = "65a1f0c2e4b0a1b2c3d4e5f7"


# MongoDB

def mongo_connection(collection):
    database = MagicMock()
    database.__getitem__.return_value = collection
    return BackendConnection(EngineType.MONGODB, database, AsyncMock(), "shop")


@pytest.mark.asyncio
async def test_mongo_find_is_capped_on_the_cursor():
    collection = MagicMock()
    cursor = collection.find.return_value
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[{"_id": ObjectId(FIRST_ID), "status": "paid"}])
    driver = MongoDriver()

    spec = driver.prepare_query('{"collection": "orders", "filter": {"status": "paid"}}', 100)
    result = await driver.execute(mongo_connection(collection), spec)

    collection.find.assert_called_once_with({"status": "paid"}, None)
    cursor.limit.assert_called_once_with(100)
    assert result.columns == ["_id", "status"]
    assert result.rows == [{"_id": FIRST_ID, "status": "paid"}]


@pytest.mark.asyncio
async def test_mongo_pipeline_gets_a_limit_stage():
    collection = MagicMock()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[{"_id": "north", "n": 3}])
    collection.aggregate = AsyncMock(return_value=cursor)
    driver = MongoDriver()
    query = json.dumps({"collection": "orders", "pipeline": [{"$group": {"_id": "$region", "n": {"$sum": 1}}}]})

    result = await driver.execute(mongo_connection(collection), driver.prepare_query(query, 50))

    pipeline = collection.aggregate.await_args.args[0]
    assert pipeline == [{"$group": {"_id": "$region", "n": {"$sum": 1}}}, {"$limit": 50}]
    assert result.rows == [{"_id": "north", "n": 3}]


@pytest.mark.asyncio
async def test_mongo_stale_delete_matches_stored_object_ids():
    collection = MagicMock()
    collection.delete_many = AsyncMock(return_value=SimpleNamespace(deleted_count=2))

    deleted = await MongoDriver().delete_stale(mongo_connection(collection), "orders", "_id", [FIRST_ID, "legacy-key"])

    assert deleted == 2
    collection.delete_many.assert_awaited_once_with({"_id": {"$nin": [ObjectId(FIRST_ID), "legacy-key"]}})


@pytest.mark.asyncio
async def test_mongo_rows_read_back_replace_the_same_documents():
    collection = MagicMock()
    collection.bulk_write = AsyncMock(return_value=SimpleNamespace(upserted_count=0, matched_count=2))
    rows = [{"_id": FIRST_ID, "n": 1}, {"_id": SECOND_ID, "n": 2}]

    counts = await MongoDriver().write_rows(mongo_connection(collection), "orders", "_id", rows, batch_size=10)

    assert counts == (0, 2)
    operations = collection.bulk_write.await_args.args[0]
    assert operations == [
        ReplaceOne({"_id": ObjectId(FIRST_ID)}, {"_id": ObjectId(FIRST_ID), "n": 1}, upsert=True),
        ReplaceOne({"_id": ObjectId(SECOND_ID)}, {"_id": ObjectId(SECOND_ID), "n": 2}, upsert=True),
    ]


@pytest.mark.asyncio
async def test_mongo_other_keys_leave_id_to_the_server():
    collection = MagicMock()
    collection.bulk_write = AsyncMock(return_value=SimpleNamespace(upserted_count=1, matched_count=0))

    await MongoDriver().write_rows(
        mongo_connection(collection), "products", "sku", [{"_id": FIRST_ID, "sku": "A-1"}], batch_size=10,
    )

    assert collection.bulk_write.await_args.args[0] == [ReplaceOne({"sku": "A-1"}, {"sku": "A-1"}, upsert=True)]


@pytest.mark.asyncio
async def test_mongo_malformed_uri_is_a_connection_error(monkeypatch):
    monkeypatch.setattr(
        "querygate.db.drivers.mongodb.AsyncMongoClient",
        MagicMock(side_effect=InvalidURI("Invalid URI scheme")),
    )
    descriptor = ConnectionDescriptor(id="m1", engine_type="mongodb", host="mongodb://", database="shop")

    with pytest.raises(DatabaseConnectionError, match="Invalid URI scheme"):
        await MongoDriver().connect(descriptor, timeout=1)


def test_mongo_column_types_come_from_the_values():
    result = NormalizedResult(
        columns=["_id", "total", "paid", "tags", "created_at", "note"],
        rows=[
            {"_id": FIRST_ID, "total": 10, "paid": True, "tags": ["a"], "created_at": datetime(2024, 1, 1), "note": None},
            {"_id": SECOND_ID, "total": 12.5, "paid": False, "tags": [], "created_at": datetime(2024, 1, 2)},
        ],
    )

    types = {t.column_name: t.data_type for t in infer_column_types(result)}

    assert types == {
        "_id": "string",
        "total": "mixed",
        "paid": "boolean",
        "tags": "array",
        "created_at": "date",
        "note": "null",
    }


@pytest.mark.asyncio
async def test_mongo_query_metadata_reports_id_key():
    result = NormalizedResult(columns=["_id", "n"], rows=[{"_id": FIRST_ID, "n": 1}])
    driver = MongoDriver()

    column_types, primary_keys = await driver.query_metadata(
        mongo_connection(MagicMock()), driver.prepare_query('{"collection": "orders"}', 100), result,
    )

    assert [t.data_type for t in column_types] == ["string", "integer"]
    assert primary_keys == ["_id"]


# Postgres

def postgres_connection(handle):
    return BackendConnection(EngineType.POSTGRES, handle, AsyncMock(), "analytics")


@pytest.mark.asyncio
async def test_postgres_execute_reads_columns_from_the_prepared_statement():
    statement = MagicMock()
    statement.fetch = AsyncMock(return_value=[])
    statement.get_attributes.return_value = [SimpleNamespace(name="id"), SimpleNamespace(name="amount")]
    handle = MagicMock()
    handle.prepare = AsyncMock(return_value=statement)
    driver = PostgresDriver()

    result = await driver.execute(postgres_connection(handle), driver.prepare_query("SELECT id, amount FROM orders", 100))

    handle.prepare.assert_awaited_once_with("SELECT id, amount FROM orders\nLIMIT 100")
    assert result.columns == ["id", "amount"]
    assert result.rows == []


@pytest.mark.asyncio
async def test_postgres_backend_message_is_kept():
    handle = MagicMock()
    handle.prepare = AsyncMock(side_effect=asyncpg.exceptions.UndefinedTableError('relation "nope" does not exist'))
    driver = PostgresDriver()

    with pytest.raises(QueryExecutionError, match='relation "nope" does not exist'):
        await driver.execute(postgres_connection(handle), driver.prepare_query("SELECT * FROM nope", 100))


@pytest.mark.asyncio
@pytest.mark.parametrize("tag, expected", [("DELETE 3", 3), ("DELETE 0", 0), ("", 0)])
async def test_postgres_delete_count_comes_from_the_command_tag(tag, expected):
    handle = MagicMock()
    handle.execute = AsyncMock(return_value=tag)

    deleted = await PostgresDriver().delete_stale(postgres_connection(handle), "orders", "id", [1, 2])

    assert deleted == expected
    statement, keys = handle.execute.await_args.args
    assert statement.startswith('DELETE FROM "orders"')
    assert keys == ["1", "2"]


@pytest.mark.asyncio
async def test_postgres_upsert_counts_inserted_rows_per_batch():
    handle = MagicMock()
    handle.fetch = AsyncMock(side_effect=[
        [{"inserted": True}, {"inserted": False}],
        [{"inserted": True}],
    ])
    rows = [{"id": 1, "n": "a"}, {"id": 2, "n": "b"}, {"id": 3, "n": "c"}]

    counts = await PostgresDriver().write_rows(postgres_connection(handle), "orders", "id", rows, batch_size=2)

    assert counts == (2, 1)
    payloads = [json.loads(call.args[1]) for call in handle.fetch.await_args_list]
    assert payloads == [rows[:2], rows[2:]]


# MySQL

class ScriptedCursor:
    """Returns (description, rows, rowcount) results in order, or raises a scripted error."""

    def __init__(self, results):
        self.results = list(results)
        self.executed = []
        self.description = None
        self.rows = []
        self.rowcount = -1

    async def execute(self, statement, params=None):
        self.executed.append((statement, params))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        self.description, self.rows, self.rowcount = result

    async def fetchall(self):
        return self.rows


class ScriptedHandle:
    def __init__(self, results):
        self.cursor_ = ScriptedCursor(results)

    @asynccontextmanager
    async def cursor(self, cursor_class=None):
        yield self.cursor_


def mysql_connection(handle):
    return BackendConnection(EngineType.MYSQL, handle, AsyncMock(), "shop")


@pytest.mark.asyncio
async def test_mysql_upsert_splits_inserted_from_updated():
    handle = ScriptedHandle([
        ((("id",),), [{"id": 1}], 1),
        (None, [], 3),
    ])
    rows = [{"id": 1, "n": "a"}, {"id": 2, "n": "b"}]

    counts = await MySQLDriver().write_rows(mysql_connection(handle), "orders", "id", rows, batch_size=10)

    assert counts == (1, 1)
    lookup, upsert = handle.cursor_.executed
    assert lookup[1] == [1, 2]
    assert upsert[0].startswith("INSERT INTO `orders`")
    assert upsert[1] == [1, "a", 2, "b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("rowcount, expected", [(4, 4), (-1, 0)])
async def test_mysql_delete_count_is_the_rowcount(rowcount, expected):
    handle = ScriptedHandle([(None, [], rowcount)])

    deleted = await MySQLDriver().delete_stale(mysql_connection(handle), "orders", "id", [1, 2])

    assert deleted == expected
    assert handle.cursor_.executed[0][0].startswith("DELETE FROM `orders`")


@pytest.mark.asyncio
async def test_mysql_execute_returns_dict_rows():
    handle = ScriptedHandle([((("id",), ("n",)), [{"id": 1, "n": "a"}], 1)])
    driver = MySQLDriver()

    result = await driver.execute(mysql_connection(handle), driver.prepare_query("SELECT id, n FROM orders", 100))

    assert result.columns == ["id", "n"]
    assert result.rows == [{"id": 1, "n": "a"}]
    assert handle.cursor_.executed[0][0] == "SELECT id, n FROM orders\nLIMIT 100"


@pytest.mark.asyncio
async def test_mysql_lost_connection_is_a_connection_error():
    handle = ScriptedHandle([aiomysql.OperationalError(2013, "Lost connection to MySQL server during query")])

    with pytest.raises(DatabaseConnectionError):
        await MySQLDriver().list_tables(mysql_connection(handle))


@pytest.mark.asyncio
async def test_sql_query_metadata_reads_the_from_table():
    handle = ScriptedHandle([
        ((("Field",), ("Type",)), [{"Field": "id", "Type": "int"}, {"Field": "n", "Type": "varchar(20)"}], 2),
        ((("COLUMN_NAME",),), [{"COLUMN_NAME": "id"}], 1),
    ])
    driver = MySQLDriver()
    spec = driver.prepare_query("SELECT o.id, c.name FROM orders o JOIN customers c ON c.id = o.customer_id", 100)

    column_types, primary_keys = await driver.query_metadata(mysql_connection(handle), spec, NormalizedResult())

    assert [(t.column_name, t.data_type) for t in column_types] == [("id", "int"), ("n", "varchar(20)")]
    assert primary_keys == ["id"]
    assert handle.cursor_.executed[0][0] == "DESCRIBE `orders`"

import pytest

from querygate.db.drivers.mongodb import MongoDriver
from querygate.db.drivers.mysql import MySQLDriver
from querygate.db.drivers.postgres import PostgresDriver
from querygate.db.errors import ConnectionNotFoundError, QueryExecutionError, UnsupportedBackendError
from querygate.models.gateway_models import ConnectionDescriptor

from fakes import FakeConnectionStore, normalized_sql


ROWS = [{"id": i, "amount": i * 10} for i in range(250)]


@pytest.mark.parametrize("driver", [PostgresDriver(), MySQLDriver()])
def test_sql_query_without_limit_gets_default_cap(driver):
    spec = driver.prepare_query("SELECT * FROM orders;", 100)

    assert spec.effective_query == "SELECT * FROM orders\nLIMIT 100"
    assert spec.applied_limit == 100


@pytest.mark.parametrize("driver", [PostgresDriver(), MySQLDriver()])
def test_sql_query_mentioning_limit_is_untouched(driver):
    spec = driver.prepare_query("select * from orders Limit 5", 100)

    assert spec.effective_query == "select * from orders Limit 5"
    assert spec.applied_limit is None


@pytest.mark.parametrize("driver", [PostgresDriver(), MySQLDriver()])
def test_cap_survives_a_trailing_line_comment(driver):
    spec = driver.prepare_query("SELECT id FROM orders -- newest first", 100)

    assert spec.effective_query == "SELECT id FROM orders -- newest first\nLIMIT 100"
    assert spec.effective_query.splitlines()[-1] == "LIMIT 100"
    assert spec.applied_limit == 100


def test_mongo_cap_is_applied_on_the_cursor():
    driver = MongoDriver()

    capped = driver.prepare_query('{"collection": "orders"}', 100)
    limited = driver.prepare_query('{"collection": "orders", "limit": 5}', 100)

    assert capped.effective_query == '{"collection": "orders"}'
    assert capped.applied_limit == 100
    assert limited.applied_limit is None


@pytest.mark.asyncio
async def test_run_query_returns_at_most_default_rows(gateway, fake_driver):
    fake_driver.query_rows = ROWS

    execution = await gateway.run_query("conn-1", "SELECT id, amount FROM orders")

    assert len(execution.result.rows) == 100
    assert execution.result.columns == ["id", "amount"]
    assert execution.spec.effective_query == "SELECT id, amount FROM orders\nLIMIT 100"


@pytest.mark.asyncio
async def test_backend_ignoring_the_cap_is_truncated(gateway, fake_driver):
    fake_driver.query_rows = ROWS
    fake_driver.honour_limit = False

    execution = await gateway.run_query("conn-1", "SELECT id FROM orders")

    assert len(execution.result.rows) == 100


@pytest.mark.asyncio
async def test_explicit_limit_is_not_capped_again(gateway, fake_driver):
    fake_driver.query_rows = ROWS

    execution = await gateway.run_query("conn-1", "SELECT id FROM orders LIMIT 200")

    assert len(execution.result.rows) == 200
    assert execution.spec.applied_limit is None
    assert execution.spec.effective_query.count("LIMIT") == 1


@pytest.mark.asyncio
async def test_backend_error_message_is_kept(gateway, fake_driver):
    with pytest.raises(QueryExecutionError, match='syntax error at or near "broken"'):
        await gateway.run_query("conn-1", "SELECT broken FROM orders")

    assert fake_driver.open_connections == []


@pytest.mark.asyncio
async def test_unknown_engine_is_rejected_before_connecting(fake_driver):
    from querygate.db.cache import ConnectionCache
    from querygate.gateway.service import DatabaseGateway
    from querygate.models.gateway_models import EngineType

    sqlite = ConnectionDescriptor(id="conn-9", engine_type="sqlite", host="", database="local.db")
    gateway = DatabaseGateway(
        FakeConnectionStore({"conn-9": sqlite}),
        cache=ConnectionCache(),
        drivers={EngineType.POSTGRES: fake_driver},
    )

    with pytest.raises(UnsupportedBackendError):
        await gateway.run_query("conn-9", "SELECT 1")

    assert fake_driver.connections == []


@pytest.mark.asyncio
async def test_unknown_connection_is_not_found(gateway):
    with pytest.raises(ConnectionNotFoundError):
        await gateway.run_query("nope", "SELECT 1")


@pytest.mark.asyncio
async def test_dataset_query_applies_stored_bucket(gateway, fake_driver):
    fake_driver.query_rows = [{"created_at": "2024-01-01", "total": 10}]

    result = await gateway.run_dataset_query("conn-1", "monthly-sales")

    assert result.effective_query == normalized_sql(
        "SELECT DATE_TRUNC('month', created_at) AS created_at, SUM(amount) AS total FROM orders "
        "GROUP BY DATE_TRUNC('month', created_at)"
    ) + "\nLIMIT 100"
    assert result.date_bucket.value == "month"
    assert result.execution.result.rows == fake_driver.query_rows


@pytest.mark.asyncio
async def test_dataset_query_overrides(gateway, fake_driver):
    result = await gateway.run_dataset_query(
        "conn-1",
        "monthly-sales",
        override_query="SELECT created_at, region, COUNT(*) AS n FROM orders",
        date_bucket="year",
    )

    assert result.effective_query == normalized_sql(
        "SELECT DATE_TRUNC('year', created_at) AS created_at, region, COUNT(*) AS n FROM orders "
        "GROUP BY DATE_TRUNC('year', created_at), region"
    ) + "\nLIMIT 100"


@pytest.mark.asyncio
async def test_dataset_without_bucket_runs_saved_query(gateway, fake_driver):
    result = await gateway.run_dataset_query("conn-1", "raw-orders")

    assert result.effective_query == "SELECT id, amount FROM orders\nLIMIT 100"
    assert result.date_bucket is None


@pytest.mark.asyncio
async def test_list_columns_of_a_query_uses_a_single_row(gateway, fake_driver):
    fake_driver.query_rows = ROWS

    columns = await gateway.list_columns("conn-1", "SELECT id, amount FROM orders")

    assert columns == ["id", "amount"]
    assert fake_driver.executed[-1].effective_query.endswith("LIMIT 1")


@pytest.mark.asyncio
async def test_run_query_reports_metadata_of_the_queried_table(gateway, fake_driver):
    fake_driver.tables = {"orders": [{"id": 1, "amount": 10}]}
    fake_driver.query_rows = [{"id": 1, "amount": 10}]

    execution = await gateway.run_query("conn-1", "SELECT o.id, o.amount FROM orders AS o WHERE o.amount > 5")

    assert [t.column_name for t in execution.column_types] == ["id", "amount"]
    assert execution.primary_keys == ["id"]


@pytest.mark.asyncio
async def test_run_query_metadata_degrades_to_empty_lists(gateway, fake_driver):
    fake_driver.tables = {"orders": [{"id": 1, "amount": 10}]}
    fake_driver.failing_tables = {"orders"}

    unreadable = await gateway.run_query("conn-1", "SELECT id FROM orders")
    derived = await gateway.run_query("conn-1", "SELECT id FROM (SELECT id FROM orders) AS recent")

    assert unreadable.column_types == [] and unreadable.primary_keys == []
    assert derived.column_types == [] and derived.primary_keys == []
    assert fake_driver.open_connections == []

import asyncio

import pytest

from querygate.db.errors import SyncError
from querygate.gateway.reconcile import build_upsert_request


def leads(*ids):
    return [{"id": str(i), "email": f"lead{i}@example.com"} for i in ids]


def keys_of(rows):
    return sorted(row["id"] for row in rows)


@pytest.mark.asyncio
async def test_table_ends_up_holding_exactly_the_payload(gateway, fake_driver, connection_store):
    fake_driver.tables = {"leads": leads(1, 2, 3)}

    result = await gateway.reconcile("conn-1", "leads", leads(2, 3, 4))

    assert keys_of(fake_driver.tables["leads"]) == ["2", "3", "4"]
    assert (result.inserted_count, result.updated_count, result.deleted_count) == (1, 2, 1)
    assert result.created_table is False
    assert connection_store.refreshed == ["conn-1"]
    assert fake_driver.open_connections == []


@pytest.mark.asyncio
async def test_repeating_a_reconcile_changes_nothing(gateway, fake_driver):
    fake_driver.tables = {"leads": leads(1, 2, 3)}

    await gateway.reconcile("conn-1", "leads", leads(2, 3, 4))
    snapshot = [dict(row) for row in fake_driver.tables["leads"]]
    again = await gateway.reconcile("conn-1", "leads", leads(2, 3, 4))

    assert fake_driver.tables["leads"] == snapshot
    assert (again.inserted_count, again.updated_count, again.deleted_count) == (0, 3, 0)


@pytest.mark.asyncio
async def test_updated_values_replace_old_ones(gateway, fake_driver):
    fake_driver.tables = {"leads": leads(1)}

    await gateway.reconcile("conn-1", "leads", [{"id": "1", "email": "new@example.com"}])

    assert fake_driver.tables["leads"] == [{"id": "1", "email": "new@example.com"}]


@pytest.mark.asyncio
async def test_missing_table_is_created_from_first_row(gateway, fake_driver):
    result = await gateway.reconcile("conn-1", "fresh_leads", leads(1, 2))

    assert result.created_table is True
    assert result.inserted_count == 2
    assert fake_driver.created["fresh_leads"] == ["id", "email"]


@pytest.mark.asyncio
async def test_custom_primary_key(gateway, fake_driver):
    fake_driver.tables = {"people": [{"email": "a@example.com"}, {"email": "b@example.com"}]}

    result = await gateway.reconcile("conn-1", "people", [{"email": "b@example.com"}], primary_key="email")

    assert fake_driver.tables["people"] == [{"email": "b@example.com"}]
    assert result.deleted_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("rows", [
    [],
    [{"id": "1"}, {"email": "no-key@example.com"}],
    [{"id": "1"}, {"id": None}],
    [{"id": 1}, {"id": "1"}],
    [{"id": "1"}, "not a row"],
])
async def test_invalid_payload_writes_nothing(gateway, fake_driver, rows):
    fake_driver.tables = {"leads": leads(1, 2, 3)}

    with pytest.raises(SyncError) as info:
        await gateway.reconcile("conn-1", "leads", rows)

    assert info.value.status_code == 400
    assert keys_of(fake_driver.tables["leads"]) == ["1", "2", "3"]
    assert fake_driver.write_calls == 0
    assert fake_driver.connections == []


@pytest.mark.asyncio
async def test_write_failure_is_reported_as_sync_error(gateway, fake_driver, connection_store):
    fake_driver.tables = {"leads": leads(1)}
    fake_driver.fail_writes = True

    with pytest.raises(SyncError, match="No space left on device") as info:
        await gateway.reconcile("conn-1", "leads", leads(1, 2))

    assert info.value.status_code == 500
    assert connection_store.refreshed == []
    assert fake_driver.open_connections == []


@pytest.mark.asyncio
async def test_concurrent_reconciles_of_one_table_do_not_overlap(gateway, fake_driver):
    fake_driver.tables = {"leads": leads(1, 2, 3)}
    fake_driver.delay = 0.02

    await asyncio.gather(
        gateway.reconcile("conn-1", "leads", leads(2, 3, 4)),
        gateway.reconcile("conn-1", "leads", leads(4, 5)),
        gateway.reconcile("conn-1", "leads", leads(5, 6, 7)),
    )

    assert fake_driver.max_active_writers == 1
    # Whichever ran last wins outright, never a mix
    assert keys_of(fake_driver.tables["leads"]) in (["2", "3", "4"], ["4", "5"], ["5", "6", "7"])


@pytest.mark.asyncio
async def test_different_tables_may_reconcile_concurrently(gateway, fake_driver):
    fake_driver.tables = {"leads": leads(1), "accounts": leads(1)}
    fake_driver.delay = 0.02

    await asyncio.gather(
        gateway.reconcile("conn-1", "leads", leads(2)),
        gateway.reconcile("conn-1", "accounts", leads(3)),
    )

    assert fake_driver.max_active_writers == 2


def test_build_upsert_request_strips_table_name():
    request = build_upsert_request("  leads ", "id", leads(1, 2))

    assert request.table_name == "leads"
    assert request.keys() == ["1", "2"]

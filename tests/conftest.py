"""
QueryGate test configuration

Fixtures wiring the gateway to in-memory fakes; no database is needed.
"""
import sys
from pathlib import Path

import pytest

# Add project root and this directory to path
TESTS_DIR = Path(__file__).parent
sys.path.insert(0, str(TESTS_DIR.parent))
sys.path.insert(0, str(TESTS_DIR))

from querygate.db.cache import ConnectionCache
from querygate.gateway.service import DatabaseGateway
from querygate.models.gateway_models import ConnectionDescriptor, DatasetDefinition, DateGranularity, EngineType

from fakes import FakeConnectionStore, FakeDatasetStore, FakeDriver


@pytest.fixture
def descriptor():
    return ConnectionDescriptor(
        id="conn-1",
        engine_type="postgres",
        host="db.internal",
        database="analytics",
        username="reader",
        password="s3cret",
    )


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def connection_store(descriptor):
    return FakeConnectionStore({descriptor.id: descriptor})


@pytest.fixture
def dataset_store(descriptor):
    return FakeDatasetStore({
        "monthly-sales": DatasetDefinition(
            id="monthly-sales",
            connection_id=descriptor.id,
            name="Monthly sales",
            saved_query="SELECT created_at, SUM(amount) AS total FROM orders GROUP BY created_at",
            date_bucket=DateGranularity.MONTH,
            date_column="created_at",
        ),
        "raw-orders": DatasetDefinition(
            id="raw-orders",
            connection_id=descriptor.id,
            name="Raw orders",
            saved_query="SELECT id, amount FROM orders",
        ),
    })


@pytest.fixture
def cache():
    return ConnectionCache()


@pytest.fixture
def gateway(fake_driver, connection_store, dataset_store, cache):
    return DatabaseGateway(
        connection_store,
        dataset_store,
        cache=cache,
        drivers={EngineType.POSTGRES: fake_driver},
        timeout=5,
    )

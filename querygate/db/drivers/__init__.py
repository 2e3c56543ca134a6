from typing import Dict, Optional, Union

from ...models.gateway_models import EngineType, normalize_engine_type
from ..errors import UnsupportedBackendError
from .base import BackendConnection, BackendDriver, ConnectionState, open_connection
from .mongodb import MongoDriver
from .mysql import MySQLDriver
from .postgres import PostgresDriver

DRIVERS: Dict[EngineType, BackendDriver] = {
    EngineType.POSTGRES: PostgresDriver(),
    EngineType.MYSQL: MySQLDriver(),
    EngineType.MONGODB: MongoDriver(),
}


def get_driver(
    engine_type: Union[str, EngineType, None],
    drivers: Optional[Dict[EngineType, BackendDriver]] = None,
) -> BackendDriver:
    """Pick the driver for an engine name, or raise UnsupportedBackendError."""
    registry = DRIVERS if drivers is None else drivers
    engine = normalize_engine_type(engine_type)
    if engine is None or engine not in registry:
        raise UnsupportedBackendError(f"Unsupported database type: {engine_type!r}")
    return registry[engine]


__all__ = [
    'BackendConnection',
    'BackendDriver',
    'ConnectionState',
    'DRIVERS',
    'MongoDriver',
    'MySQLDriver',
    'PostgresDriver',
    'get_driver',
    'open_connection'
]

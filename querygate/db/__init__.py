from .cache import ConnectionCache, connection_cache
from .errors import (
    GatewayError,
    DatabaseConnectionError,
    UnsupportedBackendError,
    SchemaIntrospectionError,
    QueryExecutionError,
    RewriteError,
    SyncError,
    ConnectionNotFoundError,
    DatasetNotFoundError,
    StoreError,
    OperationTimeoutError,
    InvalidDefinitionError
)

__all__ = [
    'ConnectionCache',
    'connection_cache',
    'GatewayError',
    'DatabaseConnectionError',
    'UnsupportedBackendError',
    'SchemaIntrospectionError',
    'QueryExecutionError',
    'RewriteError',
    'SyncError',
    'ConnectionNotFoundError',
    'DatasetNotFoundError',
    'StoreError',
    'OperationTimeoutError',
    'InvalidDefinitionError'
]

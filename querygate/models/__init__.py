from .gateway_models import (
    ColumnType,
    ConnectionDescriptor,
    DatasetDefinition,
    DatasetQueryResult,
    DateGranularity,
    EngineType,
    ExecutionResult,
    NormalizedResult,
    QuerySpec,
    ReconcileResult,
    SchemaInfo,
    TablePreview,
    UpsertRequest
)

__all__ = [
    'ColumnType',
    'ConnectionDescriptor',
    'DatasetDefinition',
    'DatasetQueryResult',
    'DateGranularity',
    'EngineType',
    'ExecutionResult',
    'NormalizedResult',
    'QuerySpec',
    'ReconcileResult',
    'SchemaInfo',
    'TablePreview',
    'UpsertRequest'
]

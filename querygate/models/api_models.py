from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .gateway_models import (
    ColumnType,
    DatasetQueryResult,
    DateGranularity,
    ExecutionResult,
    ReconcileResult,
    SchemaInfo,
    TablePreview,
)


class ErrorResponse(BaseModel):
    """Body of every failed request"""
    error: str = Field(..., description="What went wrong")


class QueryRequest(BaseModel):
    """Model for ad hoc query requests"""
    query: str = Field(..., description="SQL text, or a MongoDB JSON query object as text")


class ColumnsRequest(BaseModel):
    """Model for column lookups by table name or query"""
    query: str = Field(..., description="Table/collection name, or a query whose result columns are wanted")


class ColumnTypeModel(BaseModel):
    column_name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Backend type name, 'mixed' for MongoDB")

    @classmethod
    def from_column_type(cls, column_type: ColumnType) -> "ColumnTypeModel":
        return cls(column_name=column_type.column_name, data_type=column_type.data_type)


class SchemaResponse(BaseModel):
    """Model for schema introspection responses"""
    tables: List[str] = Field(default_factory=list, description="Tables or collections")
    columns: Dict[str, List[str]] = Field(default_factory=dict, description="Column names per table")
    column_types: Dict[str, List[ColumnTypeModel]] = Field(default_factory=dict, description="Column types per table")

    @classmethod
    def from_schema(cls, schema: SchemaInfo) -> "SchemaResponse":
        return cls(
            tables=schema.tables,
            columns=schema.columns,
            column_types={
                table: [ColumnTypeModel.from_column_type(t) for t in types]
                for table, types in schema.column_types.items()
            },
        )


class QueryResponse(BaseModel):
    """Model for query responses"""
    columns: List[str] = Field(default_factory=list, description="Column names in result order")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Result rows")
    query: str = Field("", description="The query text actually executed")
    applied_limit: Optional[int] = Field(None, description="Row cap added by the gateway, if any")
    rows_returned: int = Field(0, description="Number of rows returned by the query")
    execution_time_ms: Optional[float] = Field(None, description="Query execution time in milliseconds")
    column_types: List[ColumnTypeModel] = Field(default_factory=list, description="Column types of the queried table, when known")
    primary_keys: List[str] = Field(default_factory=list, description="Primary key columns of the queried table, when known")

    @classmethod
    def from_execution(cls, execution: ExecutionResult, **extra: Any) -> "QueryResponse":
        fields = dict(
            columns=execution.result.columns,
            rows=execution.result.rows,
            query=execution.spec.effective_query,
            applied_limit=execution.spec.applied_limit,
            rows_returned=len(execution.result.rows),
            execution_time_ms=execution.execution_time_ms,
            column_types=[ColumnTypeModel.from_column_type(t) for t in execution.column_types],
            primary_keys=execution.primary_keys,
        )
        fields.update(extra)
        return cls(**fields)


class TablePreviewResponse(QueryResponse):
    """First rows of a table with its metadata"""
    table: str = Field(..., description="Table or collection name")

    @classmethod
    def from_preview(cls, preview: TablePreview) -> "TablePreviewResponse":
        return cls.from_execution(
            preview.execution,
            table=preview.table,
            column_types=[ColumnTypeModel.from_column_type(t) for t in preview.column_types],
            primary_keys=preview.primary_keys,
        )


class DatasetQueryRequest(BaseModel):
    """Model for dataset query requests; unset fields fall back to the saved dataset"""
    query: Optional[str] = Field(None, description="Query to run instead of the saved one")
    date_bucket: Optional[DateGranularity] = Field(None, description="Date granularity to bucket by")
    date_column: Optional[str] = Field(None, description="Column to bucket on")
    group_by: Optional[Union[List[str], str]] = Field(None, description="Extra GROUP BY columns")


class DatasetQueryResponse(QueryResponse):
    """Model for dataset query responses"""
    dataset_id: str = Field(..., description="Dataset identifier")
    dataset_name: str = Field("", description="Dataset display name")
    effective_query: str = Field("", description="Query after date bucketing")
    date_bucket: Optional[DateGranularity] = Field(None, description="Granularity applied, if any")

    @classmethod
    def from_result(cls, result: DatasetQueryResult) -> "DatasetQueryResponse":
        return cls.from_execution(
            result.execution,
            dataset_id=result.dataset.id,
            dataset_name=result.dataset.name,
            effective_query=result.effective_query,
            date_bucket=result.date_bucket,
        )


class RewriteRequest(BaseModel):
    """Model for stand-alone date bucketing requests"""
    query: str = Field(..., description="SELECT query to rewrite")
    date_by: DateGranularity = Field(..., description="Date granularity")
    date_column: Optional[str] = Field(None, description="Column to bucket on; detected when omitted")
    additional_group_by: Optional[Union[List[str], str]] = Field(None, description="Extra GROUP BY columns")
    engine: str = Field("postgres", description="SQL dialect: postgres or mysql")


class RewriteResponse(BaseModel):
    updated_query: str = Field(..., description="Rewritten query")


class ReconcileRequest(BaseModel):
    """Model for table refresh requests"""
    table_name: str = Field(..., description="Target table or collection")
    primary_key: str = Field("id", description="Column identifying a row")
    data: List[Dict[str, Any]] = Field(default_factory=list, description="Complete desired contents of the table")


class ReconcileResponse(BaseModel):
    """Model for table refresh responses"""
    message: str = Field(..., description="Summary")
    table_name: str = Field(..., description="Target table or collection")
    inserted: int = Field(0, description="Rows inserted")
    updated: int = Field(0, description="Rows updated")
    deleted: int = Field(0, description="Stale rows deleted")
    created_table: bool = Field(False, description="Whether the table had to be created")
    refreshed_at: datetime = Field(..., description="When the refresh finished")

    @classmethod
    def from_result(cls, table_name: str, result: ReconcileResult) -> "ReconcileResponse":
        return cls(
            message="Data refreshed successfully",
            table_name=table_name,
            inserted=result.inserted_count,
            updated=result.updated_count,
            deleted=result.deleted_count,
            created_table=result.created_table,
            refreshed_at=datetime.now(timezone.utc),
        )


class CacheInvalidationResponse(BaseModel):
    connection_id: str = Field(..., description="Connection identifier")
    invalidated: bool = Field(..., description="Whether a cached descriptor was dropped")

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class EngineType(str, Enum):
    """Backends the gateway can talk to"""
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"


ENGINE_ALIASES = {
    "postgresql": EngineType.POSTGRES,
    "pg": EngineType.POSTGRES,
    "mariadb": EngineType.MYSQL,
    "mongo": EngineType.MONGODB,
}


def normalize_engine_type(value: Union[str, EngineType, None]) -> Optional[EngineType]:
    """Map a stored engine name onto an EngineType, or None if unknown."""
    if value is None:
        return None
    if isinstance(value, EngineType):
        return value
    key = str(value).strip().lower()
    if key in ENGINE_ALIASES:
        return ENGINE_ALIASES[key]
    try:
        return EngineType(key)
    except ValueError:
        return None


class DateGranularity(str, Enum):
    """Time buckets supported by the query rewriter"""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


# Adjective forms stored by older dashboards
GRANULARITY_ALIASES = {
    "minutely": DateGranularity.MINUTE,
    "hourly": DateGranularity.HOUR,
    "daily": DateGranularity.DAY,
    "weekly": DateGranularity.WEEK,
    "monthly": DateGranularity.MONTH,
    "quarterly": DateGranularity.QUARTER,
    "yearly": DateGranularity.YEAR,
    "annually": DateGranularity.YEAR,
}


def parse_granularity(value: Union[str, DateGranularity]) -> DateGranularity:
    """Map a granularity name such as "Month" or "weekly" onto a DateGranularity.

    Raises ValueError naming the accepted values when nothing matches.
    """
    if isinstance(value, DateGranularity):
        return value
    key = str(value).strip().lower()
    if key in GRANULARITY_ALIASES:
        return GRANULARITY_ALIASES[key]
    try:
        return DateGranularity(key)
    except ValueError:
        allowed = ", ".join(g.value for g in DateGranularity)
        raise ValueError(f"Unknown date granularity {value!r}; expected one of {allowed}") from None


class ConnectionDescriptor(BaseModel):
    """Everything needed to open a connection to one external database.

    Descriptors are never mutated; a changed connection produces a new one.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identifier of the stored connection")
    engine_type: str = Field(..., description="Engine name as stored (postgres, mysql, mongodb)")
    host: str = Field(..., description="Hostname, or a full mongodb:// URI")
    database: str = Field(..., description="Database name")
    username: str = Field("", description="Login user")
    password: str = Field("", description="Login password", repr=False)
    port: Optional[int] = Field(None, description="Port; engine default when omitted")

    @property
    def engine(self) -> Optional[EngineType]:
        return normalize_engine_type(self.engine_type)

    @classmethod
    def from_row(cls, connection_id: str, row: Dict[str, Any]) -> "ConnectionDescriptor":
        """Build a descriptor from a database_connections row"""
        port = row.get("port")
        return cls(
            id=str(row.get("id") or connection_id),
            engine_type=str(row.get("database_type") or row.get("engine_type") or ""),
            host=row.get("host") or "",
            database=row.get("database_name") or row.get("database") or "",
            username=row.get("username") or "",
            password=row.get("password") or "",
            port=int(port) if port not in (None, "") else None,
        )


def split_column_list(value: Union[str, List[str], None]) -> List[str]:
    """Accept either a list of column names or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if str(item).strip()]


class DatasetDefinition(BaseModel):
    """A saved query plus its default bucketing options"""
    id: str = Field(..., description="Dataset identifier")
    connection_id: str = Field(..., description="Connection the dataset queries")
    name: str = Field("", description="Display name")
    saved_query: str = Field("", description="Stored query text")
    date_bucket: Optional[DateGranularity] = Field(None, description="Default date granularity")
    date_column: Optional[str] = Field(None, description="Column to bucket on")
    group_by: List[str] = Field(default_factory=list, description="Extra GROUP BY columns")

    @classmethod
    def from_row(cls, connection_id: str, dataset_id: str, row: Dict[str, Any]) -> "DatasetDefinition":
        bucket = row.get("date_bucket") or None
        return cls(
            id=str(row.get("id") or dataset_id),
            connection_id=str(row.get("connection_id") or connection_id),
            name=row.get("dataset_name") or row.get("name") or "",
            saved_query=row.get("sql_query") or row.get("saved_query") or "",
            date_bucket=parse_granularity(bucket) if bucket else None,
            date_column=row.get("date_column") or None,
            group_by=split_column_list(row.get("group_by")),
        )


@dataclass(frozen=True)
class ColumnType:
    column_name: str
    data_type: str


@dataclass
class SchemaInfo:
    tables: List[str] = field(default_factory=list)
    columns: Dict[str, List[str]] = field(default_factory=dict)
    column_types: Dict[str, List[ColumnType]] = field(default_factory=dict)


@dataclass(frozen=True)
class QuerySpec:
    """A user query and the text actually sent to the backend.

    applied_limit is None when the caller already limited the query.
    """
    raw_query: str
    effective_query: str
    applied_limit: Optional[int]


@dataclass
class NormalizedResult:
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ExecutionResult:
    result: NormalizedResult
    spec: QuerySpec
    execution_time_ms: float = 0.0
    # Best effort metadata for the queried table; empty when unknown
    column_types: List[ColumnType] = field(default_factory=list)
    primary_keys: List[str] = field(default_factory=list)


@dataclass
class DatasetQueryResult:
    dataset: DatasetDefinition
    execution: ExecutionResult
    date_bucket: Optional[DateGranularity] = None

    @property
    def effective_query(self) -> str:
        return self.execution.spec.effective_query


@dataclass
class TablePreview:
    table: str
    execution: ExecutionResult
    column_types: List[ColumnType] = field(default_factory=list)
    primary_keys: List[str] = field(default_factory=list)


@dataclass
class UpsertRequest:
    table_name: str
    primary_key: str
    rows: List[Dict[str, Any]]

    def keys(self) -> List[Any]:
        return [row[self.primary_key] for row in self.rows]


@dataclass
class ReconcileResult:
    inserted_count: int = 0
    updated_count: int = 0
    deleted_count: int = 0
    created_table: bool = False


# (inserted, updated) as reported by a driver write
WriteCounts = Tuple[int, int]

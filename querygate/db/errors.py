from typing import Optional


class GatewayError(Exception):
    """Base class for every failure the gateway reports to callers.

    status_code is the HTTP status the API layer answers with.
    """
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DatabaseConnectionError(GatewayError):
    """Backend could not be reached, refused the credentials, or the handle is closed"""
    status_code = 502


class UnsupportedBackendError(GatewayError):
    status_code = 400


class SchemaIntrospectionError(GatewayError):
    """Metadata for a single table could not be read"""

    def __init__(self, table: str, message: str):
        super().__init__(f"Could not introspect {table!r}: {message}")
        self.table = table


class QueryExecutionError(GatewayError):
    """The backend rejected a query; message is the backend's own"""
    status_code = 500


class RewriteError(GatewayError):
    status_code = 400


class SyncError(GatewayError):
    status_code = 500


class ConnectionNotFoundError(GatewayError):
    status_code = 404


class DatasetNotFoundError(GatewayError):
    status_code = 404


class StoreError(GatewayError):
    """The persistent store holding connections and datasets is unavailable"""
    status_code = 502


class OperationTimeoutError(GatewayError):
    status_code = 504


class InvalidDefinitionError(GatewayError):
    """A stored connection or dataset row holds a value the gateway cannot interpret"""
    status_code = 500

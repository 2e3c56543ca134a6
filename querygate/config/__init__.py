from .settings import (
    SUPABASE_URL,
    SUPABASE_SERVICE_ROLE_KEY,
    CONNECTIONS_TABLE,
    DATASETS_TABLE,
    DEFAULT_ROW_LIMIT,
    OPERATION_TIMEOUT_SECONDS,
    CONNECT_TIMEOUT_SECONDS,
    RECONCILE_BATCH_SIZE,
    RECONCILE_ATOMIC,
    LOG_LEVEL
)

__all__ = [
    'SUPABASE_URL',
    'SUPABASE_SERVICE_ROLE_KEY',
    'CONNECTIONS_TABLE',
    'DATASETS_TABLE',
    'DEFAULT_ROW_LIMIT',
    'OPERATION_TIMEOUT_SECONDS',
    'CONNECT_TIMEOUT_SECONDS',
    'RECONCILE_BATCH_SIZE',
    'RECONCILE_ATOMIC',
    'LOG_LEVEL'
]

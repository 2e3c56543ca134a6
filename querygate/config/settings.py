import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()
load_dotenv('.env.local')  # Load .env.local which should override .env


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Persistent store (Supabase)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
CONNECTIONS_TABLE = os.getenv("GATEWAY_CONNECTIONS_TABLE", "database_connections")
DATASETS_TABLE = os.getenv("GATEWAY_DATASETS_TABLE", "datasets")

# Query execution
DEFAULT_ROW_LIMIT = int(os.getenv("GATEWAY_DEFAULT_ROW_LIMIT", "100"))
OPERATION_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_OPERATION_TIMEOUT", "30"))
CONNECT_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_CONNECT_TIMEOUT", "10"))

# Reconciliation
RECONCILE_BATCH_SIZE = int(os.getenv("GATEWAY_RECONCILE_BATCH_SIZE", "500"))
RECONCILE_ATOMIC = _env_bool("GATEWAY_RECONCILE_ATOMIC", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

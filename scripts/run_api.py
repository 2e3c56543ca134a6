import sys
import os
from pathlib import Path
from dotenv import load_dotenv

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

# Load environment variables
load_dotenv()
load_dotenv(project_root / '.env.local')  # Load .env.local which should override .env

import uvicorn

if __name__ == "__main__":
    # PORT is set by most hosting providers, API_PORT is the local override
    port = int(os.environ.get("PORT", os.environ.get("API_PORT", 8000)))
    host = "0.0.0.0"

    # Disable reload in production
    reload_mode = os.environ.get("PYTHON_ENV", "development") != "production"

    print(f"Starting QueryGate on {host}:{port} (reload: {reload_mode})...")
    uvicorn.run("querygate.api.main:app", host=host, port=port, reload=reload_mode)

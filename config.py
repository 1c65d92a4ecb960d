from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/bahn.db")
# Pool settings only apply to server databases (MariaDB / PostgreSQL)
DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))
DB_POOL_RECYCLE_SECONDS: int = int(os.getenv("DB_POOL_RECYCLE_SECONDS", "1800"))

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "3000"))
CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Response cache TTL for the expensive read endpoints
RESPONSE_CACHE_SECONDS: int = int(os.getenv("RESPONSE_CACHE_SECONDS", "3600"))

# Network connection graph
BUILD_CONNECTIONS_ON_STARTUP: bool = os.getenv("BUILD_CONNECTIONS_ON_STARTUP", "true").lower() in ("1", "true", "yes")
CONNECTION_REBUILD_HOURS: int = int(os.getenv("CONNECTION_REBUILD_HOURS", "0"))  # 0 = build once

# Observation window for adjacency extraction.
# Explicit YYYY-MM-DD bounds win; otherwise the trailing CONNECTION_WINDOW_DAYS up to today.
CONNECTION_WINDOW_START: str = os.getenv("CONNECTION_WINDOW_START", "")
CONNECTION_WINDOW_END: str = os.getenv("CONNECTION_WINDOW_END", "")
CONNECTION_WINDOW_DAYS: int = int(os.getenv("CONNECTION_WINDOW_DAYS", "7"))

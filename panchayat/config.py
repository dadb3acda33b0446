# Shared configuration, helpers, and constants for the portal server and client

import os
import uuid
from pathlib import Path
from datetime import datetime, timezone

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
# Try multiple .env locations: next to the package, one level up, then cwd
_package_dir = Path(__file__).resolve().parent
for _env_path in [_package_dir / ".env", _package_dir.parent / ".env", Path.cwd() / ".env"]:
    if _env_path.is_file():
        load_dotenv(_env_path, override=False)
        break
else:
    load_dotenv(override=False)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "panchayat_portal")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
# Only OpenAI-compatible backends that understand top_k (e.g. vLLM) should set this
AI_TOP_K = int(_float_env("AI_TOP_K", 0)) or None
AI_TIMEOUT_SECONDS = _float_env("AI_TIMEOUT_SECONDS", 30.0)
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(_float_env("JWT_EXPIRE_HOURS", 24))

# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
PORTAL_API_URL = os.getenv("PORTAL_API_URL", "http://localhost:8000")
REQUEST_TIMEOUT_SECONDS = _float_env("REQUEST_TIMEOUT_SECONDS", 10.0)
LOCAL_STORE_DIR = Path(os.getenv("LOCAL_STORE_DIR", str(Path.home() / ".panchayat")))
LOCAL_STORE_CAPACITY = int(_float_env("LOCAL_STORE_CAPACITY", 5 * 1024 * 1024))  # 5MB typical browser limit
SYNC_AUTO_DELAY_SECONDS = _float_env("SYNC_AUTO_DELAY_SECONDS", 2.0)
SYNC_PENDING_INTERVAL_SECONDS = _float_env("SYNC_PENDING_INTERVAL_SECONDS", 30.0)
CONNECTIVITY_PROBE_SECONDS = _float_env("CONNECTIVITY_PROBE_SECONDS", 15.0)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def now_utc_ms() -> datetime:
    """Current UTC time at the millisecond precision MongoDB stores."""
    now = now_utc()
    return now.replace(microsecond=now.microsecond // 1000 * 1000)

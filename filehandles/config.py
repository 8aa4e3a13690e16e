"""
File handle console configuration — all environment-driven settings in one place.
"""
from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import List, Optional, Set

logger = logging.getLogger(__name__)

FHC_VERSION = "0.3.0"

# --- Database ---
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "filehandles.db"


def get_db_path() -> Path:
    raw = os.environ.get("FHC_DB_PATH")
    return Path(raw) if raw else DEFAULT_DB_PATH


# --- Admin allowlist ---
def get_admin_allowlist() -> Set[str]:
    raw = os.environ.get("FHC_ADMIN_ALLOWLIST", "")
    entries = [e.strip() for e in raw.split(",") if e.strip()]
    out: Set[str] = set()
    for e in entries:
        if len(e) > 16:
            out.add(hashlib.sha256(e.encode()).hexdigest()[:16])
        else:
            out.add(e)
    return out


# --- Diagnostics agent ---
DEFAULT_AGENT_LISTENER = "file_leak_detector.listener"
DEFAULT_AGENT_MAIN = "file_leak_detector"


def get_agent_listener() -> str:
    return os.environ.get("FHC_AGENT_LISTENER", "").strip() or DEFAULT_AGENT_LISTENER


def get_agent_main() -> str:
    return os.environ.get("FHC_AGENT_MAIN", "").strip() or DEFAULT_AGENT_MAIN


def get_attach_timeout() -> Optional[float]:
    """Seconds to wait for the attach helper. None means wait indefinitely."""
    raw = os.environ.get("FHC_ATTACH_TIMEOUT", "0").strip()
    try:
        timeout = float(raw) if raw else 0.0
    except ValueError:
        logger.warning("Ignoring non-numeric FHC_ATTACH_TIMEOUT=%r, waiting indefinitely", raw)
        return None
    return timeout if timeout > 0 else None


# --- HTTP ---
def get_cors_origins() -> List[str]:
    origins = [o.strip() for o in os.environ.get("FHC_CORS_ORIGINS", "").split(",") if o.strip()]
    return origins or ["http://localhost:8080"]


HOST = os.environ.get("FHC_HOST", "127.0.0.1")
PORT = int(os.environ.get("FHC_PORT", "8080"))
LOG_LEVEL = os.environ.get("FHC_LOG_LEVEL", "INFO").upper()

# --- JWT ---
JWT_SECRET_FILE = Path(os.environ.get(
    "FHC_JWT_SECRET",
    str(Path(__file__).parent.parent / "data" / ".jwt_secret"),
))
CHALLENGE_TTL_SECONDS = 60
JWT_TTL_HOURS = 12
SESSION_COOKIE = "fhc_session"

import os
import secrets
from datetime import time
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_time(value: str | None, fallback: time | None) -> time | None:
    if not value:
        return fallback
    parts = value.strip().split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except (ValueError, IndexError):
        return fallback


def _parse_int(value: str | None, fallback: int, *, minimum: int | None = None) -> int:
    try:
        parsed = int(value) if value is not None and value.strip() else fallback
    except ValueError:
        parsed = fallback
    if minimum is not None:
        parsed = max(minimum, parsed)
    return parsed


def _parse_float(value: str | None, fallback: float, *, minimum: float | None = None) -> float:
    try:
        parsed = float(value) if value is not None and value.strip() else fallback
    except ValueError:
        parsed = fallback
    if minimum is not None:
        parsed = max(minimum, parsed)
    return parsed


DB_PATH = Path(os.getenv("DAYLOCK_DB_PATH", BASE_DIR / "database" / "daylock.db"))
PROOFS_DIR = Path(os.getenv("DAYLOCK_PROOFS_DIR", BASE_DIR / "assets" / "proofs"))
SQLITE_TIMEOUT_SECONDS = _parse_float(os.getenv("DAYLOCK_SQLITE_TIMEOUT_SECONDS"), 30.0, minimum=0.1)

# Shared with the upstream auth layer; it vouches for user ids at /auth/session.
SERVICE_SECRET = os.getenv("DAYLOCK_SERVICE_SECRET", "daylock-service-secret-change-me").strip()
SIGNING_KEY = (
    os.getenv("DAYLOCK_SIGNING_KEY", "").strip()
    or SERVICE_SECRET
    or secrets.token_urlsafe(32)
)
AUTH_TOKEN_TTL_SECONDS = _parse_int(os.getenv("DAYLOCK_AUTH_TOKEN_TTL_SECONDS"), 43200, minimum=60)

CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("DAYLOCK_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("DAYLOCK_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("DAYLOCK_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("DAYLOCK_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("DAYLOCK_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_LEVEL = (os.getenv("DAYLOCK_LOG_LEVEL", "INFO").strip() or "INFO").upper()

DEFAULT_ROOM_START = _parse_time(os.getenv("DAYLOCK_DEFAULT_ROOM_START"), time(6, 0))
DEFAULT_ROOM_END = _parse_time(os.getenv("DAYLOCK_DEFAULT_ROOM_END"), time(9, 0))

# Discipline score weights
POINTS_APPROVED = _parse_int(os.getenv("DAYLOCK_POINTS_APPROVED"), 10)
POINTS_STREAK_BONUS = _parse_int(os.getenv("DAYLOCK_POINTS_STREAK_BONUS"), 2)
POINTS_ON_TIME_BONUS = _parse_int(os.getenv("DAYLOCK_POINTS_ON_TIME_BONUS"), 3)
POINTS_MISSED = _parse_int(os.getenv("DAYLOCK_POINTS_MISSED"), -15)
POINTS_REJECTED = _parse_int(os.getenv("DAYLOCK_POINTS_REJECTED"), -5)
POINTS_REFLECTION = _parse_int(os.getenv("DAYLOCK_POINTS_REFLECTION"), 5)
SCORE_MAX = _parse_int(os.getenv("DAYLOCK_SCORE_MAX"), 1500, minimum=0)
POINTS_PER_LEVEL = 100
REFLECTION_MIN_CHARS = _parse_int(os.getenv("DAYLOCK_REFLECTION_MIN_CHARS"), 20, minimum=0)

# Analytics axes
HEATMAP_DAYS = _parse_int(os.getenv("DAYLOCK_HEATMAP_DAYS"), 91, minimum=1)
ANALYTICS_WEEKS = _parse_int(os.getenv("DAYLOCK_ANALYTICS_WEEKS"), 12, minimum=1)
ANALYTICS_MONTHS = _parse_int(os.getenv("DAYLOCK_ANALYTICS_MONTHS"), 6, minimum=1)

BATCH_STATUS_TIMEOUT_SECONDS = _parse_float(
    os.getenv("DAYLOCK_BATCH_STATUS_TIMEOUT_SECONDS"),
    3.0,
    minimum=0.05,
)

from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    ANALYTICS_MONTHS,
    ANALYTICS_WEEKS,
    BATCH_STATUS_TIMEOUT_SECONDS,
    DB_PATH,
    ENABLE_DEBUG_ENDPOINTS,
    HEATMAP_DAYS,
    POINTS_PER_LEVEL,
    REFLECTION_MIN_CHARS,
    SCORE_MAX,
)
from backend.security import Principal, require_principal
from backend.services.scoring import default_weights
from backend.services.streaks import STREAK_PHASES

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_principal: Principal = Depends(require_principal)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/scoring")
def scoring_config():
    return {
        "weights": default_weights(),
        "score_max": SCORE_MAX,
        "points_per_level": POINTS_PER_LEVEL,
        "reflection_min_chars": REFLECTION_MIN_CHARS,
        "streak_phases": STREAK_PHASES,
        "heatmap_days": HEATMAP_DAYS,
        "analytics_weeks": ANALYTICS_WEEKS,
        "analytics_months": ANALYTICS_MONTHS,
        "batch_status_timeout_seconds": BATCH_STATUS_TIMEOUT_SECONDS,
    }

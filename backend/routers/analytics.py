from datetime import date, datetime
from typing import Any, Iterable, Mapping

from fastapi import APIRouter, Depends

from backend.config import ANALYTICS_MONTHS, ANALYTICS_WEEKS, HEATMAP_DAYS
from backend.routers.common import ensure_member, load_room
from backend.security import require_user_id
from backend.services import analytics
from backend.services.reconciler import reconcile_room
from backend.services.scoring import compute_score
from backend.services.streaks import approved_dates, compute_streak, days_to_next_phase, streak_phase
from database import db

router = APIRouter()


def _history_report(records: Iterable[Mapping[str, Any]], today: date) -> dict[str, Any]:
    rows = list(records)
    streak = compute_streak(approved_dates(rows), today)
    weekly = analytics.weekly_buckets(rows, today, ANALYTICS_WEEKS)
    monthly = analytics.monthly_buckets(rows, today, ANALYTICS_MONTHS)
    return {
        "today": today.isoformat(),
        "streak": {
            **streak,
            "phase": streak_phase(streak["current"])["label"],
            "days_to_next_phase": days_to_next_phase(streak["current"]),
        },
        "summary": analytics.summary(rows),
        "heatmap": analytics.heatmap(rows, today, HEATMAP_DAYS),
        "weekly": weekly,
        "monthly": monthly,
        "weekly_rates": analytics.rate_series(weekly),
        "trend": analytics.compute_trend(weekly),
    }


@router.get("/analytics/user")
def user_analytics(user_id: str = Depends(require_user_id)):
    now = datetime.now()
    for room in db.list_rooms_for_owner(user_id):
        reconcile_room(room, now)

    records = db.list_attendance_for_user(user_id)
    return {
        "user_id": user_id,
        **_history_report(records, now.date()),
        "score": compute_score(records),
    }


@router.get("/analytics/room/{room_id}")
def room_analytics(room_id: int, user_id: str = Depends(require_user_id)):
    room = load_room(room_id)
    ensure_member(room, user_id)

    now = datetime.now()
    reconcile_room(room, now)
    records = db.list_attendance_for_room(room_id)
    return {
        "room_id": room_id,
        **_history_report(records, now.date()),
        "warnings": analytics.detect_warnings(records, now.date()),
    }

"""
Discipline score: a fold over a user's attendance history in date order.

Each record contributes weighted points; the running total is capped at
SCORE_MAX after every step and is allowed to go negative.
"""
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, TypedDict

from backend.config import (
    POINTS_APPROVED,
    POINTS_MISSED,
    POINTS_ON_TIME_BONUS,
    POINTS_PER_LEVEL,
    POINTS_REFLECTION,
    POINTS_REJECTED,
    POINTS_STREAK_BONUS,
    REFLECTION_MIN_CHARS,
    SCORE_MAX,
)
from backend.services.streaks import as_date
from backend.services.window import window_bounds


class ScoreBreakdown(TypedDict):
    approved: int
    streak_bonus: int
    on_time_bonus: int
    missed: int
    rejected: int
    reflections: int


class DisciplineScore(TypedDict):
    score: int
    level: int
    progress_to_next_level: int
    points_to_next_level: int
    breakdown: ScoreBreakdown


def default_weights() -> dict[str, int]:
    return {
        "approved": POINTS_APPROVED,
        "streak_bonus": POINTS_STREAK_BONUS,
        "on_time_bonus": POINTS_ON_TIME_BONUS,
        "missed": POINTS_MISSED,
        "rejected": POINTS_REJECTED,
        "reflection": POINTS_REFLECTION,
    }


def level_for(score: int) -> int:
    return score // POINTS_PER_LEVEL + 1


def _submitted_on_time(record: Mapping[str, Any], day: date) -> bool:
    submitted_raw = record.get("submitted_at")
    if not submitted_raw:
        return False
    try:
        submitted_at = datetime.fromisoformat(str(submitted_raw))
    except ValueError:
        return False
    window = {"time_start": record.get("room_time_start"), "time_end": record.get("room_time_end")}
    bounds = window_bounds(window, day)
    if bounds is None:
        return False
    return submitted_at < bounds[1]


def _has_reflection(record: Mapping[str, Any], min_chars: int) -> bool:
    note = (record.get("note") or "").strip()
    return len(note) > min_chars


def compute_score(
    records: Iterable[Mapping[str, Any]],
    *,
    weights: Mapping[str, int] | None = None,
    score_max: int | None = None,
) -> DisciplineScore:
    points = {**default_weights(), **(weights or {})}
    cap = SCORE_MAX if score_max is None else score_max
    breakdown: ScoreBreakdown = {
        "approved": 0,
        "streak_bonus": 0,
        "on_time_bonus": 0,
        "missed": 0,
        "rejected": 0,
        "reflections": 0,
    }

    dated = [(as_date(r.get("date")), r) for r in records]
    ordered = sorted(
        ((day, r) for day, r in dated if day is not None),
        key=lambda item: (item[0], str(item[1].get("submitted_at") or ""), int(item[1].get("id") or 0)),
    )

    total = 0
    approved_days: set[date] = set()
    for day, record in ordered:
        status = record.get("status")
        delta = 0
        if status == "approved":
            approved_days.add(day)
            streak = 0
            cursor = day
            while cursor in approved_days:
                streak += 1
                cursor -= timedelta(days=1)
            bonus = points["streak_bonus"] * streak
            delta += points["approved"] + bonus
            breakdown["approved"] += points["approved"]
            breakdown["streak_bonus"] += bonus
            if _submitted_on_time(record, day):
                delta += points["on_time_bonus"]
                breakdown["on_time_bonus"] += points["on_time_bonus"]
        elif status == "missed":
            delta += points["missed"]
            breakdown["missed"] += points["missed"]
            if _has_reflection(record, REFLECTION_MIN_CHARS):
                delta += points["reflection"]
                breakdown["reflections"] += points["reflection"]
        elif status == "rejected":
            delta += points["rejected"]
            breakdown["rejected"] += points["rejected"]
        total = min(total + delta, cap)

    progress = total % POINTS_PER_LEVEL
    return {
        "score": total,
        "level": level_for(total),
        "progress_to_next_level": progress,
        "points_to_next_level": POINTS_PER_LEVEL - progress,
        "breakdown": breakdown,
    }

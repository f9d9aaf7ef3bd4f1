from datetime import date
from typing import Any, Iterable, Mapping, TypedDict


class Streak(TypedDict):
    current: int
    best: int


# Identity phases by current streak length; `max` is inclusive.
STREAK_PHASES: list[dict[str, Any]] = [
    {"min": 0, "max": 0, "label": "Start Today"},
    {"min": 1, "max": 2, "label": "Newcomer"},
    {"min": 3, "max": 6, "label": "Building"},
    {"min": 7, "max": 13, "label": "Committed"},
    {"min": 14, "max": 29, "label": "Warrior"},
    {"min": 30, "max": 59, "label": "Disciplined"},
    {"min": 60, "max": 99, "label": "Elite"},
    {"min": 100, "max": None, "label": "Legend"},
]


def as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        return None


def approved_dates(records: Iterable[Mapping[str, Any]]) -> set[date]:
    out: set[date] = set()
    for record in records:
        if record.get("status") != "approved":
            continue
        day = as_date(record.get("date"))
        if day is not None:
            out.add(day)
    return out


def compute_streak(dates: Iterable[date | str], today: date) -> Streak:
    """
    Walk distinct approved dates newest first, measuring runs of consecutive
    days. `current` is the newest run, counted only while it still ends today
    or yesterday.
    """
    days = sorted({d for d in (as_date(v) for v in dates) if d is not None}, reverse=True)
    if not days:
        return {"current": 0, "best": 0}

    runs: list[int] = []
    run = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days == 1:
            run += 1
        else:
            runs.append(run)
            run = 1
    runs.append(run)

    alive = (today - days[0]).days in (0, 1)
    return {"current": runs[0] if alive else 0, "best": max(runs)}


def streak_phase(streak: int) -> dict[str, Any]:
    value = max(0, int(streak or 0))
    for phase in STREAK_PHASES:
        if value >= phase["min"] and (phase["max"] is None or value <= phase["max"]):
            return phase
    return STREAK_PHASES[0]


def days_to_next_phase(streak: int) -> int:
    value = max(0, int(streak or 0))
    idx = STREAK_PHASES.index(streak_phase(value))
    if idx >= len(STREAK_PHASES) - 1:
        return 0
    return STREAK_PHASES[idx + 1]["min"] - value

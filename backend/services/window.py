from datetime import date, datetime, time, timedelta
from typing import Any, Literal, Mapping, TypedDict

Urgency = Literal["critical", "high", "medium", "low", "locked", "none"]


class Countdown(TypedDict):
    is_open: bool
    total_seconds: int
    urgency: Urgency
    label: str


def parse_clock(value: Any) -> time | None:
    """Parse `HH:MM` / `HH:MM:SS` (or pass a `time` through); None when invalid."""
    if isinstance(value, time):
        return value
    if not value:
        return None
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        return time(*(int(p) for p in parts))
    except ValueError:
        return None


def normalize_clock(value: str) -> str:
    parsed = parse_clock(value)
    if parsed is None:
        raise ValueError(f"Invalid time of day: {value!r}")
    return parsed.strftime("%H:%M:%S")


def _window(room: Mapping[str, Any]) -> tuple[time, time] | None:
    start = parse_clock(room.get("time_start"))
    end = parse_clock(room.get("time_end"))
    if start is None or end is None or start == end:
        return None
    return start, end


def is_open(room: Mapping[str, Any], now: datetime) -> bool:
    if room.get("is_paused"):
        return False
    window = _window(room)
    if window is None:
        return False
    start, end = window
    current = now.time()
    if start < end:
        return start <= current < end
    # wraps midnight
    return current >= start or current < end


def window_date(room: Mapping[str, Any], now: datetime) -> date:
    """Calendar day a submission made at `now` counts for."""
    window = _window(room)
    if window is not None:
        start, end = window
        if end < start and now.time() < end:
            return now.date() - timedelta(days=1)
    return now.date()


def window_bounds(room: Mapping[str, Any], day: date) -> tuple[datetime, datetime] | None:
    window = _window(room)
    if window is None:
        return None
    start, end = window
    open_at = datetime.combine(day, start)
    close_at = datetime.combine(day, end)
    if end < start:
        close_at += timedelta(days=1)
    return open_at, close_at


def window_closed_for(room: Mapping[str, Any], day: date, now: datetime) -> bool:
    """
    True once the window belonging to `day` has fully closed at `now`.

    Rooms without a valid window never have a closed window to miss.
    """
    bounds = window_bounds(room, day)
    if bounds is None:
        return False
    return now >= bounds[1]


def last_closed_date(room: Mapping[str, Any], now: datetime) -> date | None:
    """Day of the most recent window that has fully closed at `now`."""
    if _window(room) is None:
        return None
    day = now.date()
    # A window closes at most one day after it opens.
    for _ in range(3):
        if window_closed_for(room, day, now):
            return day
        day -= timedelta(days=1)
    return None


def _urgency(seconds: int) -> Urgency:
    if seconds <= 300:
        return "critical"
    if seconds <= 900:
        return "high"
    if seconds <= 1800:
        return "medium"
    return "low"


def countdown(room: Mapping[str, Any], now: datetime) -> Countdown:
    window = _window(room)
    if window is None:
        return {"is_open": False, "total_seconds": 0, "urgency": "none", "label": "No schedule"}
    if room.get("is_paused"):
        return {"is_open": False, "total_seconds": 0, "urgency": "locked", "label": "Paused"}

    if is_open(room, now):
        bounds = window_bounds(room, window_date(room, now))
        assert bounds is not None
        seconds = max(0, int((bounds[1] - now).total_seconds()))
        return {"is_open": True, "total_seconds": seconds, "urgency": _urgency(seconds), "label": "Closes in"}

    next_open = datetime.combine(now.date(), window[0])
    if next_open <= now:
        next_open += timedelta(days=1)
    seconds = max(0, int((next_open - now).total_seconds()))
    return {"is_open": False, "total_seconds": seconds, "urgency": "locked", "label": "Opens in"}

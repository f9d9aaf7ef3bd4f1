"""
History aggregates for dashboards: heatmap, weekly/monthly buckets, trend
and admin warnings.

Everything here is a pure function of a record list and a reference date.
Output ordering is fixed (oldest bucket first) so repeated runs over the
same input serialize identically.
"""
from collections import Counter
from datetime import date, timedelta
from typing import Any, Iterable, Literal, Mapping, TypedDict

from backend.services.streaks import as_date


class HeatmapDay(TypedDict):
    date: str
    total: int
    approved: int
    level: int


class Bucket(TypedDict):
    key: str
    start: str
    end: str
    total: int
    approved: int
    rejected: int
    missed: int
    pending_review: int
    rate: int | None


class Trend(TypedDict):
    direction: Literal["improving", "declining", "stable"]
    change: int


def approval_rate(approved: int, total: int) -> int | None:
    """Percentage rounded half-up; None for an empty bucket."""
    if total <= 0:
        return None
    return (200 * approved + total) // (2 * total)


def heatmap_level(approved: int, total: int) -> int:
    if total <= 0:
        return 0
    if approved == total:
        return 3
    if approved * 2 >= total:
        return 2
    return 1


def _dated(records: Iterable[Mapping[str, Any]]) -> list[tuple[date, str]]:
    out: list[tuple[date, str]] = []
    for record in records:
        day = as_date(record.get("date"))
        if day is not None:
            out.append((day, str(record.get("status") or "")))
    return out


def heatmap(records: Iterable[Mapping[str, Any]], today: date, days: int = 91) -> list[HeatmapDay]:
    totals: Counter[date] = Counter()
    approved: Counter[date] = Counter()
    for day, status in _dated(records):
        totals[day] += 1
        if status == "approved":
            approved[day] += 1

    out: list[HeatmapDay] = []
    for offset in range(max(1, days) - 1, -1, -1):
        day = today - timedelta(days=offset)
        out.append(
            {
                "date": day.isoformat(),
                "total": totals[day],
                "approved": approved[day],
                "level": heatmap_level(approved[day], totals[day]),
            }
        )
    return out


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _week_key(start: date) -> str:
    iso_year, iso_week, _ = start.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _next_month(start: date) -> date:
    return date(start.year + (start.month // 12), start.month % 12 + 1, 1)


def _empty_bucket(key: str, start: date, end: date) -> Bucket:
    return {
        "key": key,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total": 0,
        "approved": 0,
        "rejected": 0,
        "missed": 0,
        "pending_review": 0,
        "rate": None,
    }


def _fill(buckets: dict[date, Bucket], dated: list[tuple[date, str]], start_of) -> list[Bucket]:
    for day, status in dated:
        bucket = buckets.get(start_of(day))
        if bucket is None:
            continue
        bucket["total"] += 1
        if status in ("approved", "rejected", "missed", "pending_review"):
            bucket[status] += 1  # type: ignore[literal-required]
    for bucket in buckets.values():
        bucket["rate"] = approval_rate(bucket["approved"], bucket["total"])
    return [buckets[k] for k in sorted(buckets)]


def weekly_buckets(
    records: Iterable[Mapping[str, Any]],
    today: date,
    weeks: int | None = None,
) -> list[Bucket]:
    """
    ISO-week buckets ending with the week of `today`. With `weeks=None` the
    axis starts at the earliest record; empty weeks stay on the axis with
    zero totals.
    """
    dated = [(d, s) for d, s in _dated(records) if d <= today]
    last = _week_start(today)
    if weeks is None:
        first = _week_start(min((d for d, _ in dated), default=today))
    else:
        first = last - timedelta(weeks=max(1, weeks) - 1)

    buckets: dict[date, Bucket] = {}
    cursor = first
    while cursor <= last:
        buckets[cursor] = _empty_bucket(_week_key(cursor), cursor, cursor + timedelta(days=6))
        cursor += timedelta(weeks=1)
    return _fill(buckets, dated, _week_start)


def monthly_buckets(
    records: Iterable[Mapping[str, Any]],
    today: date,
    months: int | None = None,
) -> list[Bucket]:
    dated = [(d, s) for d, s in _dated(records) if d <= today]
    last = _month_start(today)
    if months is None:
        first = _month_start(min((d for d, _ in dated), default=today))
    else:
        first = last
        for _ in range(max(1, months) - 1):
            first = (first - timedelta(days=1)).replace(day=1)

    buckets: dict[date, Bucket] = {}
    cursor = first
    while cursor <= last:
        nxt = _next_month(cursor)
        buckets[cursor] = _empty_bucket(cursor.strftime("%Y-%m"), cursor, nxt - timedelta(days=1))
        cursor = nxt
    return _fill(buckets, dated, _month_start)


def rate_series(buckets: Iterable[Bucket]) -> list[dict[str, Any]]:
    return [{"key": b["key"], "rate": b["rate"]} for b in buckets if b["total"] > 0]


def summary(records: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    counts = Counter(status for _, status in _dated(records))
    total = sum(counts.values())
    return {
        "total": total,
        "approved": counts["approved"],
        "rejected": counts["rejected"],
        "missed": counts["missed"],
        "pending_review": counts["pending_review"],
        "rate": approval_rate(counts["approved"], total) or 0,
    }


def compute_trend(buckets: Iterable[Bucket]) -> Trend:
    rated = [b for b in buckets if b["rate"] is not None]
    if len(rated) < 2:
        return {"direction": "stable", "change": 0}
    current = rated[-1]["rate"] or 0
    previous = rated[-2]["rate"] or 0
    change = current - previous
    if change > 5:
        return {"direction": "improving", "change": change}
    if change < -5:
        return {"direction": "declining", "change": change}
    return {"direction": "stable", "change": change}


CONSECUTIVE_MISSES_THRESHOLD = 3
LOW_RATE_THRESHOLD = 50
LOW_RATE_WINDOW_DAYS = 14
LOW_RATE_MIN_RECORDS = 5
REPEATED_REJECTIONS_THRESHOLD = 3
REPEATED_REJECTIONS_WINDOW = 7
SILENCE_DAYS_THRESHOLD = 7


def detect_warnings(records: Iterable[Mapping[str, Any]], today: date) -> list[dict[str, Any]]:
    dated = sorted(_dated(records), key=lambda item: item[0], reverse=True)
    if not dated:
        return []

    warnings: list[dict[str, Any]] = []

    misses = 0
    for _, status in dated:
        if status != "missed":
            break
        misses += 1
    if misses >= CONSECUTIVE_MISSES_THRESHOLD:
        warnings.append(
            {
                "code": "CONSECUTIVE_MISSES",
                "severity": "warning",
                "value": misses,
                "message": f"{misses} consecutive days missed.",
            }
        )

    cutoff = today - timedelta(days=LOW_RATE_WINDOW_DAYS)
    recent = [status for day, status in dated if day >= cutoff]
    if len(recent) >= LOW_RATE_MIN_RECORDS:
        rate = approval_rate(recent.count("approved"), len(recent)) or 0
        if rate < LOW_RATE_THRESHOLD:
            warnings.append(
                {
                    "code": "LOW_ATTENDANCE_RATE",
                    "severity": "warning",
                    "value": rate,
                    "message": f"Approval rate over the last {LOW_RATE_WINDOW_DAYS} days is {rate}%.",
                }
            )

    rejections = [status for _, status in dated[:REPEATED_REJECTIONS_WINDOW]].count("rejected")
    if rejections >= REPEATED_REJECTIONS_THRESHOLD:
        warnings.append(
            {
                "code": "REPEATED_REJECTIONS",
                "severity": "strike",
                "value": rejections,
                "message": f"{rejections} of the latest {REPEATED_REJECTIONS_WINDOW} proofs were rejected.",
            }
        )

    last_submission = next((day for day, status in dated if status != "missed"), None)
    if last_submission is not None:
        silent_days = (today - last_submission).days
        if silent_days >= SILENCE_DAYS_THRESHOLD:
            warnings.append(
                {
                    "code": "NO_RECENT_SUBMISSION",
                    "severity": "strike",
                    "value": silent_days,
                    "message": f"No proof submitted in {silent_days} days.",
                }
            )

    return warnings


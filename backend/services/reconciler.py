import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

from backend.services.streaks import as_date
from backend.services.window import window_bounds, window_closed_for, window_date
from database import db
from database.db import AttendanceRow, InvalidTransitionError, RoomRow

logger = logging.getLogger(__name__)


def days_to_reconcile(
    room: Mapping[str, Any],
    existing_dates: Iterable[str],
    now: datetime,
) -> list[str]:
    """
    Dates from the room's tracking start whose window has closed at `now` and
    that have no record. Paused rooms, rooms without an admin and rooms
    without a valid window yield nothing.
    """
    if room.get("is_paused") or not room.get("admin_id"):
        return []
    start = as_date(room.get("tracking_since"))
    if start is None or window_bounds(room, start) is None:
        return []

    seen = set(existing_dates)
    out: list[str] = []
    day = start
    while day <= now.date():
        key = day.isoformat()
        if key not in seen and window_closed_for(room, day, now):
            out.append(key)
        day += timedelta(days=1)
    return out


def reconcile_room(room: Mapping[str, Any], now: datetime | None = None) -> int:
    marker = now or datetime.now()
    dates = days_to_reconcile(room, db.list_attendance_dates(room["id"]), marker)
    if not dates:
        return 0
    created = db.insert_missed_if_absent(room_id=room["id"], user_id=room["owner_id"], dates=dates)
    if created:
        logger.info("Marked %s missed day(s) for room %s", created, room["id"])
    return created


def run_reconciliation_sweep(now: datetime | None = None) -> dict[str, int]:
    marker = now or datetime.now()
    rooms = db.list_tracked_rooms()
    marked = 0
    for room in rooms:
        marked += reconcile_room(room, marker)
    logger.info("Reconciliation sweep checked %s room(s), marked %s missed day(s)", len(rooms), marked)
    return {"rooms_checked": len(rooms), "missed_marked": marked}


def resume_date(room: Mapping[str, Any], now: datetime) -> date:
    """First day still trackable when a room is unpaused at `now`."""
    day = window_date(room, now)
    if window_closed_for(room, day, now):
        day += timedelta(days=1)
    return day


def toggle_pause(room_id: int, now: datetime | None = None) -> RoomRow:
    """
    Pause or unpause a room. Closed days are reconciled before pausing;
    unpausing moves tracking past the paused stretch.
    """
    marker = now or datetime.now()
    room = db.require_room(room_id)
    if room["is_paused"]:
        resumed = db.resume_room(room_id, resume_date(room, marker).isoformat())
        logger.info("Room %s resumed; tracking from %s", room_id, resumed["tracking_since"])
        return resumed

    reconcile_room(room, marker)
    logger.info("Room %s paused", room_id)
    return db.pause_room(room_id)


def mark_absent(
    room: Mapping[str, Any],
    day: date,
    admin_id: str,
    now: datetime | None = None,
) -> AttendanceRow:
    """Admin marks a closed day as missed; an existing submission is left alone."""
    marker = now or datetime.now()
    if not window_closed_for(room, day, marker):
        raise InvalidTransitionError(f"The window for {day.isoformat()} has not closed yet.")

    db.insert_missed_if_absent(
        room_id=room["id"],
        user_id=room["owner_id"],
        dates=[day.isoformat()],
        actor_id=admin_id,
    )
    record = db.get_attendance_for_day(room["id"], day.isoformat())
    if record is None:
        raise db.NotFoundError(f"Attendance for {day.isoformat()} not found.")
    if record["status"] != "missed":
        raise InvalidTransitionError(f"Attendance for {day.isoformat()} is already {record['status']}.")
    return record

import logging
from datetime import date, datetime
from typing import Any, Literal, Mapping, TypedDict

from backend.services.reconciler import reconcile_room
from backend.services.streaks import as_date
from backend.services.window import countdown, is_open, last_closed_date, window_date
from database import db
from database.db import (
    AttendanceRow,
    ConcurrencyConflictError,
    InvalidTransitionError,
    RoomRow,
)

logger = logging.getLogger(__name__)

SubmissionError = Literal[
    "ROOM_PAUSED",
    "NO_REVIEWER",
    "WINDOW_CLOSED",
    "ALREADY_APPROVED",
    "ALREADY_SUBMITTED",
]
SubmissionAction = Literal["create", "overwrite", "refuse"]
ReviewAction = Literal["approve", "reject"]

SUBMISSION_ERROR_MESSAGES: dict[str, str] = {
    "ROOM_PAUSED": "Tracking for this room is paused.",
    "NO_REVIEWER": "This room has no admin to review proofs yet.",
    "WINDOW_CLOSED": "The submission window for this room is closed.",
    "ALREADY_APPROVED": "Today's proof is already approved.",
    "ALREADY_SUBMITTED": "Today's proof is waiting for review.",
}

# Resubmission is allowed over these statuses, inside the window or with late upload.
RESUBMITTABLE_STATUSES = {"rejected", "missed"}

# Attempts per write: the first try plus one retry after re-reading.
WRITE_ATTEMPTS = 2


def submission_date(room: Mapping[str, Any], now: datetime) -> date:
    """
    Day a proof sent at `now` is filed against: the open window's day, or,
    for a late upload, the day of the window that closed most recently.
    Late uploads never reach back before the room's tracking start.
    """
    if not is_open(room, now) and room.get("allow_late_upload"):
        closed = last_closed_date(room, now)
        start = as_date(room.get("tracking_since"))
        if closed is not None and start is not None and closed >= start:
            return closed
    return window_date(room, now)


class SubmissionDecision(TypedDict):
    action: SubmissionAction
    error: SubmissionError | None
    date: str
    window_open: bool


class SubmissionResult(TypedDict):
    accepted: bool
    error: SubmissionError | None
    message: str
    date: str
    record: AttendanceRow | None


def evaluate_submission(
    room: Mapping[str, Any],
    existing: Mapping[str, Any] | None,
    now: datetime,
) -> SubmissionDecision:
    """
    Decide what a proof submitted at `now` does to the day's record.

    Order of checks: paused, no reviewer, closed window without late upload,
    then the state of an existing record.
    """
    open_now = is_open(room, now)
    day = submission_date(room, now).isoformat()

    def refuse(code: SubmissionError) -> SubmissionDecision:
        return {"action": "refuse", "error": code, "date": day, "window_open": open_now}

    if room.get("is_paused"):
        return refuse("ROOM_PAUSED")
    if not room.get("admin_id"):
        return refuse("NO_REVIEWER")
    if not open_now and not room.get("allow_late_upload"):
        return refuse("WINDOW_CLOSED")

    if existing is not None:
        status = existing.get("status")
        if status == "approved":
            return refuse("ALREADY_APPROVED")
        if status == "pending_review":
            return refuse("ALREADY_SUBMITTED")
        if status in RESUBMITTABLE_STATUSES:
            return {"action": "overwrite", "error": None, "date": day, "window_open": open_now}

    return {"action": "create", "error": None, "date": day, "window_open": open_now}


def submit_proof(
    *,
    room_id: int,
    user_id: str,
    proof_ref: str,
    note: str | None = None,
    now: datetime | None = None,
) -> SubmissionResult:
    marker = now or datetime.now()
    clean_note = (note or "").strip() or None

    for attempt in range(1, WRITE_ATTEMPTS + 1):
        # One room snapshot per evaluation.
        room = db.require_room(room_id)
        day = submission_date(room, marker).isoformat()
        existing = db.get_attendance_for_day(room_id, day)
        decision = evaluate_submission(room, existing, marker)

        if decision["error"] is not None:
            logger.debug("Submission for room %s on %s refused: %s", room_id, day, decision["error"])
            return {
                "accepted": False,
                "error": decision["error"],
                "message": SUBMISSION_ERROR_MESSAGES[decision["error"]],
                "date": decision["date"],
                "record": existing,  # type: ignore[typeddict-item]
            }

        submitted_at = marker.isoformat(timespec="seconds")
        try:
            if decision["action"] == "overwrite" and existing is not None:
                record = db.overwrite_submission(
                    record_id=int(existing["id"]),
                    expected_version=int(existing["version"]),
                    proof_ref=proof_ref,
                    note=clean_note,
                    submitted_at=submitted_at,
                    actor_id=user_id,
                )
            else:
                record = db.insert_submission(
                    room_id=room_id,
                    user_id=user_id,
                    date=decision["date"],
                    proof_ref=proof_ref,
                    note=clean_note,
                    submitted_at=submitted_at,
                )
        except ConcurrencyConflictError:
            if attempt >= WRITE_ATTEMPTS:
                raise
            logger.warning("Submission for room %s on %s raced another writer; retrying", room_id, day)
            continue

        return {
            "accepted": True,
            "error": None,
            "message": "Proof submitted for review.",
            "date": decision["date"],
            "record": record,
        }

    raise ConcurrencyConflictError(f"Submission for room {room_id} could not be written.")


def check_review_transition(record: Mapping[str, Any], action: ReviewAction) -> None:
    status = record.get("status")
    if status != "pending_review":
        raise InvalidTransitionError(f"Cannot {action} a record that is {status}.")


def review_record(
    *,
    record_id: int,
    reviewer_id: str,
    action: ReviewAction,
    reason: str | None = None,
    now: datetime | None = None,
) -> AttendanceRow:
    marker = now or datetime.now()
    clean_reason = (reason or "").strip() or None

    for attempt in range(1, WRITE_ATTEMPTS + 1):
        record = db.require_attendance(record_id)
        check_review_transition(record, action)
        try:
            return db.apply_review(
                record_id=record_id,
                expected_version=record["version"],
                status="approved" if action == "approve" else "rejected",
                reviewer_id=reviewer_id,
                reviewed_at=marker.isoformat(timespec="seconds"),
                rejection_reason=clean_reason,
            )
        except ConcurrencyConflictError:
            if attempt >= WRITE_ATTEMPTS:
                raise
            logger.warning("Review of record %s raced another writer; re-reading", record_id)

    raise ConcurrencyConflictError(f"Review of record {record_id} could not be written.")


def approve(record_id: int, reviewer_id: str, now: datetime | None = None) -> AttendanceRow:
    return review_record(record_id=record_id, reviewer_id=reviewer_id, action="approve", now=now)


def reject(
    record_id: int,
    reviewer_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> AttendanceRow:
    return review_record(record_id=record_id, reviewer_id=reviewer_id, action="reject", reason=reason, now=now)


def add_reflection(*, record_id: int, note: str) -> AttendanceRow:
    """Attach a reflection note to a missed day."""
    clean_note = note.strip()
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        record = db.require_attendance(record_id)
        if record["status"] != "missed":
            raise InvalidTransitionError(f"Reflections can only be added to missed days, not {record['status']}.")
        try:
            return db.set_reflection_note(
                record_id=record_id,
                expected_version=record["version"],
                note=clean_note,
            )
        except ConcurrencyConflictError:
            if attempt >= WRITE_ATTEMPTS:
                raise
            logger.warning("Reflection on record %s raced another writer; re-reading", record_id)

    raise ConcurrencyConflictError(f"Reflection on record {record_id} could not be written.")


def today_status(room: RoomRow, now: datetime | None = None) -> dict[str, Any]:
    """Status of the room's current day, after reconciling closed days."""
    marker = now or datetime.now()
    reconcile_room(room, marker)
    day = window_date(room, marker).isoformat()
    record = db.get_attendance_for_day(room["id"], day)
    return {
        "room_id": room["id"],
        "date": day,
        "status": record["status"] if record else "waiting",
        "record_id": record["id"] if record else None,
        "is_open": is_open(room, marker),
        "countdown": countdown(room, marker),
    }

from datetime import datetime
from typing import cast

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.routers.common import (
    ensure_admin,
    ensure_member,
    ensure_owner,
    load_room,
    parse_day,
    store_errors,
)
from backend.security import require_user_id
from backend.services import attendance as attendance_service
from backend.services.reconciler import mark_absent, reconcile_room
from database import db
from database.db import RECORD_STATUSES, RecordStatus

router = APIRouter()


class ProofSubmit(BaseModel):
    room_id: int
    proof_ref: str
    note: str | None = None


class ReviewReject(BaseModel):
    reason: str | None = None


class ReflectionNote(BaseModel):
    note: str


class MarkAbsent(BaseModel):
    room_id: int
    date: str


@router.post("/attendance/submit")
def submit_proof(payload: ProofSubmit, user_id: str = Depends(require_user_id)):
    proof_ref = payload.proof_ref.strip()
    if not proof_ref:
        raise HTTPException(status_code=400, detail="proof_ref is required.")

    ensure_owner(load_room(payload.room_id), user_id)
    with store_errors():
        result = attendance_service.submit_proof(
            room_id=payload.room_id,
            user_id=user_id,
            proof_ref=proof_ref,
            note=payload.note,
        )

    if not result["accepted"]:
        raise HTTPException(
            status_code=422,
            detail={
                "code": result["error"],
                "message": result["message"],
                "date": result["date"],
            },
        )
    return result


def _load_reviewable(record_id: int, user_id: str) -> db.AttendanceRow:
    with store_errors():
        record = db.require_attendance(record_id)
    ensure_admin(load_room(record["room_id"]), user_id)
    return record


@router.post("/attendance/{record_id}/approve")
def approve_record(record_id: int, user_id: str = Depends(require_user_id)):
    _load_reviewable(record_id, user_id)
    with store_errors():
        return attendance_service.approve(record_id, user_id)


@router.post("/attendance/{record_id}/reject")
def reject_record(
    record_id: int,
    payload: ReviewReject | None = None,
    user_id: str = Depends(require_user_id),
):
    _load_reviewable(record_id, user_id)
    with store_errors():
        return attendance_service.reject(record_id, user_id, payload.reason if payload else None)


@router.post("/attendance/{record_id}/reflection")
def add_reflection(record_id: int, payload: ReflectionNote, user_id: str = Depends(require_user_id)):
    note = payload.note.strip()
    if not note:
        raise HTTPException(status_code=400, detail="Reflection note is required.")

    with store_errors():
        record = db.require_attendance(record_id)
    ensure_owner(load_room(record["room_id"]), user_id)
    with store_errors():
        return attendance_service.add_reflection(record_id=record_id, note=note)


@router.get("/attendance/room/{room_id}")
def room_history(
    room_id: int,
    start: str | None = None,
    end: str | None = None,
    status: str | None = None,
    user_id: str = Depends(require_user_id),
):
    room = load_room(room_id)
    ensure_member(room, user_id)

    clean_status = status.strip() if status else None
    if clean_status and clean_status not in RECORD_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter.")
    start_day = parse_day(start, "start").isoformat() if start else None
    end_day = parse_day(end, "end").isoformat() if end else None

    reconcile_room(room)
    return db.list_attendance_for_room(
        room_id,
        start=start_day,
        end=end_day,
        status=cast(RecordStatus | None, clean_status),
    )


@router.get("/attendance/room/{room_id}/today")
def room_today(room_id: int, user_id: str = Depends(require_user_id)):
    room = load_room(room_id)
    ensure_member(room, user_id)
    return attendance_service.today_status(room)


@router.get("/attendance/pending")
def pending_reviews(user_id: str = Depends(require_user_id)):
    rows = db.list_pending_for_admin(user_id)
    return {
        "rows": rows,
        "total": len(rows),
        "by_room": db.count_pending_by_room(user_id),
    }


@router.post("/attendance/mark-absent")
def mark_room_absent(payload: MarkAbsent, user_id: str = Depends(require_user_id)):
    room = load_room(payload.room_id)
    ensure_admin(room, user_id)
    day = parse_day(payload.date)

    with store_errors():
        return mark_absent(room, day, user_id, datetime.now())

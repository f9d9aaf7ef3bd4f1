import logging
from datetime import datetime
from typing import cast

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.config import ANALYTICS_WEEKS
from backend.routers.common import ensure_admin, load_room
from backend.security import Principal, require_principal, require_service, require_user_id
from backend.services.analytics import compute_trend, detect_warnings, weekly_buckets
from backend.services.reconciler import reconcile_room, run_reconciliation_sweep
from database import db
from database.db import EVENT_TYPES, EventType

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_principal)])


@router.post("/admin/attendance/maintenance")
def run_attendance_maintenance(service: Principal = Depends(require_service)):
    logger.info("Attendance maintenance requested by %s", service.user_id)
    stats = run_reconciliation_sweep()
    return {
        "ok": True,
        "message": "Attendance maintenance completed.",
        **stats,
    }


@router.get("/admin/events")
def list_events(
    room_id: int | None = None,
    event_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user_id),
):
    clean_type = event_type.strip().upper() if event_type else None
    if clean_type and clean_type not in EVENT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid event_type filter.")

    visible = {room["id"] for room in db.list_rooms_for_owner(user_id)}
    visible.update(room["id"] for room in db.list_rooms_for_admin(user_id))
    if room_id is not None:
        if room_id not in visible:
            raise HTTPException(status_code=403, detail="You do not have access to this room.")
        room_ids = [room_id]
    else:
        room_ids = sorted(visible)

    typed_event = cast(EventType | None, clean_type)
    rows = db.list_events(room_ids=room_ids, event_type=typed_event, limit=limit, offset=offset)
    total = db.count_events(room_ids=room_ids, event_type=typed_event)
    return {
        "rows": rows,
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/admin/rooms/{room_id}/warnings")
def room_warnings(room_id: int, user_id: str = Depends(require_user_id)):
    room = load_room(room_id)
    ensure_admin(room, user_id)

    now = datetime.now()
    reconcile_room(room, now)
    records = db.list_attendance_for_room(room_id)
    return {
        "room_id": room_id,
        "warnings": detect_warnings(records, now.date()),
        "trend": compute_trend(weekly_buckets(records, now.date(), ANALYTICS_WEEKS)),
    }

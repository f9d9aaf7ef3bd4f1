from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from backend.config import DEFAULT_ROOM_END, DEFAULT_ROOM_START
from backend.routers.common import ensure_admin, ensure_member, ensure_owner, load_room, store_errors
from backend.security import require_user_id
from backend.services import reconciler
from backend.services.attendance import today_status
from backend.services.batch import fetch_today_statuses
from backend.services.proofs import purge_proof_artifacts
from backend.services.window import countdown, normalize_clock
from database import db

router = APIRouter()


class RoomCreate(BaseModel):
    name: str
    emoji: str = ""
    description: str = ""
    time_start: str | None = None
    time_end: str | None = None


class RoomUpdate(BaseModel):
    name: str | None = None
    emoji: str | None = None
    description: str | None = None
    time_start: str | None = None
    time_end: str | None = None


class InviteCreate(BaseModel):
    room_id: int


class InviteAccept(BaseModel):
    invite_code: str


def _clock_or_400(value: str, field: str) -> str:
    try:
        return normalize_clock(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}. Use HH:MM or HH:MM:SS.")


def _room_payload(room: db.RoomRow, now: datetime | None = None) -> dict:
    return {**room, "countdown": countdown(room, now or datetime.now())}


# -----------------------------
# Rooms
# -----------------------------
@router.post("/rooms")
def create_room(payload: RoomCreate, user_id: str = Depends(require_user_id)):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Room name is required.")

    default_start = DEFAULT_ROOM_START.strftime("%H:%M:%S") if DEFAULT_ROOM_START else "06:00:00"
    default_end = DEFAULT_ROOM_END.strftime("%H:%M:%S") if DEFAULT_ROOM_END else "09:00:00"
    time_start = _clock_or_400(payload.time_start or default_start, "time_start")
    time_end = _clock_or_400(payload.time_end or default_end, "time_end")
    if time_start == time_end:
        raise HTTPException(status_code=400, detail="time_start and time_end must differ.")

    room = db.create_room(
        user_id,
        name,
        time_start,
        time_end,
        emoji=payload.emoji.strip(),
        description=payload.description.strip(),
    )
    return _room_payload(room)


@router.get("/rooms")
def list_my_rooms(user_id: str = Depends(require_user_id)):
    now = datetime.now()
    return [_room_payload(room, now) for room in db.list_rooms_for_owner(user_id)]


@router.get("/rooms/admin")
def list_admin_rooms(user_id: str = Depends(require_user_id)):
    now = datetime.now()
    pending = db.count_pending_by_room(user_id)
    return [
        {**_room_payload(room, now), "pending_count": pending.get(room["id"], 0)}
        for room in db.list_rooms_for_admin(user_id)
    ]


@router.get("/rooms/status")
async def rooms_status(user_id: str = Depends(require_user_id)):
    rooms: dict[int, db.RoomRow] = {}
    for room in [*db.list_rooms_for_owner(user_id), *db.list_rooms_for_admin(user_id)]:
        rooms[room["id"]] = room
    statuses = await fetch_today_statuses(rooms.values(), today_status)
    return {
        "statuses": statuses,
        "failed": sorted(room_id for room_id, status in statuses.items() if status is None),
    }


@router.get("/rooms/{room_id}")
def room_detail(room_id: int, user_id: str = Depends(require_user_id)):
    room = load_room(room_id)
    ensure_member(room, user_id)
    return {**room, "today": today_status(room)}


@router.patch("/rooms/{room_id}")
def update_room(room_id: int, payload: RoomUpdate, user_id: str = Depends(require_user_id)):
    room = load_room(room_id)
    ensure_owner(room, user_id)

    updates = {
        "name": payload.name.strip() if payload.name is not None else None,
        "emoji": payload.emoji.strip() if payload.emoji is not None else None,
        "description": payload.description.strip() if payload.description is not None else None,
        "time_start": _clock_or_400(payload.time_start, "time_start") if payload.time_start else None,
        "time_end": _clock_or_400(payload.time_end, "time_end") if payload.time_end else None,
    }
    if updates["name"] == "":
        raise HTTPException(status_code=400, detail="Room name is required.")
    start = updates["time_start"] or room["time_start"]
    end = updates["time_end"] or room["time_end"]
    if start == end:
        raise HTTPException(status_code=400, detail="time_start and time_end must differ.")

    with store_errors():
        return _room_payload(db.update_room(room_id, updates))


@router.post("/rooms/{room_id}/toggle-pause")
def toggle_pause(room_id: int, user_id: str = Depends(require_user_id)):
    ensure_admin(load_room(room_id), user_id)
    with store_errors():
        return _room_payload(reconciler.toggle_pause(room_id))


@router.post("/rooms/{room_id}/toggle-late-upload")
def toggle_late_upload(room_id: int, user_id: str = Depends(require_user_id)):
    ensure_admin(load_room(room_id), user_id)
    with store_errors():
        return _room_payload(db.toggle_room_flag(room_id, "allow_late_upload"))


@router.delete("/rooms/{room_id}")
def delete_room(
    room_id: int,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(require_user_id),
):
    ensure_owner(load_room(room_id), user_id)
    with store_errors():
        refs = db.delete_room(room_id)
    if refs:
        background_tasks.add_task(purge_proof_artifacts, refs)
    return {"ok": True, "deleted_id": room_id, "proofs_scheduled": len(refs)}


# -----------------------------
# Invites
# -----------------------------
@router.post("/invites")
def create_invite(payload: InviteCreate, user_id: str = Depends(require_user_id)):
    ensure_owner(load_room(payload.room_id), user_id)
    with store_errors():
        return db.create_invite(payload.room_id)


@router.get("/invites/code/{code}")
def invite_by_code(code: str, _user_id: str = Depends(require_user_id)):
    with store_errors():
        invite = db.get_invite_by_code(code)
        room = db.require_room(int(invite["room_id"]))
    return {
        **invite,
        "room_name": room["name"],
        "room_emoji": room["emoji"],
        "time_start": room["time_start"],
        "time_end": room["time_end"],
    }


@router.post("/invites/accept")
def accept_invite(payload: InviteAccept, user_id: str = Depends(require_user_id)):
    code = payload.invite_code.strip()
    if not code:
        raise HTTPException(status_code=400, detail="Invite code is required.")

    with store_errors():
        invite = db.get_invite_by_code(code)
        room = db.require_room(int(invite["room_id"]))
        if room["owner_id"] == user_id:
            raise HTTPException(status_code=400, detail="You cannot review your own room.")
        return db.accept_invite(code, user_id, date.today().isoformat())


@router.post("/invites/{invite_id}/revoke")
def revoke_invite(invite_id: int, user_id: str = Depends(require_user_id)):
    with store_errors():
        invite = db.get_invite(invite_id)
        ensure_owner(db.require_room(int(invite["room_id"])), user_id)
        return db.revoke_invite(invite_id)

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator

from fastapi import HTTPException

from database import db
from database.db import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    RoomRow,
)

logger = logging.getLogger(__name__)


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate store exceptions raised inside the block into HTTP errors."""
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ConcurrencyConflictError as exc:
        logger.warning("Gave up after concurrent writes: %s", exc)
        raise HTTPException(
            status_code=503,
            detail="The record changed while saving. Please retry.",
        ) from exc


def load_room(room_id: int) -> RoomRow:
    room = db.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found.")
    return room


def ensure_owner(room: RoomRow, user_id: str) -> None:
    if room["owner_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the room owner can do this.")


def ensure_admin(room: RoomRow, user_id: str) -> None:
    if room["admin_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the room admin can do this.")


def ensure_member(room: RoomRow, user_id: str) -> None:
    if user_id not in (room["owner_id"], room["admin_id"]):
        raise HTTPException(status_code=403, detail="You do not have access to this room.")


def parse_day(value: str, field: str = "date") -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field}. Use YYYY-MM-DD.") from exc

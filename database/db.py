import json
import logging
import secrets
import sqlite3
from datetime import datetime
from typing import Any, Iterable, Literal, TypedDict

from backend.config import DB_PATH, SQLITE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

RecordStatus = Literal["pending_review", "approved", "rejected", "missed"]
InviteStatus = Literal["pending", "accepted", "revoked"]
EventType = Literal["SUBMITTED", "RESUBMITTED", "APPROVED", "REJECTED", "MISSED_MARKED"]

RECORD_STATUSES: tuple[str, ...] = ("pending_review", "approved", "rejected", "missed")
EVENT_TYPES: tuple[str, ...] = ("SUBMITTED", "RESUBMITTED", "APPROVED", "REJECTED", "MISSED_MARKED")
ROOM_EDITABLE_FIELDS: tuple[str, ...] = ("name", "emoji", "description", "time_start", "time_end")
# Pausing goes through pause_room/resume_room so tracking_since stays consistent.
ROOM_FLAGS: tuple[str, ...] = ("allow_late_upload",)


class NotFoundError(LookupError):
    """Room, record or invite does not exist."""


class InvalidTransitionError(Exception):
    """The record is not in a state that allows the requested change."""


class ConcurrencyConflictError(Exception):
    """A conditional write lost a race with another writer."""


class RoomRow(TypedDict):
    id: int
    owner_id: str
    admin_id: str | None
    name: str
    emoji: str
    description: str
    time_start: str
    time_end: str
    is_paused: bool
    allow_late_upload: bool
    tracking_since: str | None
    created_at: str
    updated_at: str


class AttendanceRow(TypedDict):
    id: int
    room_id: int
    user_id: str
    date: str
    status: RecordStatus
    proof_ref: str | None
    note: str | None
    submitted_at: str | None
    reviewed_at: str | None
    reviewer_id: str | None
    rejection_reason: str | None
    version: int
    created_at: str
    updated_at: str


_ROOM_COLUMNS = (
    "id",
    "owner_id",
    "admin_id",
    "name",
    "emoji",
    "description",
    "time_start",
    "time_end",
    "is_paused",
    "allow_late_upload",
    "tracking_since",
    "created_at",
    "updated_at",
)

_ATTENDANCE_COLUMNS = (
    "id",
    "room_id",
    "user_id",
    "date",
    "status",
    "proof_ref",
    "note",
    "submitted_at",
    "reviewed_at",
    "reviewer_id",
    "rejection_reason",
    "version",
    "created_at",
    "updated_at",
)

_INVITE_COLUMNS = ("id", "room_id", "invite_code", "admin_id", "status", "created_at", "accepted_at")

_EVENT_COLUMNS = (
    "id",
    "event_type",
    "record_id",
    "room_id",
    "actor_id",
    "message",
    "payload_json",
    "created_at",
)


def _select(columns: Iterable[str], alias: str | None = None) -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(f"{prefix}{col}" for col in columns)


def _room_from_row(row: tuple) -> RoomRow:
    data = dict(zip(_ROOM_COLUMNS, row))
    data["is_paused"] = bool(data["is_paused"])
    data["allow_late_upload"] = bool(data["allow_late_upload"])
    data["emoji"] = data["emoji"] or ""
    data["description"] = data["description"] or ""
    return data  # type: ignore[return-value]


def _attendance_from_row(row: tuple) -> AttendanceRow:
    data = dict(zip(_ATTENDANCE_COLUMNS, row))
    data["version"] = int(data["version"] or 0)
    return data  # type: ignore[return-value]


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), timeout=SQLITE_TIMEOUT_SECONDS, check_same_thread=False)
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS rooms (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id TEXT NOT NULL,
        admin_id TEXT,
        name TEXT NOT NULL,
        emoji TEXT DEFAULT '',
        description TEXT DEFAULT '',
        time_start TEXT NOT NULL,        -- HH:MM:SS
        time_end TEXT NOT NULL,          -- HH:MM:SS, may be <= time_start (wraps midnight)
        is_paused INTEGER NOT NULL DEFAULT 0,
        allow_late_upload INTEGER NOT NULL DEFAULT 0,
        tracking_since TEXT,             -- YYYY-MM-DD, set when an admin joins
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS room_invites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        room_id INTEGER NOT NULL,
        invite_code TEXT NOT NULL UNIQUE,
        admin_id TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'revoked')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        accepted_at TIMESTAMP,
        FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE CASCADE
    )
    """)

    # One record per room per calendar day
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        room_id INTEGER NOT NULL,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        status TEXT NOT NULL
            CHECK (status IN ('pending_review', 'approved', 'rejected', 'missed')),
        proof_ref TEXT,
        note TEXT,
        submitted_at TIMESTAMP,
        reviewed_at TIMESTAMP,
        reviewer_id TEXT,
        rejection_reason TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE CASCADE,
        UNIQUE(room_id, date)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        record_id INTEGER,
        room_id INTEGER NOT NULL,
        actor_id TEXT,
        message TEXT,
        payload_json TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_rooms_owner ON rooms(owner_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_rooms_admin ON rooms(admin_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_user ON attendance(user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_status ON attendance(status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_room ON attendance_events(room_id)")

    _ensure_room_columns(cursor)

    conn.commit()
    conn.close()


def _ensure_room_columns(cur: sqlite3.Cursor) -> None:
    # Migration for databases created before pause/late-upload/tracking existed.
    cur.execute("PRAGMA table_info(rooms)")
    cols = {str(row[1]) for row in cur.fetchall()}

    col_defs: list[tuple[str, str]] = [
        ("is_paused", "INTEGER NOT NULL DEFAULT 0"),
        ("allow_late_upload", "INTEGER NOT NULL DEFAULT 0"),
        ("tracking_since", "TEXT"),
    ]
    for col_name, col_def in col_defs:
        if col_name in cols:
            continue
        cur.execute(f"ALTER TABLE rooms ADD COLUMN {col_name} {col_def}")


# -----------------------------
# Rooms
# -----------------------------
def create_room(
    owner_id: str,
    name: str,
    time_start: str,
    time_end: str,
    *,
    emoji: str = "",
    description: str = "",
) -> RoomRow:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO rooms (owner_id, name, emoji, description, time_start, time_end)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (owner_id, name, emoji, description, time_start, time_end))
    room_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    room = get_room(room_id)
    assert room is not None
    return room


def get_room(room_id: int) -> RoomRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ROOM_COLUMNS)}
        FROM rooms
        WHERE id = ?
    """, (room_id,))
    row = cur.fetchone()
    conn.close()
    return _room_from_row(row) if row else None


def require_room(room_id: int) -> RoomRow:
    room = get_room(room_id)
    if room is None:
        raise NotFoundError(f"Room {room_id} not found.")
    return room


def list_rooms_for_owner(owner_id: str) -> list[RoomRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ROOM_COLUMNS)}
        FROM rooms
        WHERE owner_id = ?
        ORDER BY time_start, id
    """, (owner_id,))
    rows = cur.fetchall()
    conn.close()
    return [_room_from_row(r) for r in rows]


def list_rooms_for_admin(admin_id: str) -> list[RoomRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ROOM_COLUMNS)}
        FROM rooms
        WHERE admin_id = ?
        ORDER BY time_start, id
    """, (admin_id,))
    rows = cur.fetchall()
    conn.close()
    return [_room_from_row(r) for r in rows]


def list_tracked_rooms() -> list[RoomRow]:
    """Rooms with an admin and a tracking start date, i.e. candidates for reconciliation."""
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ROOM_COLUMNS)}
        FROM rooms
        WHERE admin_id IS NOT NULL
          AND tracking_since IS NOT NULL
        ORDER BY id
    """)
    rows = cur.fetchall()
    conn.close()
    return [_room_from_row(r) for r in rows]


def update_room(room_id: int, updates: dict[str, Any]) -> RoomRow:
    fields = {k: v for k, v in updates.items() if k in ROOM_EDITABLE_FIELDS and v is not None}
    if not fields:
        return require_room(room_id)

    assignments = ", ".join(f"{col} = ?" for col in fields)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        UPDATE rooms
        SET {assignments},
            updated_at = ?
        WHERE id = ?
        """,
        (*fields.values(), _now_iso(), room_id),
    )
    changed = cur.rowcount
    conn.commit()
    conn.close()
    if not changed:
        raise NotFoundError(f"Room {room_id} not found.")
    return require_room(room_id)


def toggle_room_flag(room_id: int, flag: str) -> RoomRow:
    if flag not in ROOM_FLAGS:
        raise ValueError(f"Unexpected room flag: {flag}")
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        UPDATE rooms
        SET {flag} = 1 - {flag},
            updated_at = ?
        WHERE id = ?
        """,
        (_now_iso(), room_id),
    )
    changed = cur.rowcount
    conn.commit()
    conn.close()
    if not changed:
        raise NotFoundError(f"Room {room_id} not found.")
    return require_room(room_id)


def pause_room(room_id: int) -> RoomRow:
    _set_paused(room_id, paused=True, resume_from=None)
    return require_room(room_id)


def resume_room(room_id: int, resume_from: str) -> RoomRow:
    """
    Unpause a room. Tracking restarts at `resume_from`, so days that passed
    while paused are never reconciled as missed.
    """
    _set_paused(room_id, paused=False, resume_from=resume_from)
    return require_room(room_id)


def _set_paused(room_id: int, *, paused: bool, resume_from: str | None) -> None:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            UPDATE rooms
            SET is_paused = ?,
                tracking_since = CASE
                    WHEN ? IS NULL OR tracking_since IS NULL THEN tracking_since
                    WHEN tracking_since < ? THEN ?
                    ELSE tracking_since
                END,
                updated_at = ?
            WHERE id = ? AND is_paused = ?
            """,
            (int(paused), resume_from, resume_from, resume_from, _now_iso(), room_id, int(not paused)),
        )
        changed = cur.rowcount
        conn.commit()
    finally:
        conn.close()
    if not changed:
        require_room(room_id)
        raise ConcurrencyConflictError(f"Room {room_id} pause state changed concurrently.")


def delete_room(room_id: int) -> list[str]:
    """
    Delete a room; attendance, invites and events cascade.

    Returns the proof refs that belonged to the room so the caller can purge
    the stored artifacts.
    """
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT proof_ref
        FROM attendance
        WHERE room_id = ? AND proof_ref IS NOT NULL
        """,
        (room_id,),
    )
    refs = [str(row[0]) for row in cur.fetchall()]
    cur.execute("DELETE FROM rooms WHERE id = ?", (room_id,))
    changed = cur.rowcount
    conn.commit()
    conn.close()
    if not changed:
        raise NotFoundError(f"Room {room_id} not found.")
    return refs


# -----------------------------
# Invites
# -----------------------------
def create_invite(room_id: int) -> dict[str, Any]:
    require_room(room_id)
    conn = connect_db()
    cur = conn.cursor()
    while True:
        code = secrets.token_urlsafe(8)
        try:
            cur.execute(
                """
                INSERT INTO room_invites (room_id, invite_code)
                VALUES (?, ?)
                """,
                (room_id, code),
            )
            break
        except sqlite3.IntegrityError:
            continue
    invite_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return _get_invite("id", invite_id)


def _get_invite(column: str, value: Any) -> dict[str, Any]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_select(_INVITE_COLUMNS)}
        FROM room_invites
        WHERE {column} = ?
        """,
        (value,),
    )
    row = cur.fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Invite not found.")
    return dict(zip(_INVITE_COLUMNS, row))


def get_invite_by_code(code: str) -> dict[str, Any]:
    return _get_invite("invite_code", code.strip())


def get_invite(invite_id: int) -> dict[str, Any]:
    return _get_invite("id", invite_id)


def accept_invite(code: str, admin_id: str, today: str) -> RoomRow:
    """
    Accept a pending invite: the accepting user becomes the room admin and
    tracking starts on `today` unless it already started.
    """
    invite = get_invite_by_code(code)
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            UPDATE room_invites
            SET status = 'accepted',
                admin_id = ?,
                accepted_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (admin_id, _now_iso(), invite["id"]),
        )
        if cur.rowcount != 1:
            raise InvalidTransitionError("Invite is no longer pending.")
        cur.execute(
            """
            UPDATE rooms
            SET admin_id = ?,
                tracking_since = COALESCE(tracking_since, ?),
                updated_at = ?
            WHERE id = ?
            """,
            (admin_id, today, _now_iso(), invite["room_id"]),
        )
        # Other pending invites for the room are superseded.
        cur.execute(
            """
            UPDATE room_invites
            SET status = 'revoked'
            WHERE room_id = ? AND status = 'pending'
            """,
            (invite["room_id"],),
        )
        conn.commit()
    finally:
        conn.close()
    return require_room(int(invite["room_id"]))


def revoke_invite(invite_id: int) -> dict[str, Any]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE room_invites
        SET status = 'revoked'
        WHERE id = ? AND status = 'pending'
        """,
        (invite_id,),
    )
    changed = cur.rowcount
    conn.commit()
    conn.close()
    invite = get_invite(invite_id)
    if not changed:
        raise InvalidTransitionError("Only pending invites can be revoked.")
    return invite


# -----------------------------
# Attendance records
# -----------------------------
def get_attendance(record_id: int) -> AttendanceRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ATTENDANCE_COLUMNS)}
        FROM attendance
        WHERE id = ?
    """, (record_id,))
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def require_attendance(record_id: int) -> AttendanceRow:
    record = get_attendance(record_id)
    if record is None:
        raise NotFoundError(f"Attendance record {record_id} not found.")
    return record


def get_attendance_for_day(room_id: int, date: str) -> AttendanceRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_select(_ATTENDANCE_COLUMNS)}
        FROM attendance
        WHERE room_id = ? AND date = ?
    """, (room_id, date))
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def list_attendance_for_room(
    room_id: int,
    *,
    start: str | None = None,
    end: str | None = None,
    status: RecordStatus | None = None,
) -> list[AttendanceRow]:
    where = ["room_id = ?"]
    params: list[Any] = [room_id]
    if start:
        where.append("date >= ?")
        params.append(start)
    if end:
        where.append("date <= ?")
        params.append(end)
    if status:
        where.append("status = ?")
        params.append(status)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_select(_ATTENDANCE_COLUMNS)}
        FROM attendance
        WHERE {" AND ".join(where)}
        ORDER BY date DESC
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return [_attendance_from_row(r) for r in rows]


def list_attendance_dates(room_id: int) -> set[str]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("SELECT date FROM attendance WHERE room_id = ?", (room_id,))
    dates = {str(row[0]) for row in cur.fetchall()}
    conn.close()
    return dates


def list_attendance_for_user(user_id: str) -> list[dict[str, Any]]:
    """
    All records of a user across rooms, oldest first, each carrying its room's
    window (`room_time_start`, `room_time_end`) for on-time scoring.
    """
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_select(_ATTENDANCE_COLUMNS, "a")}, r.time_start, r.time_end
        FROM attendance a
        JOIN rooms r ON r.id = a.room_id
        WHERE a.user_id = ?
        ORDER BY a.date ASC, a.id ASC
        """,
        (user_id,),
    )
    rows = cur.fetchall()
    conn.close()

    out: list[dict[str, Any]] = []
    width = len(_ATTENDANCE_COLUMNS)
    for row in rows:
        record: dict[str, Any] = dict(_attendance_from_row(row[:width]))
        record["room_time_start"] = row[width]
        record["room_time_end"] = row[width + 1]
        out.append(record)
    return out


def list_pending_for_admin(admin_id: str) -> list[dict[str, Any]]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_select(_ATTENDANCE_COLUMNS, "a")}, r.name
        FROM attendance a
        JOIN rooms r ON r.id = a.room_id
        WHERE r.admin_id = ?
          AND a.status = 'pending_review'
        ORDER BY a.submitted_at ASC, a.id ASC
        """,
        (admin_id,),
    )
    rows = cur.fetchall()
    conn.close()

    width = len(_ATTENDANCE_COLUMNS)
    out: list[dict[str, Any]] = []
    for row in rows:
        record: dict[str, Any] = dict(_attendance_from_row(row[:width]))
        record["room_name"] = row[width]
        out.append(record)
    return out


def insert_submission(
    *,
    room_id: int,
    user_id: str,
    date: str,
    proof_ref: str,
    note: str | None,
    submitted_at: str,
) -> AttendanceRow:
    """
    Create the day's record as `pending_review`.

    Raises ConcurrencyConflictError when another writer created the
    (room_id, date) row first.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO attendance (
                room_id, user_id, date, status, proof_ref, note, submitted_at, updated_at
            )
            VALUES (?, ?, ?, 'pending_review', ?, ?, ?, ?)
            """,
            (room_id, user_id, date, proof_ref, note, submitted_at, submitted_at),
        )
        record_id = int(cur.lastrowid)
        insert_event(
            cur,
            event_type="SUBMITTED",
            record_id=record_id,
            room_id=room_id,
            actor_id=user_id,
            message=f"Proof submitted for {date}.",
        )
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        raise ConcurrencyConflictError(
            f"Attendance for room {room_id} on {date} was created concurrently."
        ) from exc
    finally:
        conn.close()
    return require_attendance(record_id)


def overwrite_submission(
    *,
    record_id: int,
    expected_version: int,
    proof_ref: str,
    note: str | None,
    submitted_at: str,
    actor_id: str,
) -> AttendanceRow:
    """
    Resubmit over a `rejected` or `missed` record, back to `pending_review`.

    The write only lands if the record is still at `expected_version` and in a
    resubmittable state; otherwise ConcurrencyConflictError.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            UPDATE attendance
            SET status = 'pending_review',
                proof_ref = ?,
                note = ?,
                submitted_at = ?,
                reviewed_at = NULL,
                reviewer_id = NULL,
                rejection_reason = NULL,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
              AND version = ?
              AND status IN ('rejected', 'missed')
            """,
            (proof_ref, note, submitted_at, submitted_at, record_id, expected_version),
        )
        if cur.rowcount != 1:
            conn.rollback()
            raise ConcurrencyConflictError(f"Attendance record {record_id} changed before resubmission.")
        cur.execute("SELECT room_id, date FROM attendance WHERE id = ?", (record_id,))
        room_id, date = cur.fetchone()
        insert_event(
            cur,
            event_type="RESUBMITTED",
            record_id=record_id,
            room_id=int(room_id),
            actor_id=actor_id,
            message=f"Proof resubmitted for {date}.",
        )
        conn.commit()
    finally:
        conn.close()
    return require_attendance(record_id)


def apply_review(
    *,
    record_id: int,
    expected_version: int,
    status: Literal["approved", "rejected"],
    reviewer_id: str,
    reviewed_at: str,
    rejection_reason: str | None = None,
) -> AttendanceRow:
    """
    Move a `pending_review` record to `approved` or `rejected`.

    Guarded by `status = 'pending_review' AND version = ?`; a record that moved
    in the meantime raises ConcurrencyConflictError.
    """
    reason = rejection_reason if status == "rejected" else None
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            UPDATE attendance
            SET status = ?,
                reviewed_at = ?,
                reviewer_id = ?,
                rejection_reason = ?,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
              AND version = ?
              AND status = 'pending_review'
            """,
            (status, reviewed_at, reviewer_id, reason, reviewed_at, record_id, expected_version),
        )
        if cur.rowcount != 1:
            conn.rollback()
            raise ConcurrencyConflictError(f"Attendance record {record_id} changed before review.")
        cur.execute("SELECT room_id, date FROM attendance WHERE id = ?", (record_id,))
        room_id, date = cur.fetchone()
        event_type: EventType = "APPROVED" if status == "approved" else "REJECTED"
        insert_event(
            cur,
            event_type=event_type,
            record_id=record_id,
            room_id=int(room_id),
            actor_id=reviewer_id,
            message=f"Proof for {date} {status}.",
            payload={"rejection_reason": reason} if reason else None,
        )
        conn.commit()
    finally:
        conn.close()
    return require_attendance(record_id)


def insert_missed_if_absent(
    *,
    room_id: int,
    user_id: str,
    dates: Iterable[str],
    actor_id: str | None = None,
) -> int:
    """
    Materialize `missed` records for the given dates, skipping any date that
    already has a record. Safe to call concurrently: the UNIQUE(room_id, date)
    constraint decides which caller creates the row.

    Returns the number of rows created by this call.
    """
    created = 0
    now = _now_iso()
    conn = connect_db()
    cur = conn.cursor()
    try:
        for date in dates:
            cur.execute(
                """
                INSERT INTO attendance (room_id, user_id, date, status, updated_at)
                VALUES (?, ?, ?, 'missed', ?)
                ON CONFLICT(room_id, date) DO NOTHING
                """,
                (room_id, user_id, date, now),
            )
            if cur.rowcount != 1:
                continue
            insert_event(
                cur,
                event_type="MISSED_MARKED",
                record_id=int(cur.lastrowid),
                room_id=room_id,
                actor_id=actor_id,
                message=f"No proof submitted for {date}.",
            )
            created += 1
        conn.commit()
    finally:
        conn.close()
    return created


def set_reflection_note(*, record_id: int, expected_version: int, note: str) -> AttendanceRow:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            UPDATE attendance
            SET note = ?,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
              AND version = ?
              AND status = 'missed'
            """,
            (note, _now_iso(), record_id, expected_version),
        )
        if cur.rowcount != 1:
            conn.rollback()
            raise ConcurrencyConflictError(f"Attendance record {record_id} changed before the note was saved.")
        conn.commit()
    finally:
        conn.close()
    return require_attendance(record_id)


def count_pending_by_room(admin_id: str) -> dict[int, int]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT a.room_id, COUNT(1)
        FROM attendance a
        JOIN rooms r ON r.id = a.room_id
        WHERE r.admin_id = ?
          AND a.status = 'pending_review'
        GROUP BY a.room_id
        """,
        (admin_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return {int(room_id): int(count) for room_id, count in rows}


# -----------------------------
# Audit events
# -----------------------------
def insert_event(
    cur: sqlite3.Cursor,
    *,
    event_type: EventType,
    room_id: int,
    record_id: int | None = None,
    actor_id: str | None = None,
    message: str = "",
    payload: dict[str, Any] | None = None,
) -> int:
    """Append a lifecycle event inside the caller's transaction."""
    cur.execute(
        """
        INSERT INTO attendance_events (
            event_type, record_id, room_id, actor_id, message, payload_json, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event_type,
            record_id,
            room_id,
            actor_id,
            message,
            json.dumps(payload, sort_keys=True) if payload else None,
            _now_iso(),
        ),
    )
    return int(cur.lastrowid)


def _build_events_where_clause(
    *,
    room_ids: list[int] | None = None,
    event_type: EventType | None = None,
) -> tuple[str, list[Any]]:
    where = ["1=1"]
    params: list[Any] = []

    if room_ids is not None:
        if not room_ids:
            where.append("0=1")
        else:
            where.append(f"room_id IN ({', '.join('?' for _ in room_ids)})")
            params.extend(room_ids)
    if event_type is not None:
        where.append("event_type = ?")
        params.append(event_type)

    return " AND ".join(where), params


def list_events(
    *,
    room_ids: list[int] | None = None,
    event_type: EventType | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where_sql, params = _build_events_where_clause(room_ids=room_ids, event_type=event_type)
    safe_limit = max(1, min(int(limit), 500))
    safe_offset = max(0, int(offset))

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_select(_EVENT_COLUMNS)}
        FROM attendance_events
        WHERE {where_sql}
        ORDER BY id DESC
        LIMIT ?
        OFFSET ?
        """,
        [*params, safe_limit, safe_offset],
    )
    rows = cur.fetchall()
    conn.close()

    out: list[dict[str, Any]] = []
    for row in rows:
        event = dict(zip(_EVENT_COLUMNS, row))
        payload_json = event.pop("payload_json")
        event["payload"] = json.loads(payload_json) if payload_json else None
        out.append(event)
    return out


def count_events(
    *,
    room_ids: list[int] | None = None,
    event_type: EventType | None = None,
) -> int:
    where_sql, params = _build_events_where_clause(room_ids=room_ids, event_type=event_type)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT COUNT(1)
        FROM attendance_events
        WHERE {where_sql}
        """,
        params,
    )
    row = cur.fetchone()
    conn.close()
    return int(row[0] or 0) if row else 0

from datetime import date, datetime, timedelta

import backend.routers.core as core
import backend.services.proofs as proofs
import database.db as db

# Open for the whole day except its last second.
ALL_DAY = {"time_start": "00:00:00", "time_end": "23:59:59"}


def _closed_now() -> dict[str, str]:
    now = datetime.now()
    start = (now + timedelta(hours=2)).strftime("%H:%M:00")
    end = (now + timedelta(hours=3)).strftime("%H:%M:00")
    return {"time_start": start, "time_end": end}


def _create_room(client, headers, **overrides) -> dict:
    payload = {"name": "Gym", "emoji": "🏋", **ALL_DAY, **overrides}
    res = client.post("/rooms", json=payload, headers=headers)
    assert res.status_code == 200
    return res.json()


def _pair(client, owner_headers, admin_headers, **overrides) -> dict:
    room = _create_room(client, owner_headers, **overrides)
    invite = client.post("/invites", json={"room_id": room["id"]}, headers=owner_headers)
    assert invite.status_code == 200
    res = client.post(
        "/invites/accept",
        json={"invite_code": invite.json()["invite_code"]},
        headers=admin_headers,
    )
    assert res.status_code == 200
    return res.json()


def _backdate_tracking(room_id: int, days: int) -> None:
    conn = db.connect_db()
    conn.execute(
        "UPDATE rooms SET tracking_since = ? WHERE id = ?",
        ((date.today() - timedelta(days=days)).isoformat(), room_id),
    )
    conn.commit()
    conn.close()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client, login):
    res = client.get("/debug/dbpath", headers=login("owner-1"))
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_requires_session_when_enabled(client, monkeypatch, login):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 401

    res = client.get("/debug/dbpath", headers=login("owner-1"))
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_scoring_config(client):
    res = client.get("/config/scoring")
    assert res.status_code == 200
    body = res.json()
    assert body["score_max"] == 1500
    assert body["weights"]["missed"] == -15
    assert body["streak_phases"][-1]["label"] == "Legend"


def test_session_rejects_bad_secret(client):
    res = client.post("/auth/session", json={"user_id": "owner-1", "service_secret": "nope"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid service secret."

    res = client.post("/auth/session", json={"user_id": "  ", "service_secret": "nope"})
    assert res.status_code == 400


def test_routes_require_bearer_token(client, login):
    res = client.get("/rooms")
    assert res.status_code == 401
    assert res.json()["detail"] == "Missing bearer token."

    res = client.get("/rooms", headers={"Authorization": "Basic abc"})
    assert res.json()["detail"] == "Invalid authorization scheme."

    res = client.get("/rooms", headers={"Authorization": "Bearer forged.token"})
    assert res.json()["detail"] == "Invalid or expired session token."

    res = client.get("/auth/me", headers=login("owner-1"))
    assert res.status_code == 200
    assert res.json()["user_id"] == "owner-1"


def test_service_tokens_run_jobs_but_cannot_act_for_users(client, login):
    service = login("scheduler", scope="service")

    me = client.get("/auth/me", headers=service).json()
    assert me["user_id"] == "scheduler"
    assert me["scope"] == "service"
    assert client.get("/auth/me", headers=login("owner-1")).json()["scope"] == "user"

    res = client.get("/rooms", headers=service)
    assert res.status_code == 403
    assert res.json()["detail"] == "Service tokens cannot act for a user."
    assert client.post("/rooms", json={"name": "Gym", **ALL_DAY}, headers=service).status_code == 403

    res = client.post(
        "/auth/session",
        json={"user_id": "scheduler", "service_secret": "nope", "scope": "service"},
    )
    assert res.status_code == 401
    res = client.post(
        "/auth/session",
        json={"user_id": "scheduler", "service_secret": "nope", "scope": "root"},
    )
    assert res.status_code == 422


def test_room_validation_and_ownership(client, login):
    owner = login("owner-1")
    stranger = login("someone-else")

    res = client.post("/rooms", json={"name": " ", **ALL_DAY}, headers=owner)
    assert res.status_code == 400
    res = client.post("/rooms", json={"name": "Gym", "time_start": "7am", "time_end": "09:00"}, headers=owner)
    assert res.status_code == 400
    res = client.post("/rooms", json={"name": "Gym", "time_start": "09:00", "time_end": "09:00:00"}, headers=owner)
    assert res.status_code == 400

    room = _create_room(client, owner, time_start="6:30", time_end="8:00")
    assert room["time_start"] == "06:30:00"
    assert room["admin_id"] is None

    assert client.get(f"/rooms/{room['id']}", headers=stranger).status_code == 403
    assert client.patch(f"/rooms/{room['id']}", json={"name": "X"}, headers=stranger).status_code == 403
    assert client.get("/rooms/9999", headers=owner).status_code == 404

    res = client.patch(f"/rooms/{room['id']}", json={"name": "Morning gym"}, headers=owner)
    assert res.status_code == 200
    assert res.json()["name"] == "Morning gym"

    assert client.post(f"/rooms/{room['id']}/toggle-pause", headers=owner).status_code == 403
    assert client.post(f"/rooms/{room['id']}/toggle-late-upload", headers=owner).status_code == 403


def test_submission_lifecycle(client, login):
    owner = login("owner-1")
    admin = login("admin-1")

    room = _create_room(client, owner)
    res = client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": "p1.jpg"}, headers=owner)
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "NO_REVIEWER"

    invite = client.post("/invites", json={"room_id": room["id"]}, headers=owner).json()
    res = client.post("/invites/accept", json={"invite_code": invite["invite_code"]}, headers=owner)
    assert res.status_code == 400
    preview = client.get(f"/invites/code/{invite['invite_code']}", headers=admin)
    assert preview.json()["room_name"] == "Gym"
    res = client.post("/invites/accept", json={"invite_code": invite["invite_code"]}, headers=admin)
    assert res.status_code == 200
    assert res.json()["admin_id"] == "admin-1"
    assert res.json()["tracking_since"] == date.today().isoformat()

    res = client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": " "}, headers=owner)
    assert res.status_code == 400
    res = client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": "p1.jpg"}, headers=admin)
    assert res.status_code == 403

    res = client.post(
        "/attendance/submit",
        json={"room_id": room["id"], "proof_ref": "p1.jpg", "note": "done"},
        headers=owner,
    )
    assert res.status_code == 200
    record = res.json()["record"]
    assert record["status"] == "pending_review"

    res = client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": "p2.jpg"}, headers=owner)
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "ALREADY_SUBMITTED"

    pending = client.get("/attendance/pending", headers=admin).json()
    assert pending["total"] == 1
    assert pending["rows"][0]["room_name"] == "Gym"

    assert client.post(f"/attendance/{record['id']}/approve", headers=owner).status_code == 403

    res = client.post(f"/attendance/{record['id']}/reject", json={"reason": "Too dark"}, headers=admin)
    assert res.status_code == 200
    assert res.json()["status"] == "rejected"
    assert res.json()["rejection_reason"] == "Too dark"

    res = client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": "p2.jpg"}, headers=owner)
    assert res.status_code == 200
    assert res.json()["record"]["status"] == "pending_review"
    assert res.json()["record"]["rejection_reason"] is None

    res = client.post(f"/attendance/{record['id']}/approve", headers=admin)
    assert res.status_code == 200
    assert res.json()["status"] == "approved"

    res = client.post(f"/attendance/{record['id']}/approve", headers=admin)
    assert res.status_code == 409
    assert client.post("/attendance/9999/approve", headers=admin).status_code == 404

    today = client.get(f"/attendance/room/{room['id']}/today", headers=owner).json()
    assert today["status"] == "approved"
    assert today["is_open"] is True

    analytics = client.get("/analytics/user", headers=owner).json()
    assert analytics["streak"]["current"] == 1
    assert analytics["streak"]["phase"] == "Newcomer"
    assert analytics["summary"]["approved"] == 1

    events = client.get("/admin/events", headers=admin).json()
    assert [e["event_type"] for e in events["rows"]] == ["APPROVED", "RESUBMITTED", "REJECTED", "SUBMITTED"]
    assert events["rows"][2]["payload"] == {"rejection_reason": "Too dark"}


def test_paused_and_closed_rooms_refuse_submissions(client, login):
    owner = login("owner-1")
    admin = login("admin-1")

    room = _pair(client, owner, admin, **_closed_now())
    submit = {"room_id": room["id"], "proof_ref": "late.jpg"}

    res = client.post("/attendance/submit", json=submit, headers=owner)
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "WINDOW_CLOSED"

    assert client.post(f"/rooms/{room['id']}/toggle-late-upload", headers=owner).status_code == 403
    res = client.post(f"/rooms/{room['id']}/toggle-late-upload", headers=admin)
    assert res.json()["allow_late_upload"] is True
    res = client.post(f"/rooms/{room['id']}/toggle-pause", headers=admin)
    assert res.json()["is_paused"] is True
    res = client.post("/attendance/submit", json=submit, headers=owner)
    assert res.json()["detail"]["code"] == "ROOM_PAUSED"

    res = client.post(f"/rooms/{room['id']}/toggle-pause", headers=admin)
    assert res.json()["is_paused"] is False
    res = client.post("/attendance/submit", json=submit, headers=owner)
    assert res.status_code == 200


def test_maintenance_marks_missed_days_once(client, login):
    owner = login("owner-1")
    admin = login("admin-1")
    room = _pair(client, owner, admin)
    _backdate_tracking(room["id"], 3)

    sweeper = login("scheduler", scope="service")
    assert client.post("/admin/attendance/maintenance", headers=admin).status_code == 403
    assert client.post("/admin/attendance/maintenance").status_code == 401

    res = client.post("/admin/attendance/maintenance", headers=sweeper)
    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert res.json()["rooms_checked"] == 1
    assert res.json()["missed_marked"] == 3

    res = client.post("/admin/attendance/maintenance", headers=sweeper)
    assert res.json()["missed_marked"] == 0

    history = client.get(f"/attendance/room/{room['id']}", params={"status": "missed"}, headers=owner).json()
    assert len(history) == 3
    assert client.get(f"/attendance/room/{room['id']}", params={"status": "bogus"}, headers=owner).status_code == 400

    res = client.post(
        f"/attendance/{history[0]['id']}/reflection",
        json={"note": "Missed the bus, leaving ten minutes earlier."},
        headers=owner,
    )
    assert res.status_code == 200
    assert client.post(
        f"/attendance/{history[0]['id']}/reflection", json={"note": "x"}, headers=admin
    ).status_code == 403

    score = client.get("/analytics/user", headers=owner).json()["score"]
    assert score["score"] == -40
    assert score["breakdown"]["reflections"] == 5

    warnings = client.get(f"/admin/rooms/{room['id']}/warnings", headers=admin).json()
    assert [w["code"] for w in warnings["warnings"]] == ["CONSECUTIVE_MISSES"]
    assert client.get(f"/admin/rooms/{room['id']}/warnings", headers=owner).status_code == 403


def test_mark_absent_endpoint(client, login):
    owner = login("owner-1")
    admin = login("admin-1")
    room = _pair(client, owner, admin)
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    tomorrow = (date.today() + timedelta(days=1)).isoformat()

    res = client.post("/attendance/mark-absent", json={"room_id": room["id"], "date": yesterday}, headers=admin)
    assert res.status_code == 200
    assert res.json()["status"] == "missed"

    res = client.post("/attendance/mark-absent", json={"room_id": room["id"], "date": yesterday}, headers=admin)
    assert res.status_code == 200

    res = client.post("/attendance/mark-absent", json={"room_id": room["id"], "date": tomorrow}, headers=admin)
    assert res.status_code == 409
    res = client.post("/attendance/mark-absent", json={"room_id": room["id"], "date": "yesterday"}, headers=admin)
    assert res.status_code == 400
    res = client.post("/attendance/mark-absent", json={"room_id": room["id"], "date": yesterday}, headers=owner)
    assert res.status_code == 403


def test_rooms_status_batch(client, login):
    owner = login("owner-1")
    admin = login("admin-1")
    reviewed = _pair(client, owner, admin)
    own = _create_room(client, owner, name="Desk")

    res = client.get("/rooms/status", headers=owner)
    assert res.status_code == 200
    body = res.json()
    assert body["failed"] == []
    assert body["statuses"][str(reviewed["id"])]["status"] == "waiting"
    assert body["statuses"][str(own["id"])]["status"] == "waiting"

    admin_rooms = client.get("/rooms/admin", headers=admin).json()
    assert [r["id"] for r in admin_rooms] == [reviewed["id"]]
    assert admin_rooms[0]["pending_count"] == 0


def test_events_are_scoped_to_visible_rooms(client, login):
    owner = login("owner-1")
    admin = login("admin-1")
    stranger = login("someone-else")
    room = _pair(client, owner, admin)

    res = client.get("/admin/events", params={"room_id": room["id"]}, headers=stranger)
    assert res.status_code == 403
    res = client.get("/admin/events", params={"event_type": "EXPLODED"}, headers=owner)
    assert res.status_code == 400
    res = client.get("/admin/events", headers=stranger)
    assert res.json()["total"] == 0


def test_invite_revoke(client, login):
    owner = login("owner-1")
    admin = login("admin-1")
    room = _create_room(client, owner)
    invite = client.post("/invites", json={"room_id": room["id"]}, headers=owner).json()

    assert client.post(f"/invites/{invite['id']}/revoke", headers=admin).status_code == 403
    res = client.post(f"/invites/{invite['id']}/revoke", headers=owner)
    assert res.status_code == 200
    assert res.json()["status"] == "revoked"

    res = client.post("/invites/accept", json={"invite_code": invite["invite_code"]}, headers=admin)
    assert res.status_code == 409
    assert client.get("/invites/code/unknown-code", headers=admin).status_code == 404


def test_delete_room_purges_local_proofs(client, login, tmp_path, monkeypatch):
    proofs_dir = tmp_path / "proofs"
    proofs_dir.mkdir()
    (proofs_dir / "today.jpg").write_bytes(b"jpeg")
    monkeypatch.setattr(proofs, "PROOFS_DIR", proofs_dir)

    owner = login("owner-1")
    admin = login("admin-1")
    room = _pair(client, owner, admin)
    client.post("/attendance/submit", json={"room_id": room["id"], "proof_ref": "today.jpg"}, headers=owner)

    assert client.delete(f"/rooms/{room['id']}", headers=admin).status_code == 403
    res = client.delete(f"/rooms/{room['id']}", headers=owner)
    assert res.status_code == 200
    assert res.json()["proofs_scheduled"] == 1
    assert not (proofs_dir / "today.jpg").exists()
    assert client.get(f"/rooms/{room['id']}", headers=owner).status_code == 404

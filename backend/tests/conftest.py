import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import database.db as db


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    test_db = tmp_path / "daylock_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def client(temp_db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def login(client):
    def _login(user_id: str, scope: str = "user") -> dict[str, str]:
        res = client.post(
            "/auth/session",
            json={"user_id": user_id, "service_secret": config.SERVICE_SECRET, "scope": scope},
        )
        assert res.status_code == 200
        token = res.json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture()
def tracked_room(temp_db):
    """A 06:00-09:00 room owned by owner-1, reviewed by admin-1 since 2024-01-01."""
    room = db.create_room("owner-1", "Gym", "06:00:00", "09:00:00")
    invite = db.create_invite(room["id"])
    return db.accept_invite(invite["invite_code"], "admin-1", "2024-01-01")

from datetime import datetime, timezone

from sqlalchemy import func, select

from taskboard import config
from taskboard.db import Board, Task, User
from taskboard.storage import Storage
from conftest import auth_header, make_board, make_task


def test_admin_routes_require_admin(client, alice):
    headers = auth_header(alice["token"])
    assert client.get("/api/users", headers=headers).status_code == 403
    assert client.get("/api/admin/stats", headers=headers).status_code == 403
    res = client.delete(f"/api/users/{alice['user']['id']}", headers=headers)
    assert res.status_code == 403
    assert res.json() == {"error": "Forbidden"}
    assert client.get("/api/users").status_code == 401


def test_list_users(client, admin, alice, bob):
    res = client.get("/api/users", headers=auth_header(admin["token"]))
    assert res.status_code == 200
    emails = [u["email"] for u in res.json()["users"]]
    assert emails == [config.SEED_ADMIN_EMAIL, "alice@example.com", "bob@example.com"]
    assert all("password" not in key.lower() for u in res.json()["users"] for key in u)

    legacy = client.get("/api/admin/users", headers=auth_header(admin["token"]))
    assert legacy.json() == res.json()


def test_delete_user_cascades(client, db, admin, alice):
    board = make_board(client, alice["token"])
    make_task(client, alice["token"], board["lists"][0]["id"])

    res = client.delete(f"/api/users/{alice['user']['id']}", headers=auth_header(admin["token"]))
    assert res.status_code == 200
    assert db.get(User, alice["user"]["id"]) is None
    assert db.scalar(select(func.count()).select_from(Board)) == 0
    assert db.scalar(select(func.count()).select_from(Task)) == 0


def test_seed_admin_cannot_be_deleted(client, admin):
    res = client.delete(f"/api/users/{admin['user']['id']}", headers=auth_header(admin["token"]))
    assert res.status_code == 403
    assert res.json() == {"error": "The default admin account cannot be deleted"}


def test_delete_missing_user(client, admin):
    res = client.delete("/api/users/nobody", headers=auth_header(admin["token"]))
    assert res.status_code == 404


def test_promote_user(client, admin, alice):
    res = client.put(
        f"/api/users/{alice['user']['id']}/role",
        json={"role": "admin"},
        headers=auth_header(admin["token"]),
    )
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"
    # the old token now carries admin rights because roles are re-read per request
    assert client.get("/api/users", headers=auth_header(alice["token"])).status_code == 200

    res = client.post(
        f"/api/admin/users/{alice['user']['id']}/role",
        json={"role": "superuser"},
        headers=auth_header(admin["token"]),
    )
    assert res.status_code == 400


def test_seed_admin_cannot_be_demoted(client, admin):
    res = client.put(
        f"/api/users/{admin['user']['id']}/role",
        json={"role": "user"},
        headers=auth_header(admin["token"]),
    )
    assert res.status_code == 403


def test_stats(client, admin, alice, bob):
    board = make_board(client, alice["token"])
    list_id = board["lists"][0]["id"]
    make_task(client, alice["token"], list_id, "a", priority="high")
    done = make_task(client, alice["token"], list_id, "b", priority="low")
    make_task(client, alice["token"], list_id, "c")
    client.put(f"/api/tasks/{done['id']}", json={"completed": True}, headers=auth_header(alice["token"]))

    res = client.get("/api/admin/stats", headers=auth_header(admin["token"]))
    assert res.status_code == 200
    stats = res.json()["stats"]
    assert stats["totalUsers"] == 3
    assert stats["totalAdmins"] == 1
    assert stats["totalBoards"] == 1
    assert stats["totalLists"] == 4
    assert stats["totalTasks"] == 3
    assert stats["completedTasks"] == 1
    assert stats["tasksByPriority"] == {"low": 1, "medium": 1, "high": 1}
    assert len(stats["userGrowth"]) == 6
    this_month = datetime.now(timezone.utc).strftime("%Y-%m")
    assert stats["userGrowth"][-1] == {"month": this_month, "count": 3}


def test_user_growth_window(db):
    db.add(User(name="old", email="old@example.com", created_at=datetime(2024, 1, 15)))
    db.add(User(name="mid", email="mid@example.com", created_at=datetime(2024, 5, 3)))
    db.add(User(name="new", email="new@example.com", created_at=datetime(2024, 6, 30)))
    db.commit()
    today = datetime(2024, 6, 30, tzinfo=timezone.utc)
    growth = Storage(db).user_growth(6, today=today)
    assert [g["month"] for g in growth] == [
        "2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06",
    ]
    assert [g["count"] for g in growth] == [1, 0, 0, 0, 1, 1]


def test_user_growth_crosses_year(db):
    growth = Storage(db).user_growth(3, today=datetime(2025, 2, 1, tzinfo=timezone.utc))
    assert [g["month"] for g in growth] == ["2024-12", "2025-01", "2025-02"]

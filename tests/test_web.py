"""Tests for the JSON web API."""

import os
import tempfile
from datetime import date, timedelta
from pathlib import Path

import pytest
from starlette.testclient import TestClient

from task_engine.core import pages as pages_mod
from task_engine.core import tasks as tasks_mod
from task_engine.db.engine import init_db
from task_engine.db.models import Duration, ElementRef, LogStatus, Priority, TaskAssignment, TaskPriority
from task_engine.web.app import USER_COOKIE, create_app


@pytest.fixture
def web_env():
    """Set up a temp environment for web API testing."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        env = {"TE_DB_PATH": str(db_path)}
        old_env = {}
        for k, v in env.items():
            old_env[k] = os.environ.get(k)
            os.environ[k] = v

        # Seed data
        db = init_db(db_path)
        pages_mod.create_page(db, "/work", "Work")
        tasks_mod.create_task(
            db, "/work", "Draft report", task_id="draft",
            priorities=[TaskPriority(Priority.LOW)],
            assignments=[TaskAssignment("alice")],
        )
        tasks_mod.create_task(
            db, "/work", "Review report", task_id="review",
            do_befores=[ElementRef("/work", "draft")],
            priorities=[TaskPriority(Priority.CRITICAL)],
            assignments=[TaskAssignment("bob")],
        )
        tasks_mod.create_task(
            db, "/work", "Quarterly review", task_id="quarterly",
            on=date.today() + timedelta(days=30),
            assignments=[TaskAssignment("alice")],
        )
        tasks_mod.create_task(db, "/work", "Archive", task_id="archive")
        tasks_mod.log_entry(db, "/work", "archive", LogStatus.COMPLETED)
        tasks_mod.create_task(db, "/work", "Generated")
        db.close()

        app = create_app()
        client = TestClient(app)
        yield client

        for k, v in old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _ids(resp) -> list[str]:
    return [t["id"] for t in resp.json()["tasks"]]


class TestTasksAPI:
    def test_ready(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "ready"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["bucket"] == "ready"
        assert data["root"] == "/"
        assert _ids(resp) == ["draft", "task-1"]
        draft = data["tasks"][0]
        assert draft["priority"] == "Low"
        assert draft["effective_priority"] == "Critical"
        assert draft["do_afters"] == ["/work#review"]
        assert data["tasks"][1]["do_afters"] == []

    def test_blocked(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "blocked"})
        assert _ids(resp) == ["review"]
        assert resp.json()["tasks"][0]["status"]["category"] == "new-waiting"

    def test_future_date_first(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "future", "date_first": "true"})
        assert _ids(resp) == ["quarterly"]
        assert resp.json()["date_first"] is True

    def test_all_under_root(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "all", "root": "/work"})
        assert set(_ids(resp)) == {"draft", "review", "quarterly", "archive", "task-1"}

    def test_unknown_bucket(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "someday"})
        assert resp.status_code == 400

    def test_unknown_root(self, web_env):
        resp = web_env.get("/api/tasks", params={"root": "/nowhere"})
        assert resp.status_code == 404


class TestUserCookie:
    def test_user_param_filters_and_sets_cookie(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "all", "user": "alice"})
        assert resp.json()["user"] == "alice"
        assert _ids(resp) == ["draft", "quarterly"]
        assert resp.cookies.get(USER_COOKIE) == "alice"

    def test_cookie_remembered(self, web_env):
        web_env.get("/api/users", params={"user": "bob"})
        resp = web_env.get("/api/tasks", params={"bucket": "all"})
        assert resp.json()["user"] == "bob"
        assert _ids(resp) == ["review"]

    def test_empty_param_clears(self, web_env):
        web_env.get("/api/users", params={"user": "bob"})
        web_env.get("/api/users", params={"user": ""})
        resp = web_env.get("/api/users")
        assert resp.json()["current"] is None

    def test_unknown_user_ignored(self, web_env):
        resp = web_env.get("/api/tasks", params={"bucket": "all", "user": "mallory"})
        assert resp.json()["user"] is None
        assert USER_COOKIE not in resp.cookies

    def test_users(self, web_env):
        resp = web_env.get("/api/users")
        assert resp.json() == {"users": ["alice", "bob"], "current": None}


class TestTaskAPI:
    def test_detail(self, web_env):
        resp = web_env.get("/api/task", params={"page": "/work", "id": "draft"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ref"] == "/work#draft"
        assert [t["ref"] for t in data["do_afters"]] == ["/work#review"]
        assert data["do_befores"] == []

    def test_log_in_detail(self, web_env):
        resp = web_env.get("/api/task", params={"page": "/work", "id": "archive"})
        data = resp.json()
        assert data["status"]["completed_schedule"] is True
        assert [e["status"] for e in data["log"]] == ["Completed"]
        assert data["last_completed"] == date.today().isoformat()

    def test_never_completed(self, web_env):
        resp = web_env.get("/api/task", params={"page": "/work", "id": "draft"})
        assert resp.json()["last_completed"] is None

    def test_not_found(self, web_env):
        resp = web_env.get("/api/task", params={"page": "/work", "id": "ghost"})
        assert resp.status_code == 404

    def test_missing_params(self, web_env):
        resp = web_env.get("/api/task", params={"page": "/work"})
        assert resp.status_code == 400


class TestPagesAPI:
    def test_pages(self, web_env):
        resp = web_env.get("/api/pages")
        pages = {p["path"]: p for p in resp.json()}
        assert set(pages) == {"/", "/work"}
        assert pages["/work"]["tasks"] == 5
        assert pages["/work"]["assigned"] is None

    def test_pages_assigned_to_user(self, web_env):
        db = init_db(Path(os.environ["TE_DB_PATH"]))
        pages_mod.create_page(db, "/work/later", "Later", "/work")
        tasks_mod.create_task(
            db, "/work/later", "Someday", task_id="someday",
            assignments=[TaskAssignment("bob", Duration(1, "week"))],
        )
        db.close()
        resp = web_env.get("/api/pages", params={"user": "alice"})
        pages = {p["path"]: p for p in resp.json()}
        assert pages["/work"]["assigned"] is True
        assert pages["/work/later"]["assigned"] is False
        assert resp.cookies.get(USER_COOKIE) == "alice"


class TestDomainErrors:
    def test_broken_dependency_is_422(self, web_env):
        db = init_db(Path(os.environ["TE_DB_PATH"]))
        tasks_mod.create_task(db, "/work", "Broken", task_id="broken", do_befores=[ElementRef("/work", "task-1")])
        db.close()
        resp = web_env.get("/api/tasks", params={"bucket": "ready"})
        assert resp.status_code == 422
        assert "generated id" in resp.json()["error"]

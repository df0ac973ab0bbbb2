# tests/conftest.py

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from gymdesk import settings
from gymdesk.gym_store import conn, init_db, new_id, now_iso


@pytest.fixture(autouse=True)
def db(tmp_path, monkeypatch):
    """Every test gets its own empty SQLite file and no outbound notifications."""
    path = tmp_path / "gymdesk.db"
    monkeypatch.setattr(settings, "DB_PATH", path)
    monkeypatch.setattr(settings, "SEED_DEMO", False)
    monkeypatch.setattr(settings, "NOTIFY_URL", "")
    init_db()
    return path


@pytest.fixture
def test_client():
    from gymdesk.main import app

    with TestClient(app) as client:
        yield client


def day_at(offset_days: int, hour: int = 10) -> datetime:
    base = datetime.now(settings.TZ).replace(hour=hour, minute=0, second=0, microsecond=0)
    return base + timedelta(days=offset_days)


@pytest.fixture
def make_trainer():
    def _make(name="Mike Johnson", trainer_id=None):
        trainer_id = trainer_id or new_id("t")
        c = conn()
        c.execute(
            "INSERT INTO trainers(id,name,specialization,created_at) VALUES (?,?,?,?)",
            (trainer_id, name, "Strength", now_iso())
        )
        c.commit()
        c.close()
        return trainer_id
    return _make


@pytest.fixture
def make_package():
    def _make(session_type="Group Class", session_count=10, price=100.0, package_id=None):
        package_id = package_id or new_id("p")
        c = conn()
        c.execute(
            "INSERT INTO packages(id,name,session_type,session_count,price,package_type,created_at) VALUES (?,?,?,?,?,?,?)",
            (package_id, f"{session_type} x{session_count}", session_type, session_count, price, "session_based", now_iso())
        )
        c.commit()
        c.close()
        return package_id
    return _make


@pytest.fixture
def make_member():
    def _make(name="John Doe", packages=(), remaining=None, membership_status="active"):
        """Create a member holding one member package per package id given."""
        member_id = new_id("m")
        c = conn()
        c.execute(
            "INSERT INTO members(id,name,email,phone,membership_status,created_at) VALUES (?,?,?,?,?,?)",
            (member_id, name, f"{member_id}@example.com", None, membership_status, now_iso())
        )
        for pid in packages:
            pkg = c.execute("SELECT * FROM packages WHERE id = ?", (pid,)).fetchone()
            total = int(pkg["session_count"])
            c.execute(
                "INSERT INTO member_packages(id,member_id,package_id,sessions_total,sessions_remaining,status,price,purchased_at) VALUES (?,?,?,?,?,?,?,?)",
                (
                    new_id("mp"), member_id, pid, total,
                    total if remaining is None else remaining, "active", float(pkg["price"]), now_iso()
                )
            )
        c.commit()
        c.close()
        return member_id
    return _make


@pytest.fixture
def make_session():
    def _make(
        offset_days=1,
        capacity=5,
        booked=0,
        title="Morning Yoga",
        session_type="Group Class",
        trainer_id=None,
        package_id=None,
        deactivated=False,
        members=(),
    ):
        """
        Insert a session `offset_days` from today. `members` become live
        bookings and count towards `booked` on top of the bare counter.
        """
        session_id = new_id("s")
        start = day_at(offset_days)
        end = start + timedelta(hours=1)
        stamp = now_iso()
        c = conn()
        c.execute(
            "INSERT INTO sessions(id,title,session_type,trainer_id,package_id,start_ts,end_ts,location,max_capacity,current_bookings,status,is_manually_deactivated,created_at,updated_at) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                session_id, title, session_type, trainer_id, package_id,
                start.isoformat(), end.isoformat(), "Studio A", capacity, booked + len(members),
                "cancelled" if deactivated else "scheduled", int(deactivated), stamp, stamp
            )
        )
        for member_id in members:
            c.execute(
                "INSERT INTO bookings(id,session_id,member_id,status,created_at) VALUES (?,?,?,?,?)",
                (new_id("b"), session_id, member_id, "confirmed", stamp)
            )
        c.commit()
        c.close()
        return session_id
    return _make

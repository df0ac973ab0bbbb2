import json
import logging
import random
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import settings
from .session_status import (
    SessionSnapshot,
    action_names,
    resolve_status,
    status_config,
)

logger = logging.getLogger(__name__)

TRAINERS_PATH = settings.CONFIG_DIR / "trainers.json"
CATALOG_PATH = settings.CONFIG_DIR / "package_catalog.json"
MEMBERS_PATH = settings.CONFIG_DIR / "members.json"

LIVE_BOOKING_STATUSES = ("confirmed", "attended")

SESSION_SELECT = """
SELECT
  s.*,
  t.name AS trainer_name
FROM sessions s
LEFT JOIN trainers t ON t.id = s.trainer_id
"""


def conn() -> sqlite3.Connection:
    db_path = Path(settings.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    c = sqlite3.connect(db_path, check_same_thread=False)
    c.row_factory = sqlite3.Row
    return c


def init_db() -> None:
    c = conn()
    cur = c.cursor()

    cur.execute("""
    CREATE TABLE IF NOT EXISTS trainers (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      specialization TEXT,
      created_at TEXT NOT NULL
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS members (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      email TEXT NOT NULL,
      phone TEXT,
      membership_status TEXT NOT NULL DEFAULT 'active',
      created_at TEXT NOT NULL
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS packages (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      description TEXT,
      session_type TEXT NOT NULL,
      session_count INTEGER NOT NULL,
      price REAL NOT NULL,
      package_type TEXT NOT NULL DEFAULT 'session_based',
      is_active INTEGER NOT NULL DEFAULT 1,
      created_at TEXT NOT NULL
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS member_packages (
      id TEXT PRIMARY KEY,
      member_id TEXT NOT NULL,
      package_id TEXT NOT NULL,
      sessions_total INTEGER NOT NULL,
      sessions_remaining INTEGER NOT NULL,
      status TEXT NOT NULL DEFAULT 'active',
      price REAL NOT NULL DEFAULT 0,
      purchased_at TEXT NOT NULL
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS sessions (
      id TEXT PRIMARY KEY,
      title TEXT NOT NULL,
      description TEXT,
      session_type TEXT NOT NULL,
      trainer_id TEXT,
      package_id TEXT,
      start_ts TEXT NOT NULL,
      end_ts TEXT NOT NULL,
      location TEXT,
      max_capacity INTEGER NOT NULL DEFAULT 1,
      current_bookings INTEGER NOT NULL DEFAULT 0,
      status TEXT NOT NULL DEFAULT 'scheduled',
      is_manually_deactivated INTEGER NOT NULL DEFAULT 0,
      deactivated_at TEXT,
      reactivated_at TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS bookings (
      id TEXT PRIMARY KEY,
      session_id TEXT NOT NULL,
      member_id TEXT NOT NULL,
      member_package_id TEXT,
      status TEXT NOT NULL DEFAULT 'confirmed',
      notes TEXT,
      created_at TEXT NOT NULL,
      cancelled_at TEXT
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS activities (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      type TEXT NOT NULL,
      message TEXT NOT NULL,
      details TEXT,
      session_id TEXT,
      member_id TEXT,
      status TEXT NOT NULL DEFAULT 'info',
      priority TEXT NOT NULL DEFAULT 'low',
      created_at TEXT NOT NULL
    );
    """)

    cur.execute("CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_ts);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_bookings_session ON bookings(session_id, status);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_bookings_member ON bookings(member_id);")
    # one live booking per member and session
    cur.execute("""
    CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_live
    ON bookings(session_id, member_id) WHERE status IN ('confirmed', 'attended');
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_member_packages_member ON member_packages(member_id);")

    c.commit()
    c.close()


def now_iso() -> str:
    return datetime.now(settings.TZ).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def to_local(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=settings.TZ)
    return ts.astimezone(settings.TZ)


def parse_ts(value: str) -> datetime:
    return to_local(datetime.fromisoformat(value))


def seed(seed: int = 42, days: int = 14) -> None:
    random.seed(seed)
    c = conn()
    cur = c.cursor()
    created = now_iso()

    def _count(table: str) -> int:
        return int(c.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"])

    if _count("trainers") == 0:
        for t in json.loads(TRAINERS_PATH.read_text())["trainers"]:
            cur.execute(
                "INSERT OR IGNORE INTO trainers(id,name,specialization,created_at) VALUES (?,?,?,?)",
                (t["id"], t["name"], t.get("specialization"), created)
            )

    catalog = json.loads(CATALOG_PATH.read_text())
    if _count("packages") == 0:
        for p in catalog["packages"]:
            cur.execute(
                "INSERT OR IGNORE INTO packages(id,name,description,session_type,session_count,price,package_type,created_at) VALUES (?,?,?,?,?,?,?,?)",
                (
                    p["id"], p["name"], p.get("description"), p["session_type"],
                    int(p["session_count"]), float(p["price"]), p["package_type"], created
                )
            )

    if _count("members") == 0:
        prices = {p["id"]: p for p in catalog["packages"]}
        for m in json.loads(MEMBERS_PATH.read_text())["members"]:
            cur.execute(
                "INSERT OR IGNORE INTO members(id,name,email,phone,membership_status,created_at) VALUES (?,?,?,?,?,?)",
                (m["id"], m["name"], m["email"], m.get("phone"), m["membership_status"], created)
            )
            for pid in m["packages"]:
                pkg = prices[pid]
                cur.execute(
                    "INSERT INTO member_packages(id,member_id,package_id,sessions_total,sessions_remaining,status,price,purchased_at) VALUES (?,?,?,?,?,?,?,?)",
                    (
                        f"mp_{m['id']}_{pid}", m["id"], pid,
                        int(pkg["session_count"]), int(pkg["session_count"]), "active",
                        float(pkg["price"]), created
                    )
                )

    if _count("sessions") == 0:
        trainers = c.execute("SELECT id FROM trainers").fetchall()
        templates = catalog["session_templates"]
        slots = [(6, 30), (9, 0), (12, 0), (17, 30), (18, 45)]
        today = datetime.now(settings.TZ).replace(hour=0, minute=0, second=0, microsecond=0)

        # a few days of history so Completed sessions exist
        for d in range(-3, days):
            day = today + timedelta(days=d)
            for hh, mm in random.sample(slots, 4):
                tpl = random.choice(templates)
                start = day.replace(hour=hh, minute=mm)
                end = start + timedelta(minutes=int(tpl["duration_min"]))
                session_id = f"s_{start.strftime('%Y%m%d_%H%M')}_{tpl['session_type'].lower().replace(' ', '_')}"
                cap = random.choice(tpl["capacity"])

                cur.execute(
                    "INSERT OR IGNORE INTO sessions(id,title,session_type,trainer_id,start_ts,end_ts,location,max_capacity,current_bookings,status,created_at,updated_at) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        session_id, tpl["title"], tpl["session_type"], random.choice(trainers)["id"],
                        start.isoformat(), end.isoformat(), tpl["location"], cap, 0, "scheduled",
                        created, created
                    )
                )

                want = random.randint(0, cap)
                candidates = cur.execute("""
                SELECT mp.id AS member_package_id, mp.member_id
                FROM member_packages mp
                JOIN packages p ON p.id = mp.package_id
                WHERE p.session_type = ? AND mp.status = 'active' AND mp.sessions_remaining > 0
                """, (tpl["session_type"],)).fetchall()
                random.shuffle(candidates)

                taken = set()
                for cand in candidates:
                    if len(taken) >= want:
                        break
                    if cand["member_id"] in taken:
                        continue
                    taken.add(cand["member_id"])
                    cur.execute(
                        "INSERT INTO bookings(id,session_id,member_id,member_package_id,status,created_at) VALUES (?,?,?,?,?,?)",
                        (new_id("b"), session_id, cand["member_id"], cand["member_package_id"], "confirmed", created)
                    )
                    cur.execute(
                        "UPDATE member_packages SET sessions_remaining = sessions_remaining - 1 WHERE id = ?",
                        (cand["member_package_id"],)
                    )
                cur.execute("UPDATE sessions SET current_bookings = ? WHERE id = ?", (len(taken), session_id))

        # one cancelled class to show the Inactive state
        victim = cur.execute(
            "SELECT id FROM sessions WHERE start_ts >= ? AND current_bookings = 0 ORDER BY start_ts LIMIT 1",
            ((today + timedelta(days=2)).isoformat(),)
        ).fetchone()
        if victim:
            cur.execute(
                "UPDATE sessions SET is_manually_deactivated = 1, deactivated_at = ?, status = 'cancelled' WHERE id = ?",
                (created, victim["id"])
            )

    c.commit()
    c.close()
    logger.info("demo data ready (seed=%s, days=%s)", seed, days)


def log_activity(
    c: sqlite3.Connection,
    type: str,
    message: str,
    *,
    details: Optional[str] = None,
    session_id: Optional[str] = None,
    member_id: Optional[str] = None,
    status: str = "info",
    priority: str = "low",
) -> None:
    # caller owns the transaction
    c.execute(
        "INSERT INTO activities(type,message,details,session_id,member_id,status,priority,created_at) VALUES (?,?,?,?,?,?,?,?)",
        (type, message, details, session_id, member_id, status, priority, now_iso())
    )
    logger.info("%s: %s", type, message)


def fetch_session(c: sqlite3.Connection, session_id: str) -> Optional[sqlite3.Row]:
    return c.execute(SESSION_SELECT + " WHERE s.id = ?", (session_id,)).fetchone()


def booked_members(c: sqlite3.Connection, session_id: str) -> List[Dict[str, Any]]:
    ph = ",".join(["?"] * len(LIVE_BOOKING_STATUSES))
    rows = c.execute(f"""
    SELECT
      b.id AS booking_id, b.status, b.created_at, b.member_package_id,
      m.id AS member_id, m.name, m.email
    FROM bookings b
    JOIN members m ON m.id = b.member_id
    WHERE b.session_id = ? AND b.status IN ({ph})
    ORDER BY b.created_at ASC
    """, (session_id, *LIVE_BOOKING_STATUSES)).fetchall()
    return [dict(r) for r in rows]


def release_booking(c: sqlite3.Connection, booking_id: str, member_package_id: Optional[str], stamp: str) -> None:
    # cancel the booking and hand the credit back; seat count is the caller's job
    c.execute(
        "UPDATE bookings SET status = 'cancelled', cancelled_at = ? WHERE id = ?",
        (stamp, booking_id)
    )
    if member_package_id:
        c.execute(
            "UPDATE member_packages SET sessions_remaining = MIN(sessions_remaining + 1, sessions_total) WHERE id = ?",
            (member_package_id,)
        )


def snapshot(row: sqlite3.Row, members: List[Dict[str, Any]]) -> SessionSnapshot:
    return SessionSnapshot(
        start=parse_ts(row["start_ts"]),
        end=parse_ts(row["end_ts"]),
        booked=int(row["current_bookings"]),
        total=int(row["max_capacity"]),
        is_manually_deactivated=bool(row["is_manually_deactivated"]),
        booked_members=tuple(m["name"] for m in members),
    )


def session_payload(
    c: sqlite3.Connection,
    row: sqlite3.Row,
    now: Optional[datetime] = None,
    with_members: bool = False,
) -> Dict[str, Any]:
    members = booked_members(c, row["id"])
    status = resolve_status(snapshot(row, members), now=now)

    cap = int(row["max_capacity"])
    booked = int(row["current_bookings"])

    out = {
        "id": row["id"],
        "title": row["title"],
        "description": row["description"],
        "session_type": row["session_type"],
        "trainer_id": row["trainer_id"],
        "trainer_name": row["trainer_name"],
        "package_id": row["package_id"],
        "start_time": row["start_ts"],
        "end_time": row["end_ts"],
        "location": row["location"],
        "capacity": {"booked": booked, "total": cap},
        "remaining": max(cap - booked, 0),
        "percent_full": (booked / cap) if cap else 1.0,
        "availability_color": availability_color(booked, cap),
        "is_manually_deactivated": bool(row["is_manually_deactivated"]),
        "deactivated_at": row["deactivated_at"],
        "reactivated_at": row["reactivated_at"],
        "updated_at": row["updated_at"],
        "stored_status": row["status"],
        "status": status.value,
        "status_config": status_config(status),
        "actions": action_names(status),
    }
    if with_members:
        out["booked_members"] = members
    return out


def sync_stored_status(now: Optional[datetime] = None) -> int:
    """
    Mark stored 'scheduled' sessions whose window has ended as 'completed'.

    This only touches the persisted status column; the derived status shown
    to users is still computed from the raw fields.
    """
    now = now or datetime.now(settings.TZ)
    c = conn()
    rows = c.execute("SELECT id, end_ts FROM sessions WHERE status = 'scheduled'").fetchall()
    done = [r["id"] for r in rows if parse_ts(r["end_ts"]) < now]

    stamp = now.isoformat()
    for sid in done:
        c.execute("UPDATE sessions SET status = 'completed', updated_at = ? WHERE id = ?", (stamp, sid))
    c.commit()
    c.close()

    if done:
        logger.info("marked %d past sessions completed", len(done))
    return len(done)


def availability_color(booked: int, capacity: int) -> str:
    """Seat-counter badge: amber from NEARLY_FULL_RATIO of capacity, red once no seat is left."""
    if capacity <= 0 or booked >= capacity:
        return "red"
    if booked / capacity >= settings.NEARLY_FULL_RATIO:
        return "amber"
    return "green"

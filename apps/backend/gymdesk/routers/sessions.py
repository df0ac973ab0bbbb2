import math
from contextlib import closing
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .. import settings
from ..gym_store import (
    SESSION_SELECT,
    booked_members,
    conn,
    fetch_session,
    log_activity,
    new_id,
    now_iso,
    parse_ts,
    release_booking,
    session_payload,
    sync_stored_status,
    to_local,
)
from ..notify import SESSION_CANCELLED, send_notification
from ..session_status import (
    STATUS_CONFIG,
    SessionStatus,
    can_deactivate,
    can_edit,
    can_mark_full,
    can_reactivate,
    normalize_status,
)

router = APIRouter()

SORT_KEYS = {
    "date": lambda s: datetime.fromisoformat(s["start_time"]),
    "title": lambda s: s["title"].lower(),
    "status": lambda s: STATUS_CONFIG[SessionStatus(s["status"])]["priority"],
    "capacity": lambda s: s["percent_full"],
}


class SessionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    session_type: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    max_capacity: int = Field(1, ge=1)
    trainer_id: Optional[str] = None
    package_id: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class SessionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    session_type: Optional[str] = Field(None, min_length=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    max_capacity: Optional[int] = Field(None, ge=1)
    trainer_id: Optional[str] = None
    package_id: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class DeactivateRequest(BaseModel):
    reason: Optional[str] = None


class ReactivateRequest(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    end_time: Optional[str] = Field(None, description="HH:MM, defaults to the previous duration")
    notes: Optional[str] = None


def _check_refs(c, trainer_id: Optional[str], package_id: Optional[str]) -> None:
    if trainer_id and not c.execute("SELECT 1 FROM trainers WHERE id = ?", (trainer_id,)).fetchone():
        raise HTTPException(status_code=400, detail="unknown trainer")
    if package_id and not c.execute("SELECT 1 FROM packages WHERE id = ?", (package_id,)).fetchone():
        raise HTTPException(status_code=400, detail="unknown package")


def _load(c, session_id: str):
    row = fetch_session(c, session_id)
    if not row:
        raise HTTPException(status_code=404, detail="session not found")
    return row


def _refused(action: str, status: str) -> HTTPException:
    return HTTPException(status_code=409, detail=f"cannot {action} a session that is {status}")


@router.get("/sessions")
def list_sessions(
    status: Optional[str] = Query(None, description="derived status, legacy spellings accepted"),
    session_type: Optional[str] = Query(None),
    trainer_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("date"),
    order: str = Query("asc"),
    page: int = Query(1, ge=1),
):
    wanted = None
    if status and status.lower() != "all":
        wanted = normalize_status(status)
        if wanted is None:
            raise HTTPException(status_code=400, detail=f"unknown status filter: {status}")
    if sort_by not in SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"cannot sort by {sort_by}")
    if order not in ("asc", "desc"):
        raise HTTPException(status_code=400, detail="order must be asc or desc")

    q = SESSION_SELECT + " WHERE 1=1"
    params = []
    if session_type and session_type != "all":
        q += " AND s.session_type = ?"
        params.append(session_type)
    if trainer_id and trainer_id != "all":
        q += " AND s.trainer_id = ?"
        params.append(trainer_id)
    q += " ORDER BY s.start_ts ASC"

    now = datetime.now(settings.TZ)
    with closing(conn()) as c:
        rows = c.execute(q, params).fetchall()
        sessions = [session_payload(c, r, now=now) for r in rows]

    if wanted is not None:
        sessions = [s for s in sessions if s["status"] == wanted.value]
    if search:
        needle = search.strip().lower()
        sessions = [
            s for s in sessions
            if needle in s["title"].lower() or needle in (s["trainer_name"] or "").lower()
        ]

    sessions.sort(key=SORT_KEYS[sort_by], reverse=(order == "desc"))

    total = len(sessions)
    per_page = settings.SESSIONS_PER_PAGE
    start = (page - 1) * per_page

    return {
        "sessions": sessions[start:start + per_page],
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": max(math.ceil(total / per_page), 1),
    }


@router.post("/sessions", status_code=201)
def create_session(req: SessionCreate):
    start = to_local(req.start_time)
    end = to_local(req.end_time)
    if end <= start:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")

    session_id = new_id("s")
    stamp = now_iso()
    with closing(conn()) as c:
        _check_refs(c, req.trainer_id, req.package_id)
        c.execute(
            "INSERT INTO sessions(id,title,description,session_type,trainer_id,package_id,start_ts,end_ts,location,max_capacity,current_bookings,status,is_manually_deactivated,created_at,updated_at) VALUES (?,?,?,?,?,?,?,?,?,?,0,'scheduled',0,?,?)",
            (
                session_id, req.title, req.description, req.session_type, req.trainer_id, req.package_id,
                start.isoformat(), end.isoformat(), req.location, req.max_capacity, stamp, stamp
            )
        )
        log_activity(
            c, "session_created", f'New session "{req.title}" created',
            details=f"{req.session_type} session scheduled for {start.isoformat()}",
            session_id=session_id, status="success", priority="medium",
        )
        c.commit()
        return session_payload(c, fetch_session(c, session_id))


@router.post("/sessions/sync-status")
def sync_status():
    return {"ok": True, "completed": sync_stored_status()}


@router.get("/sessions/{session_id}")
def get_session(session_id: str):
    with closing(conn()) as c:
        return session_payload(c, _load(c, session_id), with_members=True)


@router.patch("/sessions/{session_id}")
def update_session(session_id: str, req: SessionUpdate):
    changes = req.model_dump(exclude_unset=True)
    edited = sorted(changes)

    # NOT NULL columns ignore an explicit null
    for k in ("title", "session_type", "max_capacity"):
        if k in changes and changes[k] is None:
            del changes[k]

    with closing(conn()) as c:
        row = _load(c, session_id)
        current = session_payload(c, row)
        if not can_edit(SessionStatus(current["status"])):
            raise _refused("edit", current["status"])

        _check_refs(c, changes.get("trainer_id"), changes.get("package_id"))

        booked = int(row["current_bookings"])
        if "max_capacity" in changes and changes["max_capacity"] < booked:
            raise HTTPException(
                status_code=400,
                detail=f"max_capacity cannot drop below the {booked} spots already booked",
            )

        new_start = changes.pop("start_time", None)
        new_end = changes.pop("end_time", None)
        start = to_local(new_start) if new_start else parse_ts(row["start_ts"])
        end = to_local(new_end) if new_end else parse_ts(row["end_ts"])
        if end <= start:
            raise HTTPException(status_code=400, detail="end_time must be after start_time")

        changes["start_ts"] = start.isoformat()
        changes["end_ts"] = end.isoformat()
        changes["updated_at"] = now_iso()

        cols = ", ".join(f"{k} = ?" for k in changes)
        c.execute(f"UPDATE sessions SET {cols} WHERE id = ?", (*changes.values(), session_id))
        log_activity(
            c, "session_modified", f'Session "{row["title"]}" updated',
            details=", ".join(edited),
            session_id=session_id, priority="medium",
        )
        c.commit()
        return session_payload(c, fetch_session(c, session_id))


@router.post("/sessions/{session_id}/deactivate")
def deactivate_session(session_id: str, req: Optional[DeactivateRequest] = None):
    reason = req.reason if req else None

    with closing(conn()) as c:
        row = _load(c, session_id)
        current = session_payload(c, row)
        if not can_deactivate(SessionStatus(current["status"])):
            raise _refused("deactivate", current["status"])

        stamp = now_iso()
        affected = booked_members(c, session_id)
        for b in affected:
            release_booking(c, b["booking_id"], b["member_package_id"], stamp)

        c.execute("""
        UPDATE sessions
        SET is_manually_deactivated = 1, deactivated_at = ?, status = 'cancelled',
            current_bookings = 0, updated_at = ?
        WHERE id = ?
        """, (stamp, stamp, session_id))
        log_activity(
            c, "session_cancelled", f'Session "{row["title"]}" cancelled',
            details=f"{len(affected)} members notified" + (f": {reason}" if reason else ""),
            session_id=session_id, status="error", priority="high",
        )
        c.commit()

        out = session_payload(c, fetch_session(c, session_id))

    for b in affected:
        send_notification(SESSION_CANCELLED, {
            "member_id": b["member_id"],
            "member_name": b["name"],
            "member_email": b["email"],
            "session_id": session_id,
            "session_title": row["title"],
            "start_time": row["start_ts"],
            "reason": reason,
        })

    out["notified_members"] = len(affected)
    return out


@router.post("/sessions/{session_id}/reactivate")
def reactivate_session(session_id: str, req: ReactivateRequest):
    with closing(conn()) as c:
        row = _load(c, session_id)
        current = session_payload(c, row)
        if not can_reactivate(SessionStatus(current["status"])):
            raise _refused("reactivate", current["status"])

        try:
            start = datetime.fromisoformat(f"{req.date}T{req.start_time}").replace(tzinfo=settings.TZ)
            if req.end_time:
                end = datetime.fromisoformat(f"{req.date}T{req.end_time}").replace(tzinfo=settings.TZ)
            else:
                old = parse_ts(row["end_ts"]) - parse_ts(row["start_ts"])
                end = start + (old if old > timedelta(0) else timedelta(hours=1))
        except ValueError:
            raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD and times HH:MM")

        if end <= start:
            raise HTTPException(status_code=400, detail="end_time must be after start_time")

        stamp = now_iso()
        c.execute("""
        UPDATE sessions
        SET is_manually_deactivated = 0, reactivated_at = ?, status = 'scheduled',
            start_ts = ?, end_ts = ?, updated_at = ?
        WHERE id = ?
        """, (stamp, start.isoformat(), end.isoformat(), stamp, session_id))
        log_activity(
            c, "session_modified", f'Session "{row["title"]}" reactivated',
            details=f"reactivated for {start.isoformat()}" + (f" ({req.notes})" if req.notes else ""),
            session_id=session_id, priority="medium",
        )
        c.commit()
        return session_payload(c, fetch_session(c, session_id))


@router.post("/sessions/{session_id}/mark-full")
def mark_session_full(session_id: str):
    with closing(conn()) as c:
        row = _load(c, session_id)
        current = session_payload(c, row)
        if not can_mark_full(SessionStatus(current["status"])):
            raise _refused("mark as full", current["status"])

        c.execute(
            "UPDATE sessions SET current_bookings = max_capacity, updated_at = ? WHERE id = ?",
            (now_iso(), session_id)
        )
        log_activity(
            c, "session_status_updated", f'Session "{row["title"]}" marked as Full',
            details=f"all {row['max_capacity']} spots filled",
            session_id=session_id, status="warning", priority="medium",
        )
        c.commit()
        return session_payload(c, fetch_session(c, session_id))

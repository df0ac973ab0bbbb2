import sqlite3
from contextlib import closing
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..gym_store import (
    LIVE_BOOKING_STATUSES,
    conn,
    fetch_session,
    log_activity,
    new_id,
    now_iso,
    release_booking,
    session_payload,
)
from ..notify import BOOKING_CANCELLED, BOOKING_CONFIRMED, send_notification
from ..session_status import SessionStatus, can_book_member, is_read_only

router = APIRouter()

ALREADY_BOOKED = "member already booked for this session"
NO_PACKAGE = "no matching package found for this session type"


class BookingRequest(BaseModel):
    member_id: str
    notes: Optional[str] = None


def matching_packages(c, session_row, member_id: Optional[str] = None):
    """
    Active member packages with credits left that cover this session.

    A session tied to a specific package only accepts that package; otherwise
    any package of the same session type will do. Oldest purchase first.
    """
    q = """
    SELECT
      mp.id AS member_package_id, mp.member_id, mp.sessions_remaining, mp.purchased_at,
      p.id AS package_id, p.name AS package_name,
      m.name AS member_name, m.email AS member_email
    FROM member_packages mp
    JOIN packages p ON p.id = mp.package_id
    JOIN members m ON m.id = mp.member_id
    WHERE mp.status = 'active' AND mp.sessions_remaining > 0
    """
    params = []
    if session_row["package_id"]:
        q += " AND p.id = ?"
        params.append(session_row["package_id"])
    else:
        q += " AND p.session_type = ?"
        params.append(session_row["session_type"])
    if member_id:
        q += " AND mp.member_id = ?"
        params.append(member_id)
    q += " ORDER BY mp.purchased_at ASC, mp.id ASC"
    return c.execute(q, params).fetchall()


def _live_booking(c, session_id: str, member_id: str):
    ph = ",".join("?" * len(LIVE_BOOKING_STATUSES))
    return c.execute(
        f"SELECT id FROM bookings WHERE session_id = ? AND member_id = ? AND status IN ({ph})",
        (session_id, member_id, *LIVE_BOOKING_STATUSES)
    ).fetchone()


@router.get("/sessions/{session_id}/eligible-members")
def eligible_members(session_id: str):
    members = {}
    with closing(conn()) as c:
        row = fetch_session(c, session_id)
        if not row:
            raise HTTPException(status_code=404, detail="session not found")

        for p in matching_packages(c, row):
            if p["member_id"] in members or _live_booking(c, session_id, p["member_id"]):
                continue
            members[p["member_id"]] = {
                "member_id": p["member_id"],
                "name": p["member_name"],
                "email": p["member_email"],
                "member_package_id": p["member_package_id"],
                "package_name": p["package_name"],
                "sessions_remaining": int(p["sessions_remaining"]),
            }
    return {"session_id": session_id, "members": list(members.values())}


@router.post("/sessions/{session_id}/bookings", status_code=201)
def book_member(session_id: str, req: BookingRequest):
    with closing(conn()) as c:
        cur = c.cursor()

        row = fetch_session(c, session_id)
        if not row:
            raise HTTPException(status_code=404, detail="session not found")

        member = cur.execute("SELECT id, name, email FROM members WHERE id = ?", (req.member_id,)).fetchone()
        if not member:
            raise HTTPException(status_code=404, detail="member not found")

        current = session_payload(c, row)
        if not can_book_member(SessionStatus(current["status"])):
            raise HTTPException(status_code=409, detail=f"cannot book a session that is {current['status']}")

        if _live_booking(c, session_id, req.member_id):
            raise HTTPException(status_code=409, detail=ALREADY_BOOKED)

        packages = matching_packages(c, row, member_id=req.member_id)
        if not packages:
            raise HTTPException(status_code=409, detail=NO_PACKAGE)
        pkg = packages[0]

        stamp = now_iso()

        # conditional increment: two bookings racing for the last seat cannot both land
        taken = cur.execute(
            "UPDATE sessions SET current_bookings = current_bookings + 1, updated_at = ? WHERE id = ? AND current_bookings < max_capacity",
            (stamp, session_id)
        ).rowcount
        if not taken:
            c.rollback()
            raise HTTPException(status_code=409, detail="session is fully booked")

        spent = cur.execute(
            "UPDATE member_packages SET sessions_remaining = sessions_remaining - 1 WHERE id = ? AND sessions_remaining > 0",
            (pkg["member_package_id"],)
        ).rowcount
        if not spent:
            c.rollback()
            raise HTTPException(status_code=409, detail=NO_PACKAGE)

        booking_id = new_id("b")
        try:
            cur.execute(
                "INSERT INTO bookings(id,session_id,member_id,member_package_id,status,notes,created_at) VALUES (?,?,?,?,?,?,?)",
                (booking_id, session_id, req.member_id, pkg["member_package_id"], "confirmed", req.notes, stamp)
            )
        except sqlite3.IntegrityError:
            # a concurrent request booked the same member after our duplicate check
            c.rollback()
            raise HTTPException(status_code=409, detail=ALREADY_BOOKED)

        log_activity(
            c, "session_booked", f"Session booked for {member['name']}",
            details=f"{row['title']} booked for {member['name']} using {pkg['package_name']}",
            session_id=session_id, member_id=req.member_id, status="success",
        )
        c.commit()

        out = session_payload(c, fetch_session(c, session_id))

    send_notification(BOOKING_CONFIRMED, {
        "member_id": member["id"],
        "member_name": member["name"],
        "member_email": member["email"],
        "session_id": session_id,
        "session_title": row["title"],
        "session_type": row["session_type"],
        "start_time": row["start_ts"],
        "trainer_name": row["trainer_name"],
        "location": row["location"],
    })

    return {
        "ok": True,
        "booking_id": booking_id,
        "member_package_id": pkg["member_package_id"],
        "sessions_remaining": int(pkg["sessions_remaining"]) - 1,
        "session": out,
    }


@router.post("/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: str):
    with closing(conn()) as c:
        b = c.execute("""
        SELECT b.*, s.title AS session_title, s.start_ts, m.name AS member_name, m.email AS member_email
        FROM bookings b
        JOIN sessions s ON s.id = b.session_id
        JOIN members m ON m.id = b.member_id
        WHERE b.id = ?
        """, (booking_id,)).fetchone()

        if not b:
            raise HTTPException(status_code=404, detail="booking not found")
        if b["status"] == "cancelled":
            raise HTTPException(status_code=409, detail="booking already cancelled")

        # a finished class keeps its roster
        current = session_payload(c, fetch_session(c, b["session_id"]))
        if is_read_only(SessionStatus(current["status"])):
            raise HTTPException(
                status_code=409,
                detail=f"cannot cancel a booking on a session that is {current['status']}",
            )

        stamp = now_iso()
        release_booking(c, booking_id, b["member_package_id"], stamp)
        c.execute(
            "UPDATE sessions SET current_bookings = MAX(current_bookings - 1, 0), updated_at = ? WHERE id = ?",
            (stamp, b["session_id"])
        )
        log_activity(
            c, "booking_cancelled", f"Booking cancelled for {b['member_name']}",
            details=f"{b['session_title']} on {b['start_ts']}",
            session_id=b["session_id"], member_id=b["member_id"], status="warning", priority="medium",
        )
        c.commit()

        out = session_payload(c, fetch_session(c, b["session_id"]))

    send_notification(BOOKING_CANCELLED, {
        "member_id": b["member_id"],
        "member_name": b["member_name"],
        "member_email": b["member_email"],
        "session_id": b["session_id"],
        "session_title": b["session_title"],
        "start_time": b["start_ts"],
    })

    return {"ok": True, "booking_id": booking_id, "session": out}

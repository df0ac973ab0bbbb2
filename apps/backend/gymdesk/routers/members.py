from contextlib import closing
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ..gym_store import conn, log_activity, new_id, now_iso

router = APIRouter()

MEMBERSHIP_STATUSES = ("active", "inactive", "suspended")


class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None
    membership_status: str = "active"


class MemberUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=3)
    phone: Optional[str] = None
    membership_status: Optional[str] = Field(None, pattern=f"^({'|'.join(MEMBERSHIP_STATUSES)})$")


class AssignPackage(BaseModel):
    package_id: str


class RemovePackage(BaseModel):
    reason: Optional[str] = None


def _packages_of(c, member_id: str):
    rows = c.execute("""
    SELECT
      mp.id, mp.package_id, mp.sessions_total, mp.sessions_remaining, mp.status,
      mp.price, mp.purchased_at,
      p.name AS package_name, p.session_type, p.package_type
    FROM member_packages mp
    JOIN packages p ON p.id = mp.package_id
    WHERE mp.member_id = ?
    ORDER BY mp.purchased_at ASC
    """, (member_id,)).fetchall()
    return [dict(r) for r in rows]


def _member(c, member_id: str, cols: str = "*"):
    row = c.execute(f"SELECT {cols} FROM members WHERE id = ?", (member_id,)).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="member not found")
    return row


@router.get("/members")
def list_members(
    status: Optional[str] = Query(None, description="membership status"),
    search: Optional[str] = Query(None),
):
    q = "SELECT * FROM members WHERE 1=1"
    params = []
    if status and status != "all":
        q += " AND membership_status = ?"
        params.append(status)
    if search:
        q += " AND (LOWER(name) LIKE ? OR LOWER(email) LIKE ?)"
        needle = f"%{search.strip().lower()}%"
        params.extend([needle, needle])
    q += " ORDER BY created_at DESC, name ASC"

    with closing(conn()) as c:
        rows = c.execute(q, params).fetchall()
    return {"members": [dict(r) for r in rows]}


@router.post("/members", status_code=201)
def create_member(req: MemberCreate):
    member_id = new_id("m")
    with closing(conn()) as c:
        c.execute(
            "INSERT INTO members(id,name,email,phone,membership_status,created_at) VALUES (?,?,?,?,?,?)",
            (member_id, req.name, req.email, req.phone, req.membership_status, now_iso())
        )
        log_activity(c, "member_created", f"New member {req.name} added", member_id=member_id, status="success")
        c.commit()
        row = _member(c, member_id)
    return {**dict(row), "packages": []}


@router.get("/members/{member_id}")
def get_member(member_id: str):
    with closing(conn()) as c:
        row = _member(c, member_id)
        return {**dict(row), "packages": _packages_of(c, member_id)}


@router.patch("/members/{member_id}")
def update_member(member_id: str, req: MemberUpdate):
    changes = req.model_dump(exclude_unset=True)
    # phone is the only nullable column
    changes = {k: v for k, v in changes.items() if v is not None or k == "phone"}

    with closing(conn()) as c:
        row = _member(c, member_id)
        if changes:
            cols = ", ".join(f"{k} = ?" for k in changes)
            c.execute(f"UPDATE members SET {cols} WHERE id = ?", (*changes.values(), member_id))
            log_activity(
                c, "member_updated", f"Member {changes.get('name', row['name'])} updated",
                details=", ".join(sorted(changes)), member_id=member_id,
            )
            c.commit()
        row = _member(c, member_id)
        return {**dict(row), "packages": _packages_of(c, member_id)}


@router.post("/members/{member_id}/packages", status_code=201)
def assign_package(member_id: str, req: AssignPackage):
    with closing(conn()) as c:
        member = _member(c, member_id, "id, name")

        pkg = c.execute("SELECT * FROM packages WHERE id = ? AND is_active = 1", (req.package_id,)).fetchone()
        if not pkg:
            raise HTTPException(status_code=404, detail="package not found")

        mp_id = new_id("mp")
        count = int(pkg["session_count"])
        c.execute(
            "INSERT INTO member_packages(id,member_id,package_id,sessions_total,sessions_remaining,status,price,purchased_at) VALUES (?,?,?,?,?,?,?,?)",
            (mp_id, member_id, pkg["id"], count, count, "active", float(pkg["price"]), now_iso())
        )
        log_activity(
            c, "package_assigned", f"{pkg['name']} assigned to {member['name']}",
            details=f"{count} sessions", member_id=member_id, status="success", priority="medium",
        )
        c.commit()
        return {**dict(member), "packages": _packages_of(c, member_id)}


@router.post("/members/{member_id}/packages/{member_package_id}/remove")
def remove_package(member_id: str, member_package_id: str, req: Optional[RemovePackage] = None):
    """
    Take a package off a member's account. The row stays, marked 'removed',
    and no longer matches new bookings; existing bookings are untouched.
    """
    reason = req.reason if req else None
    with closing(conn()) as c:
        member = _member(c, member_id, "id, name")
        mp = c.execute("""
        SELECT mp.id, mp.status, p.name AS package_name
        FROM member_packages mp
        JOIN packages p ON p.id = mp.package_id
        WHERE mp.id = ? AND mp.member_id = ?
        """, (member_package_id, member_id)).fetchone()
        if not mp:
            raise HTTPException(status_code=404, detail="member package not found")
        if mp["status"] != "active":
            raise HTTPException(status_code=409, detail=f"package is already {mp['status']}")

        c.execute("UPDATE member_packages SET status = 'removed' WHERE id = ?", (member_package_id,))
        log_activity(
            c, "package_removed", f"{mp['package_name']} removed from {member['name']}",
            details=reason, member_id=member_id, status="warning", priority="medium",
        )
        c.commit()
        return {**dict(member), "packages": _packages_of(c, member_id)}


@router.get("/members/{member_id}/bookings")
def member_bookings(member_id: str):
    with closing(conn()) as c:
        _member(c, member_id, "id")
        rows = c.execute("""
        SELECT
          b.id AS booking_id, b.status, b.notes, b.created_at, b.cancelled_at,
          s.id AS session_id, s.title AS session_title, s.session_type, s.start_ts, s.end_ts,
          t.name AS trainer_name
        FROM bookings b
        JOIN sessions s ON s.id = b.session_id
        LEFT JOIN trainers t ON t.id = s.trainer_id
        WHERE b.member_id = ?
        ORDER BY b.created_at DESC
        """, (member_id,)).fetchall()
    return {"member_id": member_id, "bookings": [dict(r) for r in rows]}

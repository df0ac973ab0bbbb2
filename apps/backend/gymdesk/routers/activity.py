from contextlib import closing
from typing import Optional

from fastapi import APIRouter, Query

from .. import settings
from ..gym_store import conn

router = APIRouter()

@router.get("/activity")
def recent_activity(
    limit: Optional[int] = Query(None, ge=1),
    session_id: Optional[str] = Query(None),
    member_id: Optional[str] = Query(None),
):
    cap = min(limit or settings.ACTIVITY_LIMIT, settings.ACTIVITY_LIMIT)

    q = "SELECT * FROM activities WHERE 1=1"
    params = []
    if session_id:
        q += " AND session_id = ?"
        params.append(session_id)
    if member_id:
        q += " AND member_id = ?"
        params.append(member_id)
    q += " ORDER BY id DESC LIMIT ?"
    params.append(cap)

    with closing(conn()) as c:
        rows = c.execute(q, params).fetchall()
    return {"activities": [dict(r) for r in rows]}

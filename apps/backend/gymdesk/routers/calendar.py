from contextlib import closing
from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Query

from .. import settings
from ..gym_store import SESSION_SELECT, conn, parse_ts, session_payload

router = APIRouter()

@router.get("/calendar")
def get_calendar(
    start: str = Query(..., description="YYYY-MM-DD"),
    end: str = Query(..., description="YYYY-MM-DD"),
    trainer_ids: str | None = Query(None, description="comma-separated, optional"),
    session_types: str | None = Query(None, description="comma-separated, optional"),
    has_spots: bool = Query(False)
):
    try:
        start_dt = datetime.fromisoformat(start).replace(tzinfo=settings.TZ)
        end_dt = datetime.fromisoformat(end).replace(tzinfo=settings.TZ) + timedelta(days=1)
    except ValueError:
        raise HTTPException(status_code=400, detail="start and end must be YYYY-MM-DD")

    trainer_list = [x.strip() for x in trainer_ids.split(",")] if trainer_ids else None
    type_list = [x.strip() for x in session_types.split(",")] if session_types else None

    q = SESSION_SELECT + " WHERE 1=1"
    params = []

    if trainer_list:
        ph = ",".join(["?"] * len(trainer_list))
        q += f" AND s.trainer_id IN ({ph})"
        params.extend(trainer_list)

    if type_list:
        ph = ",".join(["?"] * len(type_list))
        q += f" AND s.session_type IN ({ph})"
        params.extend(type_list)

    q += " ORDER BY s.start_ts ASC"

    now = datetime.now(settings.TZ)
    with closing(conn()) as c:
        rows = c.execute(q, params).fetchall()
        # stored offsets vary across DST, so the window is checked on parsed values
        rows = [r for r in rows if start_dt <= parse_ts(r["start_ts"]) < end_dt]
        sessions = [session_payload(c, r, now=now) for r in rows]

    events = []
    for s in sessions:
        if has_spots and s["remaining"] <= 0:
            continue

        events.append({
            "id": s["id"],
            "title": s["title"],
            "start": s["start_time"],
            "end": s["end_time"],
            "extendedProps": {
                "session_id": s["id"],
                "session_type": s["session_type"],
                "trainer_id": s["trainer_id"],
                "trainer_name": s["trainer_name"],
                "location": s["location"],
                "capacity": s["capacity"]["total"],
                "booked": s["capacity"]["booked"],
                "remaining": s["remaining"],
                "percent_full": s["percent_full"],
                "availability_color": s["availability_color"],
                "status": s["status"],
                "actions": s["actions"],
            }
        })

    return {"events": events}

from contextlib import closing
from datetime import datetime

from fastapi import APIRouter

from .. import settings
from ..gym_store import SESSION_SELECT, conn, parse_ts, session_payload
from ..session_status import SessionStatus

router = APIRouter()


@router.get("/dashboard/stats")
def dashboard_stats():
    now = datetime.now(settings.TZ)
    today = now.date()

    with closing(conn()) as c:
        def _count(q: str, params=()) -> int:
            return int(c.execute(q, params).fetchone()["n"])

        total_members = _count("SELECT COUNT(*) AS n FROM members")
        active_members = _count("SELECT COUNT(*) AS n FROM members WHERE membership_status = 'active'")

        sessions = [session_payload(c, r, now=now) for r in c.execute(SESSION_SELECT).fetchall()]
        bookings = c.execute("SELECT created_at FROM bookings WHERE status != 'cancelled'").fetchall()
        sales = c.execute("SELECT price, purchased_at FROM member_packages").fetchall()

    by_status = {s.value: 0 for s in SessionStatus}
    for s in sessions:
        by_status[s["status"]] += 1

    today_bookings = sum(1 for b in bookings if parse_ts(b["created_at"]).date() == today)

    revenue_total = 0.0
    revenue_month = 0.0
    for r in sales:
        price = float(r["price"])
        revenue_total += price
        bought = parse_ts(r["purchased_at"])
        if (bought.year, bought.month) == (today.year, today.month):
            revenue_month += price

    return {
        "total_members": total_members,
        "active_members": active_members,
        "total_sessions": len(sessions),
        "today_bookings": today_bookings,
        "sessions_by_status": by_status,
        "completed_sessions": by_status[SessionStatus.COMPLETED.value],
        "revenue_total": round(revenue_total, 2),
        "revenue_this_month": round(revenue_month, 2),
    }

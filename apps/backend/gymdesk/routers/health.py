from contextlib import closing

from fastapi import APIRouter

from ..gym_store import conn

router = APIRouter()

@router.get("/health")
def health():
    with closing(conn()) as c:
        c.execute("SELECT 1").fetchone()
    return {"ok": True}

from contextlib import closing
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..gym_store import conn, log_activity, new_id, now_iso

router = APIRouter()

PACKAGE_TYPES = ("monthly", "quarterly", "yearly", "session_based")


class PackageCreate(BaseModel):
    name: str = Field(..., min_length=1)
    session_type: str = Field(..., min_length=1)
    session_count: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    package_type: str = Field("session_based", pattern=f"^({'|'.join(PACKAGE_TYPES)})$")
    description: Optional[str] = None


@router.get("/packages")
def list_packages():
    with closing(conn()) as c:
        rows = c.execute("SELECT * FROM packages WHERE is_active = 1 ORDER BY price ASC").fetchall()
    return {"packages": [{**dict(r), "is_active": bool(r["is_active"])} for r in rows]}


@router.post("/packages", status_code=201)
def create_package(req: PackageCreate):
    package_id = new_id("p")
    with closing(conn()) as c:
        c.execute(
            "INSERT INTO packages(id,name,description,session_type,session_count,price,package_type,is_active,created_at) VALUES (?,?,?,?,?,?,?,1,?)",
            (
                package_id, req.name, req.description, req.session_type,
                req.session_count, req.price, req.package_type, now_iso()
            )
        )
        log_activity(c, "package_created", f'Package "{req.name}" created', status="success")
        c.commit()
        row = c.execute("SELECT * FROM packages WHERE id = ?", (package_id,)).fetchone()
    return {**dict(row), "is_active": True}

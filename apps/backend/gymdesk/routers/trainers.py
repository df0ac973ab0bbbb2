from contextlib import closing
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..gym_store import conn, log_activity, new_id, now_iso

router = APIRouter()


class TrainerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    specialization: Optional[str] = None


@router.get("/trainers")
def list_trainers():
    with closing(conn()) as c:
        rows = c.execute("SELECT * FROM trainers ORDER BY name ASC").fetchall()
    return {"trainers": [dict(r) for r in rows]}


@router.post("/trainers", status_code=201)
def create_trainer(req: TrainerCreate):
    trainer_id = new_id("t")
    with closing(conn()) as c:
        c.execute(
            "INSERT INTO trainers(id,name,specialization,created_at) VALUES (?,?,?,?)",
            (trainer_id, req.name, req.specialization, now_iso())
        )
        log_activity(c, "trainer_created", f"Trainer {req.name} added", status="success")
        c.commit()
        row = c.execute("SELECT * FROM trainers WHERE id = ?", (trainer_id,)).fetchone()
    return dict(row)

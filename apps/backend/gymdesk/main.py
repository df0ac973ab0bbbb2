import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import settings
from .gym_store import init_db, seed, sync_stored_status
from .routers import health, sessions, bookings, calendar, members, packages, trainers, dashboard, activity

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Gymdesk API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def _startup():
    init_db()
    if settings.SEED_DEMO:
        seed(seed=settings.SEED, days=settings.SEED_DAYS)
    sync_stored_status()

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(sessions.router, prefix="/api/v1", tags=["sessions"])
app.include_router(bookings.router, prefix="/api/v1", tags=["bookings"])
app.include_router(calendar.router, prefix="/api/v1", tags=["calendar"])
app.include_router(members.router, prefix="/api/v1", tags=["members"])
app.include_router(packages.router, prefix="/api/v1", tags=["packages"])
app.include_router(trainers.router, prefix="/api/v1", tags=["trainers"])
app.include_router(dashboard.router, prefix="/api/v1", tags=["dashboard"])
app.include_router(activity.router, prefix="/api/v1", tags=["activity"])

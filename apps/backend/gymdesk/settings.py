import os
from pathlib import Path
from zoneinfo import ZoneInfo

BACKEND_DIR = Path(__file__).resolve().parents[1]         # .../apps/backend
CONFIG_DIR = BACKEND_DIR.parents[1] / "configs"           # .../configs

DB_PATH = Path(os.getenv("GYMDESK_DB_PATH", str(BACKEND_DIR / "data" / "gymdesk.db")))
TZ = ZoneInfo(os.getenv("GYMDESK_TZ", "America/New_York"))

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("GYMDESK_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

SEED_DEMO = os.getenv("GYMDESK_SEED_DEMO", "1") not in ("0", "false", "no", "")
SEED = int(os.getenv("GYMDESK_SEED", "42"))
SEED_DAYS = int(os.getenv("GYMDESK_SEED_DAYS", "14"))

SESSIONS_PER_PAGE = int(os.getenv("GYMDESK_SESSIONS_PER_PAGE", "20"))
ACTIVITY_LIMIT = int(os.getenv("GYMDESK_ACTIVITY_LIMIT", "50"))
NEARLY_FULL_RATIO = float(os.getenv("GYMDESK_NEARLY_FULL_RATIO", "0.8"))   # amber badge from here

NOTIFY_URL = os.getenv("GYMDESK_NOTIFY_URL", "").rstrip("/")
NOTIFY_TIMEOUT_S = float(os.getenv("GYMDESK_NOTIFY_TIMEOUT_S", "10"))

LOG_LEVEL = os.getenv("GYMDESK_LOG_LEVEL", "INFO").upper()

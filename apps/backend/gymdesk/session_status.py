"""
Derived session status and the actions each status allows.

The status is never read from storage: it is recomputed from the session's
window, capacity counters, manual-deactivation flag and booked members every
time a session is shown or mutated.
"""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from . import settings


class SessionStatus(str, Enum):
    INACTIVE = "Inactive"
    COMPLETED = "Completed"
    FULL = "Full"
    AVAILABLE = "Available"


class Action(str, Enum):
    VIEW_DETAILS = "view-details"
    EDIT_DETAILS = "edit-details"
    DEACTIVATE = "deactivate"
    REACTIVATE = "reactivate"
    MARK_FULL = "mark-full"
    BOOK_MEMBER = "book-member"


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    booked: int = 0
    total: int = 0
    is_manually_deactivated: bool = False
    booked_members: Tuple[str, ...] = ()

    @property
    def session_date(self) -> date:
        return local_date(self.start)


def local_date(ts: datetime) -> date:
    # naive timestamps are taken as already local
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(settings.TZ).date()


def resolve_status(session: SessionSnapshot, now: Optional[datetime] = None) -> SessionStatus:
    today = local_date(now or datetime.now(settings.TZ))
    session_date = session.session_date

    if session.is_manually_deactivated:
        return SessionStatus.INACTIVE

    # past sessions without anyone booked fall through to Available
    if session_date < today and len(session.booked_members) > 0:
        return SessionStatus.COMPLETED

    if session_date >= today and session.booked >= session.total:
        return SessionStatus.FULL

    return SessionStatus.AVAILABLE


PERMITTED_ACTIONS: Dict[SessionStatus, FrozenSet[Action]] = {
    SessionStatus.INACTIVE: frozenset({Action.VIEW_DETAILS, Action.REACTIVATE}),
    SessionStatus.COMPLETED: frozenset({Action.VIEW_DETAILS}),
    SessionStatus.AVAILABLE: frozenset({
        Action.VIEW_DETAILS,
        Action.EDIT_DETAILS,
        Action.DEACTIVATE,
        Action.MARK_FULL,
        Action.BOOK_MEMBER,
    }),
    SessionStatus.FULL: frozenset({Action.VIEW_DETAILS, Action.EDIT_DETAILS}),
}

# display order for menus
_ACTION_ORDER = list(Action)


def permitted_actions(status: SessionStatus) -> FrozenSet[Action]:
    return PERMITTED_ACTIONS[status]


def action_names(status: SessionStatus) -> List[str]:
    allowed = permitted_actions(status)
    return [a.value for a in _ACTION_ORDER if a in allowed]


def can_deactivate(status: SessionStatus) -> bool:
    return Action.DEACTIVATE in permitted_actions(status)


def can_reactivate(status: SessionStatus) -> bool:
    return Action.REACTIVATE in permitted_actions(status)


def can_edit(status: SessionStatus) -> bool:
    return Action.EDIT_DETAILS in permitted_actions(status)


def can_book_member(status: SessionStatus) -> bool:
    return Action.BOOK_MEMBER in permitted_actions(status)


def can_mark_full(status: SessionStatus) -> bool:
    return Action.MARK_FULL in permitted_actions(status)


def is_read_only(status: SessionStatus) -> bool:
    return permitted_actions(status) == {Action.VIEW_DETAILS}


# badge color and sort priority (higher wins)
STATUS_CONFIG: Dict[SessionStatus, Dict[str, Any]] = {
    SessionStatus.INACTIVE: {"label": "Inactive", "color": "gray", "priority": 4},
    SessionStatus.COMPLETED: {"label": "Completed", "color": "blue", "priority": 3},
    SessionStatus.FULL: {"label": "Full", "color": "orange", "priority": 2},
    SessionStatus.AVAILABLE: {"label": "Available", "color": "green", "priority": 1},
}


def status_config(status: SessionStatus) -> Dict[str, Any]:
    return {"value": status.value, **STATUS_CONFIG[status]}


_LEGACY_STATUS = {
    "inactive": SessionStatus.INACTIVE,
    "disabled": SessionStatus.INACTIVE,
    "cancelled": SessionStatus.INACTIVE,
    "suspended": SessionStatus.INACTIVE,
    "off": SessionStatus.INACTIVE,
    "open": SessionStatus.AVAILABLE,
    "available": SessionStatus.AVAILABLE,
    "scheduled": SessionStatus.AVAILABLE,
    "full": SessionStatus.FULL,
    "booked": SessionStatus.FULL,
    "completed": SessionStatus.COMPLETED,
    "finished": SessionStatus.COMPLETED,
    "done": SessionStatus.COMPLETED,
}


def normalize_status(value: Optional[str]) -> Optional[SessionStatus]:
    """
    Map a free-form status string (filter values, legacy labels) to a
    SessionStatus. Empty input gives None; unknown spellings give None too.
    """
    if not value:
        return None
    return _LEGACY_STATUS.get(value.strip().lower())

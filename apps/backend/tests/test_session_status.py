from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from gymdesk import settings
from gymdesk.session_status import (
    Action,
    SessionSnapshot,
    SessionStatus,
    action_names,
    can_book_member,
    can_deactivate,
    can_edit,
    can_mark_full,
    can_reactivate,
    is_read_only,
    normalize_status,
    permitted_actions,
    resolve_status,
    status_config,
)

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=settings.TZ)


def snap(offset_days=1, booked=0, total=10, deactivated=False, members=()):
    start = NOW.replace(hour=18, minute=0) + timedelta(days=offset_days)
    return SessionSnapshot(
        start=start,
        end=start + timedelta(hours=1),
        booked=booked,
        total=total,
        is_manually_deactivated=deactivated,
        booked_members=members,
    )


@pytest.mark.parametrize("offset_days", [-5, -1, 0, 1, 30])
@pytest.mark.parametrize("booked,total", [(0, 10), (10, 10), (12, 10)])
def test_deactivated_always_inactive(offset_days, booked, total):
    s = snap(offset_days, booked=booked, total=total, deactivated=True, members=("Ann",))
    assert resolve_status(s, now=NOW) is SessionStatus.INACTIVE


@pytest.mark.parametrize("booked,total", [(1, 10), (10, 10), (0, 0)])
def test_past_with_members_is_completed(booked, total):
    s = snap(-1, booked=booked, total=total, members=("Ann",))
    assert resolve_status(s, now=NOW) is SessionStatus.COMPLETED


@pytest.mark.parametrize("offset_days", [0, 1, 14])
def test_upcoming_at_capacity_is_full(offset_days):
    assert resolve_status(snap(offset_days, booked=10, total=10), now=NOW) is SessionStatus.FULL
    assert resolve_status(snap(offset_days, booked=11, total=10), now=NOW) is SessionStatus.FULL


@pytest.mark.parametrize("offset_days", [0, 1, 14])
def test_upcoming_with_room_is_available(offset_days):
    s = snap(offset_days, booked=3, total=10, members=("Ann", "Bo", "Cy"))
    assert resolve_status(s, now=NOW) is SessionStatus.AVAILABLE


def test_today_earlier_hour_is_still_today():
    start = NOW.replace(hour=6)
    s = SessionSnapshot(start=start, end=start + timedelta(hours=1), booked=1, total=5, booked_members=("Ann",))
    assert resolve_status(s, now=NOW) is SessionStatus.AVAILABLE


def test_past_session_without_bookings_stays_available():
    # yesterday, nobody booked: not Completed, shown as Available
    s = snap(-1, booked=0, total=10)
    status = resolve_status(s, now=NOW)
    assert status is SessionStatus.AVAILABLE
    assert Action.BOOK_MEMBER in permitted_actions(status)


def test_tomorrow_fully_booked_is_full_and_not_bookable():
    s = snap(1, booked=5, total=5)
    status = resolve_status(s, now=NOW)
    assert status is SessionStatus.FULL
    assert Action.BOOK_MEMBER not in permitted_actions(status)


def test_resolve_is_idempotent():
    s = snap(0, booked=4, total=4)
    assert resolve_status(s, now=NOW) == resolve_status(s, now=NOW)


def test_date_uses_gym_time_zone():
    # 02:00 UTC on the 19th is still the 18th in New York
    start = datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc)
    s = SessionSnapshot(start=start, end=start + timedelta(hours=1), booked=1, total=5, booked_members=("Ann",))
    assert s.session_date.isoformat() == "2026-10-18"
    assert resolve_status(s, now=NOW) is SessionStatus.COMPLETED


def test_naive_timestamps_are_local():
    start = datetime(2026, 10, 20, 8, 0)
    s = SessionSnapshot(start=start, end=start + timedelta(hours=1), booked=2, total=2)
    assert resolve_status(s, now=NOW) is SessionStatus.FULL


def test_snapshot_is_frozen():
    s = snap()
    with pytest.raises(ValidationError):
        s.booked = 3


def test_action_table():
    assert permitted_actions(SessionStatus.INACTIVE) == {Action.VIEW_DETAILS, Action.REACTIVATE}
    assert permitted_actions(SessionStatus.COMPLETED) == {Action.VIEW_DETAILS}
    assert permitted_actions(SessionStatus.AVAILABLE) == {
        Action.VIEW_DETAILS, Action.EDIT_DETAILS, Action.DEACTIVATE, Action.MARK_FULL, Action.BOOK_MEMBER,
    }
    assert permitted_actions(SessionStatus.FULL) == {Action.VIEW_DETAILS, Action.EDIT_DETAILS}


def test_opposing_actions_are_exclusive():
    inactive = permitted_actions(SessionStatus.INACTIVE)
    available = permitted_actions(SessionStatus.AVAILABLE)
    assert Action.REACTIVATE in inactive and Action.DEACTIVATE not in inactive
    assert Action.DEACTIVATE in available and Action.REACTIVATE not in available


@pytest.mark.parametrize("status", list(SessionStatus))
def test_predicates_follow_table(status):
    allowed = permitted_actions(status)
    assert can_deactivate(status) == (Action.DEACTIVATE in allowed)
    assert can_reactivate(status) == (Action.REACTIVATE in allowed)
    assert can_edit(status) == (Action.EDIT_DETAILS in allowed)
    assert can_book_member(status) == (Action.BOOK_MEMBER in allowed)
    assert can_mark_full(status) == (Action.MARK_FULL in allowed)


def test_only_completed_is_read_only():
    assert [s for s in SessionStatus if is_read_only(s)] == [SessionStatus.COMPLETED]


def test_action_names_keep_menu_order():
    assert action_names(SessionStatus.AVAILABLE) == [
        "view-details", "edit-details", "deactivate", "mark-full", "book-member",
    ]
    assert action_names(SessionStatus.INACTIVE) == ["view-details", "reactivate"]


def test_status_config_priorities():
    priorities = [status_config(s)["priority"] for s in (
        SessionStatus.INACTIVE, SessionStatus.COMPLETED, SessionStatus.FULL, SessionStatus.AVAILABLE,
    )]
    assert priorities == [4, 3, 2, 1]
    assert status_config(SessionStatus.FULL) == {"value": "Full", "label": "Full", "color": "orange", "priority": 2}


@pytest.mark.parametrize("raw,expected", [
    ("Available", SessionStatus.AVAILABLE),
    (" open ", SessionStatus.AVAILABLE),
    ("cancelled", SessionStatus.INACTIVE),
    ("BOOKED", SessionStatus.FULL),
    ("done", SessionStatus.COMPLETED),
    ("", None),
    (None, None),
    ("bogus", None),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected

from datetime import date, datetime

import pytest

from backend.services.window import (
    countdown,
    is_open,
    last_closed_date,
    normalize_clock,
    window_bounds,
    window_closed_for,
    window_date,
)

NIGHT = {"time_start": "22:00:00", "time_end": "02:00:00", "is_paused": False}
MORNING = {"time_start": "06:00:00", "time_end": "09:00:00", "is_paused": False}


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2024, 1, 1, 23, 30), True),
        (datetime(2024, 1, 1, 1, 0), True),
        (datetime(2024, 1, 1, 10, 0), False),
        (datetime(2024, 1, 1, 22, 0), True),
        (datetime(2024, 1, 1, 2, 0), False),
    ],
)
def test_wraparound_window(moment, expected):
    assert is_open(NIGHT, moment) is expected


def test_end_is_exclusive_for_daytime_window():
    assert is_open(MORNING, datetime(2024, 1, 1, 6, 0)) is True
    assert is_open(MORNING, datetime(2024, 1, 1, 8, 59, 59)) is True
    assert is_open(MORNING, datetime(2024, 1, 1, 9, 0)) is False


def test_paused_room_is_never_open():
    room = {**MORNING, "is_paused": True}
    assert is_open(room, datetime(2024, 1, 1, 7, 0)) is False


def test_equal_or_malformed_bounds_are_always_closed():
    same = {"time_start": "08:00:00", "time_end": "08:00:00"}
    broken = {"time_start": "25:00", "time_end": "09:00"}
    for hour in (0, 8, 12, 23):
        assert is_open(same, datetime(2024, 1, 1, hour, 0)) is False
        assert is_open(broken, datetime(2024, 1, 1, hour, 0)) is False


def test_window_date_tail_of_wrapping_window_counts_for_previous_day():
    assert window_date(NIGHT, datetime(2024, 1, 2, 1, 0)) == date(2024, 1, 1)
    assert window_date(NIGHT, datetime(2024, 1, 1, 23, 30)) == date(2024, 1, 1)
    assert window_date(MORNING, datetime(2024, 1, 2, 1, 0)) == date(2024, 1, 2)


def test_window_bounds_and_closed_for():
    assert window_bounds(NIGHT, date(2024, 1, 1)) == (
        datetime(2024, 1, 1, 22, 0),
        datetime(2024, 1, 2, 2, 0),
    )
    assert window_closed_for(NIGHT, date(2024, 1, 1), datetime(2024, 1, 2, 1, 59)) is False
    assert window_closed_for(NIGHT, date(2024, 1, 1), datetime(2024, 1, 2, 2, 0)) is True
    assert window_closed_for({"time_start": "x", "time_end": "y"}, date(2024, 1, 1), datetime(2030, 1, 1)) is False


def test_last_closed_date():
    assert last_closed_date(MORNING, datetime(2024, 1, 2, 1, 0)) == date(2024, 1, 1)
    assert last_closed_date(MORNING, datetime(2024, 1, 2, 7, 0)) == date(2024, 1, 1)
    assert last_closed_date(MORNING, datetime(2024, 1, 2, 9, 0)) == date(2024, 1, 2)
    assert last_closed_date(NIGHT, datetime(2024, 1, 2, 1, 0)) == date(2023, 12, 31)
    assert last_closed_date(NIGHT, datetime(2024, 1, 2, 10, 0)) == date(2024, 1, 1)
    assert last_closed_date({"time_start": "x", "time_end": "y"}, datetime(2024, 1, 2)) is None


@pytest.mark.parametrize(
    "moment, seconds, urgency",
    [
        (datetime(2024, 1, 1, 8, 56), 240, "critical"),
        (datetime(2024, 1, 1, 8, 50), 600, "high"),
        (datetime(2024, 1, 1, 8, 40), 1200, "medium"),
        (datetime(2024, 1, 1, 7, 0), 7200, "low"),
    ],
)
def test_countdown_while_open(moment, seconds, urgency):
    result = countdown(MORNING, moment)
    assert result["is_open"] is True
    assert result["total_seconds"] == seconds
    assert result["urgency"] == urgency
    assert result["label"] == "Closes in"


def test_countdown_while_closed_points_at_next_opening():
    result = countdown(MORNING, datetime(2024, 1, 1, 10, 0))
    assert result == {"is_open": False, "total_seconds": 72000, "urgency": "locked", "label": "Opens in"}


def test_countdown_in_wrapping_tail_counts_to_close():
    result = countdown(NIGHT, datetime(2024, 1, 2, 1, 30))
    assert result["is_open"] is True
    assert result["total_seconds"] == 1800


def test_countdown_paused_and_unscheduled():
    assert countdown({**MORNING, "is_paused": True}, datetime(2024, 1, 1, 7, 0))["label"] == "Paused"
    assert countdown({"time_start": None, "time_end": None}, datetime(2024, 1, 1, 7, 0))["urgency"] == "none"


def test_normalize_clock():
    assert normalize_clock("7:05") == "07:05:00"
    assert normalize_clock("22:00:30") == "22:00:30"
    with pytest.raises(ValueError):
        normalize_clock("seven")

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, StoreUnavailableError
from models import AppSetting, PaydayFrequency, ResetFrequency, Tracker
from periods import PaydaySettings, Period
from recurrence import (
    PeriodEngine,
    TrackerWindow,
    advance_window,
    initial_window,
    period_bounds_for_offset,
    settle_window,
)

MONTHLY_PAYDAY = PaydaySettings(date(2025, 3, 1), PaydayFrequency.monthly, 1)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _weekly(start: date, end: date) -> TrackerWindow:
    return TrackerWindow(ResetFrequency.weekly, 1, start, end)


def test_initial_window_for_sunday_weekly_tracker():
    window = initial_window(ResetFrequency.weekly, 1, date(2025, 2, 9))
    assert window.last_reset_date == date(2025, 2, 3)
    assert window.next_reset_date == date(2025, 2, 10)
    assert window.next_reset_date - window.last_reset_date == date(2025, 2, 10) - date(2025, 2, 3)


def test_initial_payday_window_needs_payday_settings():
    with pytest.raises(ValueError):
        initial_window(ResetFrequency.payday, None, date(2025, 2, 9))
    window = initial_window(ResetFrequency.payday, None, date(2025, 2, 9), MONTHLY_PAYDAY)
    assert window.period == Period(date(2025, 2, 1), date(2025, 3, 1))


def test_advance_window_is_noop_before_next_reset():
    window = _weekly(date(2025, 2, 3), date(2025, 2, 10))
    assert advance_window(window, date(2025, 2, 9)) is window


def test_advance_window_moves_one_period():
    window = _weekly(date(2025, 2, 3), date(2025, 2, 10))
    advanced = advance_window(window, date(2025, 2, 20))
    assert advanced.period == Period(date(2025, 2, 10), date(2025, 2, 17))


def test_settle_window_catches_up_several_periods():
    window = _weekly(date(2025, 1, 6), date(2025, 1, 13))
    settled = settle_window(window, date(2025, 2, 9))
    assert settled.period == Period(date(2025, 2, 3), date(2025, 2, 10))
    assert settled.is_current(date(2025, 2, 9))


def test_payday_window_rolls_to_following_payday():
    window = TrackerWindow(ResetFrequency.payday, None, date(2025, 2, 1), date(2025, 3, 1))
    advanced = advance_window(window, date(2025, 3, 5), MONTHLY_PAYDAY)
    assert advanced.period == Period(date(2025, 3, 1), date(2025, 4, 1))


def test_payday_window_waits_without_payday_settings():
    window = TrackerWindow(ResetFrequency.payday, None, date(2025, 2, 1), date(2025, 3, 1))
    assert advance_window(window, date(2025, 3, 5), None) is window


def test_offset_lookup_walks_back_contiguously():
    window = _weekly(date(2025, 2, 3), date(2025, 2, 10))
    assert period_bounds_for_offset(window, 0) == window.period
    assert period_bounds_for_offset(window, -1) == Period(date(2025, 1, 27), date(2025, 2, 3))

    periods = [period_bounds_for_offset(window, -k) for k in range(6)]
    for newer, older in zip(periods, periods[1:]):
        assert older.end == newer.start
        assert older.start < older.end


def test_offset_lookup_rejects_future_periods():
    window = _weekly(date(2025, 2, 3), date(2025, 2, 10))
    assert period_bounds_for_offset(window, 1) is None


def test_monthly_offset_lookup():
    window = TrackerWindow(ResetFrequency.monthly, 15, date(2025, 1, 15), date(2025, 2, 15))
    assert period_bounds_for_offset(window, -2) == Period(date(2024, 11, 15), date(2024, 12, 15))


def test_payday_offset_lookup_uses_schedule():
    window = TrackerWindow(ResetFrequency.payday, None, date(2025, 2, 1), date(2025, 3, 1))
    assert period_bounds_for_offset(window, -1, MONTHLY_PAYDAY) == Period(
        date(2025, 1, 1), date(2025, 2, 1)
    )
    assert period_bounds_for_offset(window, -1, None) is None


def test_recalculate_trackers_rolls_stale_windows_forward():
    session = make_session()
    tracker = Tracker(
        name="Groceries",
        budget_cents=20000,
        reset_frequency=ResetFrequency.weekly,
        reset_day=1,
        start_date=date(2025, 1, 6),
        last_reset_date=date(2025, 1, 6),
        next_reset_date=date(2025, 1, 13),
        is_active=True,
    )
    current = Tracker(
        name="Coffee",
        budget_cents=3000,
        reset_frequency=ResetFrequency.weekly,
        reset_day=1,
        start_date=date(2025, 2, 3),
        last_reset_date=date(2025, 2, 3),
        next_reset_date=date(2025, 2, 10),
        is_active=True,
    )
    session.add_all([tracker, current])
    session.commit()

    count = PeriodEngine(session).recalculate_trackers(date(2025, 2, 9))

    assert count == 1
    session.refresh(tracker)
    assert tracker.last_reset_date == date(2025, 2, 3)
    assert tracker.next_reset_date == date(2025, 2, 10)
    assert PeriodEngine(session).recalculate_trackers(date(2025, 2, 9)) == 0


def test_recalculate_rolls_payday_trackers_after_payday_advances():
    session = make_session()
    session.add_all(
        [
            AppSetting(key="next_payday", value="2025-03-01"),
            AppSetting(key="payday_frequency", value="MONTHLY"),
            AppSetting(key="payday_day", value="1"),
            Tracker(
                name="Pay cycle",
                budget_cents=100000,
                reset_frequency=ResetFrequency.payday,
                start_date=date(2025, 2, 1),
                last_reset_date=date(2025, 2, 1),
                next_reset_date=date(2025, 3, 1),
                is_active=True,
            ),
        ]
    )
    session.commit()

    engine = PeriodEngine(session)
    payday = engine.advance_payday_if_needed(date(2025, 3, 2))
    assert payday.next_payday == date(2025, 4, 1)
    assert session.get(AppSetting, "next_payday").value == "2025-04-01"

    assert engine.recalculate_trackers(date(2025, 3, 2)) == 1
    tracker = session.query(Tracker).one()
    assert tracker.last_reset_date == date(2025, 3, 1)
    assert tracker.next_reset_date == date(2025, 4, 1)


def test_period_engine_needs_a_store():
    with pytest.raises(StoreUnavailableError):
        PeriodEngine(None)

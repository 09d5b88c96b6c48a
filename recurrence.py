import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from database import require_session
from models import ResetFrequency, Tracker
from periods import (
    PaydaySettings,
    Period,
    last_boundary,
    next_boundary,
    previous_boundary,
)

logger = logging.getLogger(__name__)

MAX_CATCH_UP_STEPS = 1000


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class TrackerWindow:
    frequency: ResetFrequency
    reset_day: Optional[int]
    last_reset_date: date
    next_reset_date: date

    @classmethod
    def of(cls, tracker: Tracker) -> "TrackerWindow":
        return cls(
            frequency=tracker.reset_frequency,
            reset_day=tracker.reset_day,
            last_reset_date=tracker.last_reset_date,
            next_reset_date=tracker.next_reset_date,
        )

    @property
    def period(self) -> Period:
        return Period(self.last_reset_date, self.next_reset_date)

    def is_current(self, today: date) -> bool:
        return self.last_reset_date <= today < self.next_reset_date


def initial_window(
    frequency: ResetFrequency,
    reset_day: Optional[int],
    today: date,
    payday: Optional[PaydaySettings] = None,
) -> TrackerWindow:
    """Window for a new tracker covering the whole in-progress period."""
    if frequency == ResetFrequency.payday:
        if payday is None or not payday.configured:
            raise ValueError("Payday trackers need the payday settings configured")
        payday = payday.advanced(today)
    start = last_boundary(frequency, reset_day, today, payday)
    end = next_boundary(frequency, reset_day, start, payday)
    return TrackerWindow(frequency, reset_day, start, end)


def advance_window(
    window: TrackerWindow, today: date, payday: Optional[PaydaySettings] = None
) -> TrackerWindow:
    """One rollover step; unchanged while `today` is before the next reset."""
    if today < window.next_reset_date:
        return window
    if window.frequency == ResetFrequency.payday:
        if payday is None or not payday.configured:
            return window
        upcoming = payday.next_payday
        if upcoming <= window.next_reset_date:
            upcoming = payday.next_after(window.next_reset_date)
        return replace(
            window,
            last_reset_date=window.next_reset_date,
            next_reset_date=upcoming,
        )
    return replace(
        window,
        last_reset_date=window.next_reset_date,
        next_reset_date=next_boundary(
            window.frequency, window.reset_day, window.next_reset_date
        ),
    )


def settle_window(
    window: TrackerWindow, today: date, payday: Optional[PaydaySettings] = None
) -> TrackerWindow:
    """Apply rollover steps until `today` falls before the next reset."""
    for _ in range(MAX_CATCH_UP_STEPS):
        advanced = advance_window(window, today, payday)
        if advanced == window:
            break
        window = advanced
    return window


def period_bounds_for_offset(
    window: TrackerWindow, offset: int, payday: Optional[PaydaySettings] = None
) -> Optional[Period]:
    """Window `offset` periods back from the current one (0 = current).

    Future periods are not looked up; positive offsets give None, as does a
    payday tracker when the payday schedule is unknown.
    """
    if offset > 0:
        return None
    start, end = window.last_reset_date, window.next_reset_date
    for _ in range(-offset):
        previous = previous_boundary(window.frequency, window.reset_day, start, payday)
        if previous is None or previous >= start:
            return None
        start, end = previous, start
    return Period(start, end)


class PeriodEngine:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = require_session(session)

    def advance_payday_if_needed(self, today: Optional[date] = None) -> PaydaySettings:
        from services import SettingsService

        today = today or local_today()
        settings = SettingsService(self.session)
        payday = settings.payday()
        advanced = payday.advanced(today)
        if advanced.next_payday != payday.next_payday:
            logger.info(
                f"payday_advanced: from={payday.next_payday} to={advanced.next_payday}"
            )
            settings.set("next_payday", advanced.next_payday.isoformat())
        return advanced

    def recalculate_trackers(self, today: Optional[date] = None) -> int:
        """Roll every active tracker forward so its window contains `today`."""
        from services import SettingsService

        today = today or local_today()
        payday = SettingsService(self.session).payday()
        stmt = select(Tracker).where(
            Tracker.is_active.is_(True), Tracker.next_reset_date <= today
        )
        trackers = self.session.scalars(stmt).all()
        count = 0
        for tracker in trackers:
            current = TrackerWindow.of(tracker)
            settled = settle_window(current, today, payday)
            if settled == current:
                logger.warning(
                    f"tracker_stale: id={tracker.id} next_reset={tracker.next_reset_date}"
                )
                continue
            tracker.last_reset_date = settled.last_reset_date
            tracker.next_reset_date = settled.next_reset_date
            count += 1
            logger.info(
                f"tracker_advanced: id={tracker.id} "
                f"window={settled.last_reset_date}..{settled.next_reset_date}"
            )
        if count:
            self.session.commit()
        return count

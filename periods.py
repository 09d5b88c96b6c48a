from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional, Union

from models import PaydayFrequency, ResetFrequency

DateLike = Union[date, datetime, str]

PAY_PERIOD_DAYS = {
    PaydayFrequency.weekly: 7,
    PaydayFrequency.fortnightly: 14,
    PaydayFrequency.monthly: 30,
}


def to_date(value: Optional[DateLike]) -> Optional[date]:
    """Calendar date of a date, timestamp or ISO string; time of day is dropped.

    Timestamps keep the date as written in their own offset, so `2025-02-10`
    and `2025-02-10T23:30:00+11:00` compare as the same day.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def days_between(start: DateLike, end: DateLike) -> int:
    return (to_date(end) - to_date(start)).days


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, day: Optional[int] = None) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    desired_day = day if day else base.day
    return date(year, month, min(desired_day, days_in_month(year, month)))


@dataclass(frozen=True)
class Period:
    start: date
    end: date  # exclusive

    def contains(self, value: DateLike) -> bool:
        day = to_date(value)
        return self.start <= day < self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days


def week_range(offset: int = 0, *, today: Optional[date] = None) -> Period:
    today = today or date.today()
    monday = today - timedelta(days=today.isoweekday() - 1) + timedelta(weeks=offset)
    return Period(monday, monday + timedelta(days=7))


@dataclass(frozen=True)
class PaydaySettings:
    next_payday: Optional[date]
    frequency: Optional[PaydayFrequency]
    day: Optional[int] = None

    @property
    def configured(self) -> bool:
        return self.next_payday is not None and self.frequency is not None

    @property
    def period_days(self) -> int:
        return PAY_PERIOD_DAYS.get(self.frequency, 30)

    def _month_day(self, fallback: date) -> int:
        if self.day is not None and 1 <= self.day <= 28:
            return self.day
        return fallback.day

    def following(self, payday: date) -> date:
        if self.frequency == PaydayFrequency.weekly:
            return payday + timedelta(days=7)
        if self.frequency == PaydayFrequency.fortnightly:
            return payday + timedelta(days=14)
        return add_months(payday, 1, self._month_day(payday))

    def preceding(self, payday: date) -> date:
        if self.frequency == PaydayFrequency.weekly:
            return payday - timedelta(days=7)
        if self.frequency == PaydayFrequency.fortnightly:
            return payday - timedelta(days=14)
        return add_months(payday, -1, self._month_day(payday))

    def advanced(self, today: date) -> "PaydaySettings":
        """Settings whose next payday is strictly after `today`."""
        if not self.configured or self.next_payday > today:
            return self
        upcoming = self.next_payday
        while upcoming <= today:
            upcoming = self.following(upcoming)
        return replace(self, next_payday=upcoming)

    def next_after(self, day: date) -> Optional[date]:
        """First payday strictly after `day` on the configured schedule."""
        if not self.configured:
            return None
        candidate = self.next_payday
        while candidate <= day:
            candidate = self.following(candidate)
        while self.preceding(candidate) > day:
            candidate = self.preceding(candidate)
        return candidate

    def previous_payday(self, before: date) -> Optional[date]:
        """Payday immediately preceding `before` on the configured schedule."""
        if not self.configured:
            return None
        candidate = self.next_payday
        while candidate >= before:
            candidate = self.preceding(candidate)
        while self.following(candidate) < before:
            candidate = self.following(candidate)
        return candidate


def _days_back_to_weekday(from_date: date, weekday: int) -> int:
    return (from_date.isoweekday() - weekday) % 7


def _check_weekday(reset_day: Optional[int]) -> int:
    if reset_day is None or not 1 <= reset_day <= 7:
        raise ValueError("Weekly reset day must be between 1 (Monday) and 7 (Sunday)")
    return reset_day


def _check_month_day(reset_day: Optional[int]) -> int:
    if reset_day is None or not 1 <= reset_day <= 31:
        raise ValueError("Monthly reset day must be between 1 and 31")
    return reset_day


def last_boundary(
    frequency: ResetFrequency,
    reset_day: Optional[int],
    from_date: date,
    payday: Optional[PaydaySettings] = None,
) -> date:
    """Start of the period that contains `from_date`."""
    if frequency in (ResetFrequency.weekly, ResetFrequency.fortnightly):
        # Fortnights are anchored at the most recent matching weekday.
        weekday = _check_weekday(reset_day)
        return from_date - timedelta(days=_days_back_to_weekday(from_date, weekday))
    if frequency == ResetFrequency.monthly:
        day = _check_month_day(reset_day)
        if from_date.day >= day:
            return from_date.replace(day=day)
        return add_months(from_date, -1, min(day, 28))
    if payday is not None and payday.configured:
        return payday.previous_payday(from_date + timedelta(days=1))
    return from_date


def next_boundary(
    frequency: ResetFrequency,
    reset_day: Optional[int],
    from_date: date,
    payday: Optional[PaydaySettings] = None,
) -> date:
    """End (exclusive) of the period that starts at `from_date`."""
    if frequency == ResetFrequency.weekly:
        weekday = _check_weekday(reset_day)
        days_until = (weekday - from_date.isoweekday()) % 7 or 7
        return from_date + timedelta(days=days_until)
    if frequency == ResetFrequency.fortnightly:
        weekday = _check_weekday(reset_day)
        days_until = (weekday - from_date.isoweekday()) % 7 or 14
        return from_date + timedelta(days=days_until)
    if frequency == ResetFrequency.monthly:
        return add_months(from_date, 1, _check_month_day(reset_day))
    if payday is not None and payday.configured:
        return payday.next_after(from_date)
    return from_date


def previous_boundary(
    frequency: ResetFrequency,
    reset_day: Optional[int],
    boundary: date,
    payday: Optional[PaydaySettings] = None,
) -> Optional[date]:
    """Start of the period that ends at `boundary`."""
    if frequency == ResetFrequency.weekly:
        return boundary - timedelta(days=7)
    if frequency == ResetFrequency.fortnightly:
        return boundary - timedelta(days=14)
    if frequency == ResetFrequency.monthly:
        return add_months(boundary, -1, reset_day or boundary.day)
    if payday is None:
        return None
    return payday.previous_payday(boundary)

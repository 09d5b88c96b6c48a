from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from database import require_session
from models import (
    Account,
    AccountType,
    AppSetting,
    Category,
    PaydayFrequency,
    ResetFrequency,
    Saver,
    ScheduledCharge,
    Tracker,
    TrackerCategory,
    Transaction,
    tracker_categories,
)
from periods import PaydaySettings, Period, days_between, to_date, week_range
from recurrence import (
    TrackerWindow,
    initial_window,
    local_today,
    period_bounds_for_offset,
)
from reservations import calculate_reserved_amount
from schemas import PaydaySettingsIn, SaverGoalsIn, ScheduledChargeIn, TrackerIn

logger = logging.getLogger(__name__)

NEXT_PAYDAY = "next_payday"
PAYDAY_FREQUENCY = "payday_frequency"
PAYDAY_DAY = "payday_day"
LAST_SYNC = "last_sync"
ONBOARDING_COMPLETE = "onboarding_complete"


def _spending_filter():
    return (Transaction.amount_cents < 0, Transaction.transfer_account_id.is_(None))


def _in_period(period: Period):
    return (
        Transaction.display_date >= period.start,
        Transaction.display_date < period.end,
    )


class SettingsService:
    """Key/value settings. Reads degrade to None before the store is ready."""

    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def get(self, key: str) -> Optional[str]:
        if self.session is None:
            return None
        row = self.session.get(AppSetting, key)
        return row.value if row else None

    def set(self, key: str, value: str) -> None:
        session = require_session(self.session)
        row = session.get(AppSetting, key)
        if row:
            row.value = value
        else:
            session.add(AppSetting(key=key, value=value))
        session.commit()

    def payday(self) -> PaydaySettings:
        raw_date = self.get(NEXT_PAYDAY)
        raw_frequency = self.get(PAYDAY_FREQUENCY)
        raw_day = self.get(PAYDAY_DAY)
        try:
            frequency = PaydayFrequency(raw_frequency) if raw_frequency else None
        except ValueError:
            logger.warning(f"payday_settings: unknown frequency={raw_frequency!r}")
            frequency = None
        return PaydaySettings(
            next_payday=to_date(raw_date) if raw_date else None,
            frequency=frequency,
            day=int(raw_day) if raw_day and raw_day.isdigit() else None,
        )

    def set_payday(self, data: PaydaySettingsIn) -> PaydaySettings:
        if data.frequency != PaydayFrequency.monthly and not 1 <= data.day <= 7:
            raise ValueError("Weekly payday must be a weekday between 1 and 7")
        self.set(PAYDAY_FREQUENCY, data.frequency.value)
        self.set(PAYDAY_DAY, str(data.day))
        self.set(NEXT_PAYDAY, data.next_payday.isoformat())
        return self.payday()

    def last_sync(self) -> Optional[datetime]:
        raw = self.get(LAST_SYNC)
        return datetime.fromisoformat(raw) if raw else None


class CategoryService:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        if self.session is None:
            return []
        return self.session.scalars(select(Category).order_by(Category.name)).all()


@dataclass
class TransactionFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_id: Optional[str] = None
    amount_min: Optional[int] = None
    amount_max: Optional[int] = None
    search: Optional[str] = None


class TransactionService:
    SORTS = {
        "date": (Transaction.display_date.desc(), Transaction.created_at.desc()),
        "amount": (Transaction.amount_cents.asc(), Transaction.display_date.desc()),
        "merchant": (Transaction.description.asc(), Transaction.display_date.desc()),
    }

    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    @staticmethod
    def _conditions(filters: TransactionFilters) -> list:
        conditions = [Transaction.round_up_parent_id.is_(None)]
        if filters.date_from:
            conditions.append(Transaction.display_date >= filters.date_from)
        if filters.date_to:
            conditions.append(Transaction.display_date <= filters.date_to)
        if filters.category_id:
            conditions.append(Transaction.category_id == filters.category_id)
        if filters.amount_min is not None:
            conditions.append(func.abs(Transaction.amount_cents) >= filters.amount_min)
        if filters.amount_max is not None:
            conditions.append(func.abs(Transaction.amount_cents) <= filters.amount_max)
        if filters.search and filters.search.strip():
            term = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    Transaction.description.ilike(term),
                    Transaction.raw_text.ilike(term),
                )
            )
        return conditions

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        sort: str = "date",
        limit: int = 0,
        offset: int = 0,
    ) -> list[Transaction]:
        if self.session is None:
            return []
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(*self._conditions(filters))
            .order_by(*self.SORTS.get(sort, self.SORTS["date"]), Transaction.id)
        )
        if limit > 0:
            stmt = stmt.limit(limit).offset(offset)
        return self.session.scalars(stmt).all()

    def count(self, filters: Optional[TransactionFilters] = None) -> int:
        if self.session is None:
            return 0
        filters = filters or TransactionFilters()
        stmt = select(func.count(Transaction.id)).where(*self._conditions(filters))
        return int(self.session.scalar(stmt) or 0)

    def round_ups_by_parent(self, parent_ids: list[str]) -> dict[str, list[Transaction]]:
        if self.session is None or not parent_ids:
            return {}
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_round_up.is_(True),
                Transaction.round_up_parent_id.in_(parent_ids),
            )
            .order_by(Transaction.id)
        )
        grouped: dict[str, list[Transaction]] = {}
        for txn in self.session.scalars(stmt):
            grouped.setdefault(txn.round_up_parent_id, []).append(txn)
        return grouped


class BalanceService:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def available_balance(self) -> int:
        if self.session is None:
            return 0
        stmt = select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
            Account.account_type == AccountType.transactional
        )
        return int(self.session.scalar(stmt) or 0)

    def reserved_amount(self, today: Optional[date] = None) -> int:
        if self.session is None:
            return 0
        payday = SettingsService(self.session).payday()
        charges = self.session.scalars(select(ScheduledCharge)).all()
        return calculate_reserved_amount(
            charges, payday.next_payday, payday.frequency, today=today
        )

    def spendable_balance(self, today: Optional[date] = None) -> int:
        return max(0, self.available_balance() - self.reserved_amount(today))

    def summary(self, today: Optional[date] = None) -> dict[str, int]:
        available = self.available_balance()
        reserved = self.reserved_amount(today)
        return {
            "available_cents": available,
            "reserved_cents": reserved,
            "spendable_cents": max(0, available - reserved),
        }


class ScheduledChargeService:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def list_all(self) -> list[ScheduledCharge]:
        if self.session is None:
            return []
        stmt = select(ScheduledCharge).order_by(
            ScheduledCharge.next_charge_date, ScheduledCharge.id
        )
        return self.session.scalars(stmt).all()

    def get(self, charge_id: int) -> ScheduledCharge:
        charge = require_session(self.session).get(ScheduledCharge, charge_id)
        if not charge:
            raise ValueError("Scheduled charge not found")
        return charge

    def create(self, data: ScheduledChargeIn) -> ScheduledCharge:
        session = require_session(self.session)
        charge = ScheduledCharge(**data.model_dump())
        session.add(charge)
        session.commit()
        session.refresh(charge)
        return charge

    def update(self, charge_id: int, data: ScheduledChargeIn) -> ScheduledCharge:
        session = require_session(self.session)
        charge = self.get(charge_id)
        for field, value in data.model_dump().items():
            setattr(charge, field, value)
        session.commit()
        session.refresh(charge)
        return charge

    def delete(self, charge_id: int) -> None:
        session = require_session(self.session)
        session.delete(self.get(charge_id))
        session.commit()

    def grouped(self, today: Optional[date] = None) -> dict[str, object]:
        """Upcoming charges split into those due before next payday and later."""
        today = today or local_today()
        next_payday = SettingsService(self.session).payday().next_payday
        next_pay: list[ScheduledCharge] = []
        later: list[ScheduledCharge] = []
        for charge in self.list_all():
            if charge.next_charge_date < today:
                continue
            if next_payday and charge.next_charge_date < next_payday:
                next_pay.append(charge)
            else:
                later.append(charge)
        return {"next_pay": next_pay, "later": later, "next_payday": next_payday}


@dataclass(frozen=True)
class TrackerProgress:
    tracker_id: int
    name: str
    budget_cents: int
    period: Period
    spent_cents: int
    remaining_cents: int
    days_left: int
    progress_percent: float

    @property
    def display_percent(self) -> float:
        return min(100.0, self.progress_percent)

    @property
    def over_budget(self) -> bool:
        return self.spent_cents > self.budget_cents


class TrackerService:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    @staticmethod
    def _validate_reset_day(
        frequency: ResetFrequency, reset_day: Optional[int]
    ) -> Optional[int]:
        if frequency in (ResetFrequency.weekly, ResetFrequency.fortnightly):
            if reset_day is None or not 1 <= reset_day <= 7:
                raise ValueError("Reset day must be a weekday between 1 and 7")
        elif frequency == ResetFrequency.monthly:
            if reset_day is None or not 1 <= reset_day <= 28:
                raise ValueError("Reset day must be a day of month between 1 and 28")
        else:
            return None
        return reset_day

    def _payday(self) -> PaydaySettings:
        return SettingsService(self.session).payday()

    def _set_categories(self, tracker: Tracker, category_ids: list[str]) -> None:
        tracker.category_links = [
            TrackerCategory(category_id=category_id)
            for category_id in sorted(set(category_ids))
        ]

    def get(self, tracker_id: int) -> Tracker:
        tracker = require_session(self.session).get(Tracker, tracker_id)
        if not tracker or not tracker.is_active:
            raise ValueError("Tracker not found")
        return tracker

    def list_active(self) -> list[Tracker]:
        if self.session is None:
            return []
        stmt = (
            select(Tracker)
            .options(selectinload(Tracker.category_links))
            .where(Tracker.is_active.is_(True))
            .order_by(Tracker.name, Tracker.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: TrackerIn, *, today: Optional[date] = None) -> Tracker:
        session = require_session(self.session)
        today = today or local_today()
        reset_day = self._validate_reset_day(data.reset_frequency, data.reset_day)
        window = initial_window(data.reset_frequency, reset_day, today, self._payday())
        tracker = Tracker(
            name=data.name,
            budget_cents=data.budget_cents,
            reset_frequency=data.reset_frequency,
            reset_day=reset_day,
            start_date=today,
            last_reset_date=window.last_reset_date,
            next_reset_date=window.next_reset_date,
            is_active=True,
        )
        self._set_categories(tracker, data.category_ids)
        session.add(tracker)
        session.commit()
        session.refresh(tracker)
        return tracker

    def update(
        self, tracker_id: int, data: TrackerIn, *, today: Optional[date] = None
    ) -> Tracker:
        session = require_session(self.session)
        tracker = self.get(tracker_id)
        reset_day = self._validate_reset_day(data.reset_frequency, data.reset_day)
        schedule_changed = (
            tracker.reset_frequency != data.reset_frequency
            or tracker.reset_day != reset_day
        )
        tracker.name = data.name
        tracker.budget_cents = data.budget_cents
        tracker.reset_frequency = data.reset_frequency
        tracker.reset_day = reset_day
        if schedule_changed:
            window = initial_window(
                data.reset_frequency, reset_day, today or local_today(), self._payday()
            )
            tracker.last_reset_date = window.last_reset_date
            tracker.next_reset_date = window.next_reset_date
        self._set_categories(tracker, data.category_ids)
        session.commit()
        session.refresh(tracker)
        return tracker

    def deactivate(self, tracker_id: int) -> None:
        session = require_session(self.session)
        tracker = self.get(tracker_id)
        tracker.is_active = False
        session.commit()

    def period_for_offset(self, tracker: Tracker, offset: int = 0) -> Optional[Period]:
        return period_bounds_for_offset(
            TrackerWindow.of(tracker), offset, self._payday()
        )

    def _spending_in(self, tracker_id: int, period: Period):
        return (
            select(Transaction)
            .join(
                tracker_categories,
                tracker_categories.c.category_id == Transaction.category_id,
            )
            .where(
                tracker_categories.c.tracker_id == tracker_id,
                *_in_period(period),
                *_spending_filter(),
            )
        )

    def spent_in_period(self, tracker_id: int, period: Period) -> int:
        if self.session is None:
            return 0
        spending = self._spending_in(tracker_id, period).subquery()
        stmt = select(func.coalesce(func.sum(func.abs(spending.c.amount_cents)), 0))
        return int(self.session.scalar(stmt) or 0)

    def progress(
        self, tracker: Tracker, offset: int = 0, *, today: Optional[date] = None
    ) -> Optional[TrackerProgress]:
        period = self.period_for_offset(tracker, offset)
        if period is None:
            return None
        today = today or local_today()
        spent = self.spent_in_period(tracker.id, period)
        budget = tracker.budget_cents
        return TrackerProgress(
            tracker_id=tracker.id,
            name=tracker.name,
            budget_cents=budget,
            period=period,
            spent_cents=spent,
            remaining_cents=max(0, budget - spent),
            days_left=max(0, days_between(today, period.end)),
            progress_percent=(spent / budget * 100) if budget > 0 else 0.0,
        )

    def progress_for_all(
        self, offset: int = 0, *, today: Optional[date] = None
    ) -> list[TrackerProgress]:
        results = []
        for tracker in self.list_active():
            progress = self.progress(tracker, offset, today=today)
            if progress is not None:
                results.append(progress)
        return results

    def transactions_in_period(
        self, tracker_id: int, offset: int = 0, *, limit: int = 20
    ) -> list[Transaction]:
        if self.session is None:
            return []
        period = self.period_for_offset(self.get(tracker_id), offset)
        if period is None:
            return []
        stmt = (
            self._spending_in(tracker_id, period)
            .order_by(Transaction.display_date.desc(), Transaction.created_at.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def history(
        self, tracker_id: int, periods: int = 6, *, today: Optional[date] = None
    ) -> list[TrackerProgress]:
        """Progress for the current and previous periods, oldest first."""
        tracker = self.get(tracker_id)
        rows = []
        for offset in range(-(periods - 1), 1):
            progress = self.progress(tracker, offset, today=today)
            if progress is not None:
                rows.append(progress)
        return rows


def _months_between(start: date, end: date) -> int:
    return max(0, (end.year - start.year) * 12 + (end.month - start.month))


class SaverService:
    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def list_with_progress(self, today: Optional[date] = None) -> list[dict[str, object]]:
        if self.session is None:
            return []
        today = today or local_today()
        savers = self.session.scalars(select(Saver).order_by(Saver.name)).all()
        rows = []
        for saver in savers:
            progress = 0.0
            remaining = 0
            months_remaining = 0
            recommended_monthly = 0.0
            on_track = False
            goal = saver.goal_amount_cents
            if goal is not None and goal > 0:
                remaining = goal - saver.current_balance_cents
                months_remaining = _months_between(today, saver.target_date or today)
                recommended_monthly = (
                    remaining / months_remaining if months_remaining > 0 else 0.0
                )
                progress = saver.current_balance_cents / goal * 100
                on_track = recommended_monthly <= (saver.monthly_transfer_cents or 0)
            rows.append(
                {
                    "saver": saver,
                    "progress_percent": progress,
                    "remaining_cents": remaining,
                    "months_remaining": months_remaining,
                    "recommended_monthly_cents": recommended_monthly,
                    "on_track": on_track,
                }
            )
        return rows

    def update_goals(self, saver_id: str, data: SaverGoalsIn) -> Saver:
        session = require_session(self.session)
        saver = session.get(Saver, saver_id)
        if not saver:
            raise ValueError("Saver not found")
        saver.goal_amount_cents = data.goal_amount_cents
        saver.target_date = data.target_date
        saver.monthly_transfer_cents = data.monthly_transfer_cents
        saver.is_goal_based = bool(data.goal_amount_cents and data.goal_amount_cents > 0)
        session.commit()
        session.refresh(saver)
        return saver

    def balance_history(
        self,
        saver_id: str,
        *,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 500,
    ) -> list[dict[str, object]]:
        """Running balance rebuilt from movements on the saver account."""
        if self.session is None:
            return []
        stmt = select(Transaction).where(Transaction.account_id == saver_id)
        if date_from:
            stmt = stmt.where(Transaction.display_date >= date_from)
        if date_to:
            stmt = stmt.where(Transaction.display_date < date_to)
        stmt = stmt.order_by(
            Transaction.display_date, Transaction.created_at, Transaction.id
        ).limit(limit)
        balance = 0
        history = []
        for txn in self.session.scalars(stmt):
            balance += txn.amount_cents
            history.append(
                {
                    "date": txn.display_date,
                    "balance_cents": balance,
                    "amount_cents": txn.amount_cents,
                    "transaction_id": txn.id,
                    "description": txn.description,
                }
            )
        return history


class InsightsService:
    """Weekly money in/out. Transfers between own accounts are not income or spending."""

    def __init__(self, session: Optional[Session]) -> None:
        self.session = session

    def weekly(self, period: Period) -> dict[str, int]:
        empty = {
            "money_in_cents": 0,
            "money_out_cents": 0,
            "saver_changes_cents": 0,
            "charges": 0,
            "payments": 0,
        }
        if self.session is None:
            return empty
        not_transfer = Transaction.transfer_account_id.is_(None)
        saver_ids = select(Account.id).where(Account.account_type == AccountType.saver)
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            (Transaction.amount_cents > 0) & not_transfer,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (
                            (Transaction.amount_cents < 0) & not_transfer,
                            -Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.transfer_account_id.in_(saver_ids),
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(((Transaction.amount_cents < 0) & not_transfer, 1), else_=0)
                ),
                0,
            ),
            func.coalesce(
                func.sum(case(((Transaction.amount_cents > 0) & not_transfer, 1), else_=0)),
                0,
            ),
        ).where(*_in_period(period))
        money_in, money_out, saver_changes, charges, payments = self.session.execute(
            stmt
        ).one()
        return {
            "money_in_cents": int(money_in),
            "money_out_cents": int(money_out),
            "saver_changes_cents": int(saver_changes),
            "charges": int(charges),
            "payments": int(payments),
        }

    def category_breakdown(self, period: Period, limit: int = 15) -> list[dict[str, object]]:
        if self.session is None:
            return []
        total = func.sum(func.abs(Transaction.amount_cents)).label("total")
        stmt = (
            select(Transaction.category_id, Category.name, total)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(*_in_period(period), *_spending_filter())
            .group_by(Transaction.category_id, Category.name)
            .order_by(total.desc())
            .limit(limit)
        )
        return [
            {
                "category_id": row.category_id,
                "category_name": row.name or "Uncategorised",
                "total_cents": int(row.total or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def history(self, weeks_back: int, *, today: Optional[date] = None) -> list[dict[str, object]]:
        today = today or local_today()
        rows = []
        for offset in range(-weeks_back + 1, 1):
            period = week_range(offset, today=today)
            rows.append({"week_offset": offset, "period": period, **self.weekly(period)})
        return rows

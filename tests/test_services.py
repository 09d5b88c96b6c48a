from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, StoreUnavailableError
from models import (
    Account,
    AccountType,
    ChargeFrequency,
    PaydayFrequency,
    ResetFrequency,
    Saver,
    Transaction,
    TransactionStatus,
)
from periods import Period
from schemas import PaydaySettingsIn, SaverGoalsIn, ScheduledChargeIn, TrackerIn
from services import (
    BalanceService,
    InsightsService,
    SaverService,
    ScheduledChargeService,
    SettingsService,
    TrackerService,
    TransactionFilters,
    TransactionService,
)

TODAY = date(2025, 2, 9)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _account(account_id, account_type, cents):
    now = datetime(2025, 2, 1)
    return Account(
        id=account_id,
        display_name=account_id.title(),
        account_type=account_type,
        balance_cents=cents,
        created_at=now,
        updated_at=now,
    )


def _txn(txn_id, cents, day, category=None, transfer=None, account="spending"):
    return Transaction(
        id=txn_id,
        account_id=account,
        status=TransactionStatus.settled,
        description=f"Merchant {txn_id}",
        amount_cents=cents,
        display_date=day,
        category_id=category,
        transfer_account_id=transfer,
    )


def _monthly_payday(session, next_payday=date(2025, 3, 1)):
    SettingsService(session).set_payday(
        PaydaySettingsIn(frequency=PaydayFrequency.monthly, day=1, next_payday=next_payday)
    )


def test_balance_summary_holds_back_upcoming_charges():
    session = make_session()
    session.add_all(
        [
            _account("spending", AccountType.transactional, 10000),
            _account("bills", AccountType.transactional, 2500),
            _account("holiday", AccountType.saver, 50000),
        ]
    )
    session.commit()
    _monthly_payday(session)
    ScheduledChargeService(session).create(
        ScheduledChargeIn(
            name="Gym",
            amount_cents=3000,
            frequency=ChargeFrequency.weekly,
            next_charge_date=date(2025, 2, 25),
        )
    )

    summary = BalanceService(session).summary(today=date(2025, 2, 23))

    assert summary == {
        "available_cents": 12500,
        "reserved_cents": 3000,
        "spendable_cents": 9500,
    }


def test_spendable_balance_is_never_negative():
    session = make_session()
    session.add(_account("spending", AccountType.transactional, 1000))
    session.commit()
    _monthly_payday(session)
    ScheduledChargeService(session).create(
        ScheduledChargeIn(
            name="Rent",
            amount_cents=5000,
            frequency=ChargeFrequency.once,
            next_charge_date=date(2025, 2, 25),
        )
    )
    assert BalanceService(session).spendable_balance(today=date(2025, 2, 23)) == 0


def test_reads_without_store_return_empty_values():
    assert BalanceService(None).summary(today=TODAY) == {
        "available_cents": 0,
        "reserved_cents": 0,
        "spendable_cents": 0,
    }
    assert TrackerService(None).list_active() == []
    assert TransactionService(None).list() == []
    assert SaverService(None).list_with_progress(today=TODAY) == []
    assert SettingsService(None).get("next_payday") is None


def test_writes_without_store_fail():
    with pytest.raises(StoreUnavailableError):
        TrackerService(None).create(
            TrackerIn(name="Food", budget_cents=100, reset_frequency=ResetFrequency.weekly, reset_day=1),
            today=TODAY,
        )
    with pytest.raises(StoreUnavailableError):
        SettingsService(None).set("next_payday", "2025-03-01")


def test_weekly_tracker_progress_counts_only_spending_in_window():
    session = make_session()
    tracker = TrackerService(session).create(
        TrackerIn(
            name="Groceries",
            budget_cents=5000,
            reset_frequency=ResetFrequency.weekly,
            reset_day=1,
            category_ids=["groceries"],
        ),
        today=TODAY,
    )
    assert tracker.last_reset_date == date(2025, 2, 3)
    assert tracker.next_reset_date == date(2025, 2, 10)

    session.add_all(
        [
            _txn("in-window", -2500, date(2025, 2, 5), "groceries"),
            _txn("last-week", -1000, date(2025, 2, 1), "groceries"),
            _txn("refund", 500, date(2025, 2, 6), "groceries"),
            _txn("transfer", -700, date(2025, 2, 6), "groceries", transfer="holiday"),
            _txn("other", -300, date(2025, 2, 6), "takeaway"),
        ]
    )
    session.commit()

    service = TrackerService(session)
    progress = service.progress(tracker, today=TODAY)
    assert progress.spent_cents == 2500
    assert progress.remaining_cents == 2500
    assert progress.progress_percent == 50.0
    assert progress.days_left == 1
    assert not progress.over_budget

    previous = service.progress(tracker, -1, today=TODAY)
    assert previous.period == Period(date(2025, 1, 27), date(2025, 2, 3))
    assert previous.spent_cents == 1000

    assert service.progress(tracker, 1, today=TODAY) is None
    assert [t.id for t in service.transactions_in_period(tracker.id)] == ["in-window"]


def test_tracker_over_budget_caps_display_percent():
    session = make_session()
    service = TrackerService(session)
    tracker = service.create(
        TrackerIn(
            name="Coffee",
            budget_cents=2000,
            reset_frequency=ResetFrequency.weekly,
            reset_day=1,
            category_ids=["coffee"],
        ),
        today=TODAY,
    )
    session.add(_txn("flat-white", -3000, date(2025, 2, 4), "coffee"))
    session.commit()

    progress = service.progress(tracker, today=TODAY)
    assert progress.over_budget
    assert progress.remaining_cents == 0
    assert progress.progress_percent == 150.0
    assert progress.display_percent == 100.0


def test_tracker_reset_day_validation():
    service = TrackerService(make_session())
    with pytest.raises(ValueError):
        service.create(
            TrackerIn(name="Bad", budget_cents=100, reset_frequency=ResetFrequency.weekly, reset_day=9),
            today=TODAY,
        )
    with pytest.raises(ValueError):
        service.create(
            TrackerIn(name="Bad", budget_cents=100, reset_frequency=ResetFrequency.monthly, reset_day=30),
            today=TODAY,
        )


def test_payday_tracker_needs_payday_settings():
    session = make_session()
    service = TrackerService(session)
    data = TrackerIn(name="Pay cycle", budget_cents=100000, reset_frequency=ResetFrequency.payday)
    with pytest.raises(ValueError):
        service.create(data, today=TODAY)

    _monthly_payday(session)
    tracker = service.create(data, today=TODAY)
    assert tracker.reset_day is None
    assert tracker.last_reset_date == date(2025, 2, 1)
    assert tracker.next_reset_date == date(2025, 3, 1)


def test_tracker_update_recomputes_window_when_schedule_changes():
    session = make_session()
    service = TrackerService(session)
    tracker = service.create(
        TrackerIn(name="Food", budget_cents=100, reset_frequency=ResetFrequency.weekly, reset_day=1),
        today=TODAY,
    )
    updated = service.update(
        tracker.id,
        TrackerIn(
            name="Food",
            budget_cents=400,
            reset_frequency=ResetFrequency.monthly,
            reset_day=15,
            category_ids=["groceries", "takeaway"],
        ),
        today=TODAY,
    )
    assert updated.last_reset_date == date(2025, 1, 15)
    assert updated.next_reset_date == date(2025, 2, 15)
    assert updated.category_ids == ["groceries", "takeaway"]


def test_deactivated_tracker_is_hidden():
    session = make_session()
    service = TrackerService(session)
    tracker = service.create(
        TrackerIn(name="Food", budget_cents=100, reset_frequency=ResetFrequency.weekly, reset_day=1),
        today=TODAY,
    )
    service.deactivate(tracker.id)
    assert service.list_active() == []
    with pytest.raises(ValueError):
        service.get(tracker.id)


def test_tracker_history_is_oldest_first():
    session = make_session()
    service = TrackerService(session)
    tracker = service.create(
        TrackerIn(name="Food", budget_cents=100, reset_frequency=ResetFrequency.weekly, reset_day=1),
        today=TODAY,
    )
    rows = service.history(tracker.id, 3, today=TODAY)
    assert [r.period.start for r in rows] == [
        date(2025, 1, 20),
        date(2025, 1, 27),
        date(2025, 2, 3),
    ]


def test_charges_grouped_around_next_payday():
    session = make_session()
    _monthly_payday(session)
    service = ScheduledChargeService(session)
    for name, due in [
        ("Past", date(2025, 2, 20)),
        ("Soon", date(2025, 2, 25)),
        ("Later", date(2025, 3, 5)),
    ]:
        service.create(
            ScheduledChargeIn(
                name=name,
                amount_cents=1000,
                frequency=ChargeFrequency.monthly,
                next_charge_date=due,
            )
        )

    grouped = service.grouped(today=date(2025, 2, 23))

    assert [c.name for c in grouped["next_pay"]] == ["Soon"]
    assert [c.name for c in grouped["later"]] == ["Later"]
    assert grouped["next_payday"] == date(2025, 3, 1)


def test_charge_update_and_delete():
    session = make_session()
    service = ScheduledChargeService(session)
    charge = service.create(
        ScheduledChargeIn(
            name="Phone",
            amount_cents=4500,
            frequency=ChargeFrequency.monthly,
            next_charge_date=date(2025, 3, 3),
        )
    )
    updated = service.update(
        charge.id,
        ScheduledChargeIn(
            name="Phone",
            amount_cents=5000,
            frequency=ChargeFrequency.monthly,
            next_charge_date=date(2025, 3, 3),
            is_reserved=False,
        ),
    )
    assert updated.amount_cents == 5000
    assert updated.is_reserved is False
    service.delete(charge.id)
    assert service.list_all() == []
    with pytest.raises(ValueError):
        service.get(charge.id)


def test_weekly_payday_day_must_be_a_weekday():
    session = make_session()
    with pytest.raises(ValueError):
        SettingsService(session).set_payday(
            PaydaySettingsIn(frequency=PaydayFrequency.weekly, day=9, next_payday=date(2025, 2, 14))
        )
    payday = SettingsService(session).set_payday(
        PaydaySettingsIn(frequency=PaydayFrequency.weekly, day=5, next_payday=date(2025, 2, 14))
    )
    assert payday.configured
    assert payday.period_days == 7


def test_saver_goal_progress():
    session = make_session()
    session.add(Saver(id="holiday", name="Holiday", current_balance_cents=5000))
    session.commit()
    service = SaverService(session)
    saver = service.update_goals(
        "holiday",
        SaverGoalsIn(
            goal_amount_cents=10000,
            target_date=date(2025, 6, 15),
            monthly_transfer_cents=1500,
        ),
    )
    assert saver.is_goal_based

    row = service.list_with_progress(today=date(2025, 2, 15))[0]
    assert row["progress_percent"] == 50.0
    assert row["remaining_cents"] == 5000
    assert row["months_remaining"] == 4
    assert row["recommended_monthly_cents"] == 1250
    assert row["on_track"] is True


def test_unknown_saver_goal_update_fails():
    with pytest.raises(ValueError):
        SaverService(make_session()).update_goals("missing", SaverGoalsIn())


def test_saver_balance_history_is_running_total():
    session = make_session()
    session.add_all(
        [
            _txn("s1", 1000, date(2025, 2, 1), account="holiday"),
            _txn("s2", 2500, date(2025, 2, 3), account="holiday"),
            _txn("s3", -500, date(2025, 2, 5), account="holiday"),
            _txn("elsewhere", -800, date(2025, 2, 4)),
        ]
    )
    session.commit()
    history = SaverService(session).balance_history("holiday")
    assert [row["balance_cents"] for row in history] == [1000, 3500, 3000]


def test_transaction_filters_and_search():
    session = make_session()
    session.add_all(
        [
            _txn("a", -1250, date(2025, 2, 5), "groceries"),
            _txn("b", -9900, date(2025, 2, 6), "shopping"),
            _txn("c", 300000, date(2025, 2, 7)),
        ]
    )
    session.commit()
    service = TransactionService(session)

    assert [t.id for t in service.list()] == ["c", "b", "a"]
    assert [t.id for t in service.list(TransactionFilters(category_id="groceries"))] == ["a"]
    assert [t.id for t in service.list(TransactionFilters(amount_min=5000))] == ["c", "b"]
    assert [t.id for t in service.list(TransactionFilters(search="merchant b"))] == ["b"]
    assert service.count(TransactionFilters(date_to=date(2025, 2, 6))) == 2
    assert [t.id for t in service.list(sort="amount")] == ["b", "a", "c"]


def test_weekly_insights_ignore_transfers():
    session = make_session()
    session.add(_account("holiday", AccountType.saver, 0))
    session.add_all(
        [
            _txn("pay", 300000, date(2025, 2, 4)),
            _txn("food", -2500, date(2025, 2, 5), "groceries"),
            _txn("coffee", -500, date(2025, 2, 6), "coffee"),
            _txn("to-saver", -10000, date(2025, 2, 6), transfer="holiday"),
            _txn("old", -9999, date(2025, 1, 30), "groceries"),
        ]
    )
    session.commit()

    period = Period(date(2025, 2, 3), date(2025, 2, 10))
    service = InsightsService(session)
    weekly = service.weekly(period)
    assert weekly["money_in_cents"] == 300000
    assert weekly["money_out_cents"] == 3000
    assert weekly["charges"] == 2
    assert weekly["payments"] == 1
    assert weekly["saver_changes_cents"] == -10000

    breakdown = service.category_breakdown(period)
    assert breakdown[0]["category_id"] == "groceries"
    assert breakdown[0]["total_cents"] == 2500


def test_weekly_insight_history_covers_recent_weeks():
    session = make_session()
    session.add_all(
        [
            _txn("this-week", -1200, date(2025, 2, 4)),
            _txn("last-week", -800, date(2025, 1, 29)),
        ]
    )
    session.commit()

    rows = InsightsService(session).history(2, today=TODAY)

    assert [row["week_offset"] for row in rows] == [-1, 0]
    assert rows[0]["period"] == Period(date(2025, 1, 27), date(2025, 2, 3))
    assert [row["money_out_cents"] for row in rows] == [800, 1200]

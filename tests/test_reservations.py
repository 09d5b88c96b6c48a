from datetime import date, timedelta
from types import SimpleNamespace

from models import ChargeFrequency, PaydayFrequency
from reservations import calculate_reserved_amount

TODAY = date(2025, 2, 23)
PAYDAY = date(2025, 3, 1)


def _charge(amount, frequency, due, reserved=True):
    return SimpleNamespace(
        amount_cents=amount,
        frequency=frequency,
        next_charge_date=due,
        is_reserved=reserved,
    )


def _reserved(charges, payday=PAYDAY, frequency=PaydayFrequency.monthly, today=TODAY):
    return calculate_reserved_amount(charges, payday, frequency, today=today)


def test_monthly_charge_before_payday_is_partly_or_fully_reserved():
    amount = _reserved([_charge(3000, ChargeFrequency.monthly, date(2025, 2, 25))])
    assert 0 < amount <= 3000


def test_weekly_charge_before_payday_is_reserved_in_full():
    assert _reserved([_charge(3000, ChargeFrequency.weekly, date(2025, 2, 25))]) == 3000


def test_one_off_and_fortnightly_charges_are_reserved_in_full():
    charges = [
        _charge(1200, ChargeFrequency.once, date(2025, 2, 26)),
        _charge(800, ChargeFrequency.fortnightly, date(2025, 2, 27)),
    ]
    assert _reserved(charges) == 2000


def test_prorated_charge_is_spread_over_remaining_pay_periods():
    # 59 days away with 30 day pay periods: two periods, half reserved now.
    charge = _charge(3000, ChargeFrequency.quarterly, date(2025, 4, 20))
    amount = _reserved(
        [charge], payday=date(2025, 6, 1), today=date(2025, 2, 20)
    )
    assert amount == 1500


def test_prorated_portion_rounds_half_up():
    charge = _charge(1001, ChargeFrequency.yearly, date(2025, 4, 20))
    amount = _reserved(
        [charge], payday=date(2025, 6, 1), today=date(2025, 2, 20)
    )
    assert amount == 501


def test_weekly_pay_periods_divide_more_finely():
    charge = _charge(3000, ChargeFrequency.monthly, date(2025, 3, 14))
    amount = _reserved(
        [charge],
        payday=date(2025, 3, 20),
        frequency=PaydayFrequency.weekly,
        today=date(2025, 2, 20),
    )
    # 22 days away: ceil(22 / 7) = 4 weekly periods.
    assert amount == 750


def test_charges_outside_the_window_are_ignored():
    charges = [
        _charge(1000, ChargeFrequency.weekly, TODAY),
        _charge(1000, ChargeFrequency.weekly, PAYDAY),
        _charge(1000, ChargeFrequency.weekly, date(2025, 3, 10)),
        _charge(1000, ChargeFrequency.weekly, date(2025, 2, 1)),
    ]
    assert _reserved(charges) == 0


def test_unreserved_charges_are_ignored():
    charges = [
        _charge(1000, ChargeFrequency.weekly, date(2025, 2, 25), reserved=False),
        _charge(500, ChargeFrequency.weekly, date(2025, 2, 25)),
    ]
    assert _reserved(charges) == 500


def test_no_payday_configured_reserves_nothing():
    charges = [_charge(3000, ChargeFrequency.weekly, date(2025, 2, 25))]
    assert calculate_reserved_amount(charges, None, PaydayFrequency.monthly, today=TODAY) == 0
    assert calculate_reserved_amount(charges, PAYDAY, None, today=TODAY) == 0


def test_reserved_amount_never_exceeds_eligible_total():
    charges = [
        _charge(700, ChargeFrequency.monthly, date(2025, 2, 24)),
        _charge(1300, ChargeFrequency.yearly, date(2025, 2, 28)),
        _charge(450, ChargeFrequency.weekly, date(2025, 2, 26)),
    ]
    assert 0 <= _reserved(charges) <= 2450


def test_string_dates_are_accepted():
    charges = [_charge(3000, "WEEKLY", "2025-02-25T09:00:00+11:00")]
    assert calculate_reserved_amount(charges, "2025-03-01", "MONTHLY", today=TODAY) == 3000


def test_prorated_reservation_shrinks_as_due_date_moves_out():
    payday = date(2025, 12, 1)
    today = date(2025, 2, 20)
    due_dates = [date(2025, 3, 1) + timedelta(days=10 * step) for step in range(26)]
    amounts = [
        _reserved([_charge(3000, ChargeFrequency.monthly, due)], payday=payday, today=today)
        for due in due_dates
    ]
    assert all(later <= earlier for earlier, later in zip(amounts, amounts[1:]))
    assert amounts[-1] < 3000


def test_unknown_payday_frequency_uses_thirty_day_periods():
    charge = _charge(3000, ChargeFrequency.quarterly, date(2025, 4, 20))
    amount = _reserved(
        [charge], payday=date(2025, 6, 1), frequency="BIWEEKLY", today=date(2025, 2, 20)
    )
    assert amount == 1500

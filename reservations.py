"""Reserved amount: the share of upcoming scheduled charges held back from
the available balance until the next payday."""

from __future__ import annotations

import math
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol

from models import ChargeFrequency, PaydayFrequency
from periods import DateLike, PaydaySettings, to_date

PRORATED_FREQUENCIES = {
    ChargeFrequency.monthly,
    ChargeFrequency.quarterly,
    ChargeFrequency.yearly,
}


class ReservableCharge(Protocol):
    next_charge_date: DateLike
    frequency: object
    amount_cents: int
    is_reserved: bool


def _frequency(value: object) -> Optional[ChargeFrequency]:
    try:
        return ChargeFrequency(value)
    except ValueError:
        return None


def _payday_frequency(value: object) -> Optional[PaydayFrequency]:
    try:
        return PaydayFrequency(value)
    except ValueError:
        return None


def reserved_portion(
    charge: ReservableCharge, today: date, pay_period_days: int
) -> Decimal:
    amount = Decimal(charge.amount_cents)
    if _frequency(charge.frequency) not in PRORATED_FREQUENCIES:
        return amount
    days_until_charge = (to_date(charge.next_charge_date) - today).days
    periods_until_charge = math.ceil(days_until_charge / pay_period_days)
    if periods_until_charge <= 0:
        return amount
    return min(amount / periods_until_charge, amount)


def calculate_reserved_amount(
    charges: Iterable[ReservableCharge],
    next_payday: Optional[DateLike],
    payday_frequency: Optional[object],
    *,
    today: Optional[date] = None,
) -> int:
    """Cents to hold back for charges due after today and before next payday.

    Weekly, fortnightly and one-off charges are reserved in full. Monthly,
    quarterly and yearly charges are spread over the pay periods left until
    they fall due, using fixed 7/14/30 day pay periods.
    """
    payday = to_date(next_payday)
    if payday is None or not payday_frequency:
        return 0
    if today is None:
        from recurrence import local_today

        today = local_today()
    settings = PaydaySettings(payday, _payday_frequency(payday_frequency))
    period_days = settings.period_days

    total = Decimal(0)
    for charge in charges:
        if not charge.is_reserved:
            continue
        due = to_date(charge.next_charge_date)
        if due >= payday or due <= today:
            continue
        total += reserved_portion(charge, today, period_days)
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

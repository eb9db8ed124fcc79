"""Interest accrual for a single loan.

Everything here is a pure function of the loan's ledger fields, its policy and
an as-of date: nothing is read from or written to the database, and the loan
object is never modified. Callers that display or allocate against interest
must go through :func:`interest_due`, which adds the interest locked in at the
last checkpoint and so never reports less than it.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from debt_ledger.models.interest_policy import DAILY, MONTHLY

Q2 = Decimal("0.01")
ZERO = Decimal("0")


def d2(x: Decimal) -> Decimal:
    return x.quantize(Q2, rounding=ROUND_HALF_UP)


def to_dec(v) -> Decimal:
    if v is None:
        return ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def anchor_date(year: int, month: int, anchor_day: int) -> date:
    """The anchor day in the given month, pulled back to the month's last day if it is shorter."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last))


def _shift_month(year: int, month: int, n: int) -> tuple[int, int]:
    m = month - 1 + n
    return year + m // 12, m % 12 + 1


def cycle_bounds(day: date, anchor_day: int) -> tuple[date, date]:
    """Return ``(start, end)`` of the monthly cycle containing ``day``.

    ``start <= day < end``; both bounds are anchor dates.
    """
    a = anchor_date(day.year, day.month, anchor_day)
    if day >= a:
        y, m = _shift_month(day.year, day.month, 1)
        return a, anchor_date(y, m, anchor_day)
    y, m = _shift_month(day.year, day.month, -1)
    return anchor_date(y, m, anchor_day), a


@dataclass(frozen=True)
class AccrualPeriod:
    start: date
    end: date
    days: int
    cycle_days: int | None
    full_cycle: bool
    rate: Decimal
    interest: Decimal


@dataclass(frozen=True)
class PayoffQuote:
    as_of: date
    remaining_principal: Decimal
    interest_due: Decimal
    total_owed: Decimal


def accrual_window(loan, policy, as_of: date) -> tuple[date, date] | None:
    """The ``[start, end)`` span that still has to be priced, or None when it is empty.

    Accrual resumes at the loan's checkpoint date, but never before the grace
    window that follows the loan's start date has run out.
    """
    start = loan.interest_checkpoint_date or loan.start_date
    grace = int(policy.grace_days or 0)
    if grace > 0 and loan.start_date is not None:
        start = max(start, loan.start_date + timedelta(days=grace))
    if as_of <= start:
        return None
    return start, as_of


def _daily_periods(principal: Decimal, rate: Decimal, start: date, end: date) -> list[AccrualPeriod]:
    days = (end - start).days
    return [
        AccrualPeriod(
            start=start,
            end=end,
            days=days,
            cycle_days=None,
            full_cycle=False,
            rate=rate,
            interest=principal * rate * Decimal(days),
        )
    ]


def _monthly_periods(
    principal: Decimal, rate: Decimal, anchor_day: int, start: date, end: date
) -> list[AccrualPeriod]:
    periods: list[AccrualPeriod] = []
    cursor = start
    while cursor < end:
        c_start, c_end = cycle_bounds(cursor, anchor_day)
        p_end = min(c_end, end)
        days = (p_end - cursor).days
        cycle_days = (c_end - c_start).days
        full = cursor == c_start and p_end == c_end

        if full:
            interest = principal * rate
        else:
            interest = principal * rate * Decimal(days) / Decimal(cycle_days)

        periods.append(
            AccrualPeriod(
                start=cursor,
                end=p_end,
                days=days,
                cycle_days=cycle_days,
                full_cycle=full,
                rate=rate,
                interest=interest,
            )
        )
        cursor = p_end
    return periods


def accrual_breakdown(loan, policy, as_of: date) -> list[AccrualPeriod]:
    """Split the live accrual since the checkpoint into priced periods.

    DAILY policies produce a single period. MONTHLY policies produce one period
    per (possibly partial) anchor cycle; whole cycles are charged the full
    monthly rate and partial ones are prorated by the length of that cycle.
    """
    if policy is None:
        return []

    principal = to_dec(loan.remaining_principal)
    if principal <= 0:
        return []

    window = accrual_window(loan, policy, as_of)
    if window is None:
        return []
    return _priced_periods(principal, policy, *window)


def _priced_periods(principal: Decimal, policy, start: date, end: date) -> list[AccrualPeriod]:
    if policy.mode == DAILY:
        return _daily_periods(principal, to_dec(policy.daily_rate), start, end)
    if policy.mode == MONTHLY:
        return _monthly_periods(principal, to_dec(policy.monthly_rate), int(policy.anchor_day or 1), start, end)
    return []


def interest_between(principal, policy, start: date, end: date, loan_start: date | None = None) -> Decimal:
    """Interest a fixed principal earns over ``[start, end)``, rounded to satang.

    Days inside the grace window after ``loan_start`` are free.
    """
    principal = to_dec(principal)
    if policy is None or principal <= 0:
        return ZERO
    grace = int(policy.grace_days or 0)
    if grace > 0 and loan_start is not None:
        start = max(start, loan_start + timedelta(days=grace))
    if end <= start:
        return ZERO
    total = sum((p.interest for p in _priced_periods(principal, policy, start, end)), ZERO)
    return d2(max(total, ZERO))


def calculate_accrued_interest(loan, policy, as_of: date) -> Decimal:
    """Interest accrued since the loan's checkpoint, rounded to satang.

    Does not include ``loan.accrued_interest``; see :func:`interest_due`.
    """
    total = sum((p.interest for p in accrual_breakdown(loan, policy, as_of)), ZERO)
    if total < 0:
        return ZERO
    return d2(total)


def interest_due(loan, policy, as_of: date) -> Decimal:
    """Interest owed as of a date: the carried checkpoint plus live accrual since it.

    Never below ``loan.accrued_interest``. The live part only covers the days
    after the checkpoint date, so the carried amount is added rather than
    compared with a plain max; otherwise unpaid interest would be dropped.
    Loans without a policy only owe their checkpoint.
    """
    checkpoint = to_dec(loan.accrued_interest)
    if policy is None:
        return checkpoint
    return max(checkpoint + calculate_accrued_interest(loan, policy, as_of), checkpoint)


def payoff_quote(loan, policy, on: date) -> PayoffQuote:
    principal = to_dec(loan.remaining_principal)
    due = interest_due(loan, policy, on)
    return PayoffQuote(
        as_of=on,
        remaining_principal=principal,
        interest_due=due,
        total_owed=principal + due,
    )

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from debt_ledger.core.config import settings
from debt_ledger.core.errors import InvalidPolicyConfiguration
from debt_ledger.models.interest_policy import DAILY, MONTHLY
from debt_ledger.services.accrual import to_dec

PERIODS_PER_YEAR = {MONTHLY: 12, DAILY: 365}


@dataclass(frozen=True)
class LegalRateCheck:
    is_legal: bool
    yearly_rate: Decimal
    ceiling: Decimal


def annualize(rate, mode: str) -> Decimal:
    periods = PERIODS_PER_YEAR.get(mode)
    if periods is None:
        raise InvalidPolicyConfiguration(f"unknown interest mode {mode!r}")
    return to_dec(rate) * periods


def check_legal_rate(rate, mode: str, ceiling=None) -> LegalRateCheck:
    """Compare an annualized rate with the statutory ceiling.

    Advisory only: an illegal rate is reported, never rejected.
    """
    cap = to_dec(settings.legal_yearly_rate_ceiling if ceiling is None else ceiling)
    yearly = annualize(rate, mode)
    return LegalRateCheck(is_legal=yearly <= cap, yearly_rate=yearly, ceiling=cap)


def check_policy(policy, ceiling=None) -> LegalRateCheck:
    rate = policy.monthly_rate if policy.mode == MONTHLY else policy.daily_rate
    return check_legal_rate(rate, policy.mode, ceiling=ceiling)

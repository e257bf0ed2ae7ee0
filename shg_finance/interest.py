"""
Interest Calculator Module

Pure functions computing the aggregate repayment figures of a loan:
installment amount, total interest, total repayment amount and installment
count, for flat and reducing-balance interest at monthly or weekly cadence.

Each of the four outputs is rounded to whole currency units independently.
Rounding is not carried across installments, so N x installment may differ
from total_amount by a few units; that imprecision is accepted.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .currency import Number, HUNDRED, round_currency, to_decimal
from .errors import ValidationError, parse_enum


class Cadence(Enum):
    """Repayment / savings period granularity"""
    MONTHLY = "monthly"
    WEEKLY = "weekly"

    @property
    def periods_per_year(self) -> int:
        return 12 if self is Cadence.MONTHLY else 52


class InstallmentType(Enum):
    """Interest model"""
    FLAT = "flat"           # Interest on full principal for whole tenure
    REDUCING = "reducing"   # Interest on outstanding principal each period


class InterestType(Enum):
    """Rate type recorded on the loan (informational)"""
    FIXED = "fixed"
    VARIABLE = "variable"


@dataclass(frozen=True)
class InstallmentQuote:
    """Aggregate figures for one loan"""
    installment_amount: int
    total_interest: int
    total_amount: int
    no_of_installments: int


def validate_terms(principal: Number, annual_rate: Number, tenure: int):
    """Validate and normalize calculator inputs"""
    principal = to_decimal(principal, "principal")
    if principal <= 0:
        raise ValidationError("principal must be greater than 0")

    annual_rate = to_decimal(annual_rate, "interest_rate")
    if annual_rate < 0 or annual_rate > 100:
        raise ValidationError("interest_rate must be between 0 and 100")

    if isinstance(tenure, bool) or not isinstance(tenure, int) or tenure <= 0:
        raise ValidationError("tenure must be a positive whole number of years")

    return principal, annual_rate, tenure


def period_rate(annual_rate: Number, cadence: Cadence) -> Decimal:
    """Per-period rate as a fraction, e.g. 12% monthly -> 0.01"""
    return to_decimal(annual_rate) / HUNDRED / cadence.periods_per_year


def flat_interest(principal: Number, annual_rate: Number, tenure: int,
                  cadence: Cadence) -> InstallmentQuote:
    """
    Flat interest: total_interest = P x R/100 x T.

    Tenure is in years for both cadences; only the installment count scales
    with the cadence.
    """
    principal, annual_rate, tenure = validate_terms(principal, annual_rate, tenure)
    total_interest = principal * (annual_rate / HUNDRED) * tenure
    total_amount = principal + total_interest
    n = tenure * cadence.periods_per_year
    return InstallmentQuote(
        installment_amount=round_currency(total_amount / n),
        total_interest=round_currency(total_interest),
        total_amount=round_currency(total_amount),
        no_of_installments=n,
    )


def reducing_balance(principal: Number, annual_rate: Number, tenure: int,
                     cadence: Cadence) -> InstallmentQuote:
    """
    Reducing balance: installment = P·r·(1+r)^N / ((1+r)^N − 1).

    A zero rate degenerates to P / N.
    """
    principal, annual_rate, tenure = validate_terms(principal, annual_rate, tenure)
    n = tenure * cadence.periods_per_year
    r = period_rate(annual_rate, cadence)

    if r == 0:
        installment = principal / n
    else:
        growth = (1 + r) ** n
        installment = principal * r * growth / (growth - 1)

    total_amount = installment * n
    return InstallmentQuote(
        installment_amount=round_currency(installment),
        total_interest=round_currency(total_amount - principal),
        total_amount=round_currency(total_amount),
        no_of_installments=n,
    )


def calculate_installment(principal: Number, annual_rate: Number, tenure: int,
                          cadence, installment_type) -> InstallmentQuote:
    """Dispatch on interest model"""
    cadence = parse_enum(Cadence, cadence, "installment_frequency")
    installment_type = parse_enum(InstallmentType, installment_type, "installment_type")
    if installment_type is InstallmentType.FLAT:
        return flat_interest(principal, annual_rate, tenure, cadence)
    return reducing_balance(principal, annual_rate, tenure, cadence)

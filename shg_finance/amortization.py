"""
Amortization Breakdown Module

Splits each installment into principal and interest and tracks the remaining
principal after it. The reducing-balance breakdown is a strictly ordered fold:
every step starts from the previous step's rounded remaining principal.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from .currency import Number, round_currency, to_decimal
from .interest import Cadence, InstallmentQuote, InstallmentType, period_rate


@dataclass(frozen=True)
class BreakdownRow:
    """Principal/interest split of one installment"""
    installment_number: int
    principal_component: int
    interest_component: int
    remaining_principal: int


def flat_breakdown(principal: Number, total_interest: int, no_of_installments: int,
                   installment_number: int) -> BreakdownRow:
    """
    Equal split. Remaining principal is derived from the unrounded
    per-installment principal so the final row always lands on exactly 0.
    """
    principal = to_decimal(principal)
    per_principal = principal / no_of_installments
    per_interest = to_decimal(total_interest) / no_of_installments
    return BreakdownRow(
        installment_number=installment_number,
        principal_component=round_currency(per_principal),
        interest_component=round_currency(per_interest),
        remaining_principal=round_currency(principal - per_principal * installment_number),
    )


def reducing_breakdown(remaining_before: Number, rate: Decimal, installment_amount: int,
                       installment_number: int) -> BreakdownRow:
    """One step: interest on the outstanding balance, the rest goes to principal"""
    remaining_before = to_decimal(remaining_before)
    interest = remaining_before * rate
    principal_part = to_decimal(installment_amount) - interest
    return BreakdownRow(
        installment_number=installment_number,
        principal_component=round_currency(principal_part),
        interest_component=round_currency(interest),
        remaining_principal=round_currency(remaining_before - principal_part),
    )


def build_breakdown(principal: Number, annual_rate: Number, quote: InstallmentQuote,
                    cadence: Cadence, installment_type: InstallmentType) -> List[BreakdownRow]:
    """Breakdown rows 1..N for a loan, in installment order"""
    rows = []
    if installment_type is InstallmentType.FLAT:
        for i in range(1, quote.no_of_installments + 1):
            rows.append(flat_breakdown(principal, quote.total_interest,
                                       quote.no_of_installments, i))
        return rows

    rate = period_rate(annual_rate, cadence)
    remaining = principal
    for i in range(1, quote.no_of_installments + 1):
        row = reducing_breakdown(remaining, rate, quote.installment_amount, i)
        rows.append(row)
        remaining = row.remaining_principal
    return rows

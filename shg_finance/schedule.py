"""
Installment Schedule Module

Materializes the ordered EMI rows of a newly approved loan: due dates anchored
on the group's due day, grace-adjusted final due dates, and the principal /
interest split from the amortization breakdown.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from .amortization import build_breakdown
from .currency import Number
from .dates import add_months, clamp_day, next_month_day, next_weekday
from .interest import Cadence, InstallmentQuote, InstallmentType
from .settings import LoanSettings
from .storage import StorageRecord, utc_now


class EmiStatus(Enum):
    """Installment lifecycle states"""
    PENDING = "pending"        # Awaiting payment (or reopened after rejection)
    SUBMITTED = "submitted"    # Payment submitted, awaiting approval
    COMPLETED = "completed"    # Payment approved or settled by pre-closure


@dataclass
class EmiSchedule(StorageRecord):
    """One installment of a loan"""
    shg_group_id: str
    loan_id: str
    member_id: str
    installment_number: int
    due_date: date
    final_due_date: date
    principal_component: int
    interest_component: int
    remaining_principal: int    # As built, never re-derived from payments
    total_installment_amount: int
    status: EmiStatus = EmiStatus.PENDING
    is_penalty_added: bool = False
    penalty_amount: int = 0

    @property
    def amount_due(self) -> int:
        return self.total_installment_amount + self.penalty_amount

    def is_overdue(self, today: date) -> bool:
        return today > self.final_due_date


def emi_id(loan_id: str, installment_number: int) -> str:
    return f"{loan_id}_{installment_number}"


def anchor_date(today: date, cadence: Cadence, due_day: int) -> date:
    """Next occurrence of the due day on or after today"""
    if cadence is Cadence.WEEKLY:
        return next_weekday(today, due_day)
    return next_month_day(today, due_day)


def due_date_for(anchor: date, cadence: Cadence, due_day: int, installment_number: int) -> date:
    """
    anchor + i periods. Monthly dates are computed from the anchor month with
    the due day re-clamped each time, so a short month does not shift later
    installments.
    """
    if cadence is Cadence.WEEKLY:
        return anchor + timedelta(weeks=installment_number)
    month_start = add_months(date(anchor.year, anchor.month, 1), installment_number)
    return clamp_day(month_start.year, month_start.month, due_day)


class ScheduleBuilder:
    """Builds EMI rows from loan terms and loan settings"""

    def build(
        self,
        loan_id: str,
        shg_group_id: str,
        member_id: str,
        principal: Number,
        annual_rate: Number,
        quote: InstallmentQuote,
        cadence: Cadence,
        installment_type: InstallmentType,
        loan_settings: LoanSettings,
        today: date,
    ) -> List[EmiSchedule]:
        due_day = loan_settings.due_day_for(cadence)
        grace = timedelta(days=loan_settings.grace_period_days)
        anchor = anchor_date(today, cadence, due_day)
        breakdown = build_breakdown(principal, annual_rate, quote, cadence, installment_type)

        now = utc_now()
        rows = []
        for row in breakdown:
            due = due_date_for(anchor, cadence, due_day, row.installment_number)
            rows.append(EmiSchedule(
                id=emi_id(loan_id, row.installment_number),
                created_at=now,
                updated_at=now,
                shg_group_id=shg_group_id,
                loan_id=loan_id,
                member_id=member_id,
                installment_number=row.installment_number,
                due_date=due,
                final_due_date=due + grace,
                principal_component=row.principal_component,
                interest_component=row.interest_component,
                remaining_principal=row.remaining_principal,
                total_installment_amount=quote.installment_amount,
            ))
        return rows


def first_pending(installments: List[EmiSchedule]) -> Optional[EmiSchedule]:
    """Lowest-numbered installment still pending"""
    pending = [e for e in installments if e.status is EmiStatus.PENDING]
    return min(pending, key=lambda e: e.installment_number) if pending else None

"""
Pre-closure Module

Early payoff of an active loan. The borrower pays the outstanding principal
balance plus a pre-closure charge (a percentage of that balance). Closing the
loan, settling every still-pending installment, recording the pre-closure and
posting the ledger inflow commit together.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from .currency import Number, percent_of, round_currency, to_amount
from .dates import local_today
from .errors import BusinessRuleError, NotFoundError, StateConflictError, ValidationError
from .ledger import FlowType, GroupLedger, LedgerReference, TransactionType
from .loans import Loan, LoanManager, LoanStatus
from .logging_config import get_logger, log_action
from .notifications import TransactionTemplate
from .schedule import EmiStatus, first_pending
from .settings import SettingsRepository
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("preclosure")


@dataclass
class LoanPreclose(StorageRecord):
    """Terminal record of one pre-closure"""
    shg_group_id: str
    loan_id: str
    total_preclose_amount: int
    principal_amount: int               # Loan balance at closure
    preclose_charge_amount: int
    approved_by: str
    preclose_date: date
    close_on_installment_no: Optional[int] = None   # None when nothing was pending
    notes: Optional[str] = None


@dataclass(frozen=True)
class PrecloseQuote:
    """What it takes to close a loan today"""
    loan_id: str
    principal_balance: int
    preclose_penalty_rate: Decimal
    preclose_penalty_amount: int

    @property
    def required_total(self) -> int:
        return self.principal_balance + self.preclose_penalty_amount


class PreclosureManager:
    """Pre-closure quotes and settlement"""

    def __init__(self, storage: StorageInterface, loans: LoanManager,
                 settings: SettingsRepository, ledger: GroupLedger):
        self.storage = storage
        self.loans = loans
        self.settings = settings
        self.ledger = ledger
        self.table_name = "loan_precloses"

    def _quote(self, loan: Loan) -> PrecloseQuote:
        rate = self.settings.get(loan.shg_group_id).loan_settings.preclose_penalty_rate
        return PrecloseQuote(
            loan_id=loan.id,
            principal_balance=loan.principal_balance,
            preclose_penalty_rate=rate,
            preclose_penalty_amount=round_currency(percent_of(loan.principal_balance, rate)),
        )

    def get_preclose_quote(self, loan_id: str) -> PrecloseQuote:
        """Read-only pre-closure figures for a loan"""
        return self._quote(self.loans.get_loan(loan_id))

    def preclose_loan(
        self,
        shg_group_id: str,
        loan_id: str,
        total_preclose_amount: Number,
        approved_by: str,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LoanPreclose:
        """
        Close a loan early.

        Args:
            shg_group_id: Group owning the loan
            loan_id: Loan to close
            total_preclose_amount: Amount the borrower offers
            approved_by: Member approving the closure, same group
            notes: Free-form notes kept on the pre-closure record
            today: Business date of closure

        Returns:
            The LoanPreclose record

        Raises:
            NotFoundError: Group, loan (in that group) or approver missing
            StateConflictError: Loan is not active
            BusinessRuleError: Offer below principal balance plus charge
        """
        today = today or local_today()
        offered = to_amount(total_preclose_amount, "total_preclose_amount")
        if not approved_by:
            raise ValidationError("approved_by is required")

        directory = self.loans.directory
        directory.get_group(shg_group_id)
        loan = self.loans.get_loan(loan_id)
        if loan.shg_group_id != shg_group_id:
            raise NotFoundError(f"Loan {loan_id} not found in group {shg_group_id}")
        approver = directory.get_member(approved_by)
        if approver.shg_group_id != shg_group_id:
            raise NotFoundError(f"Approving member {approved_by} not found in group {shg_group_id}")
        borrower = directory.get_member(loan.member_id)

        with self.storage.atomic():
            closed = self.storage.update_if(
                self.loans.loans_table, loan.id,
                {"status": LoanStatus.ACTIVE.value},
                {"status": LoanStatus.CLOSED, "is_loan_preclosed": True},
            )
            if closed is None:
                raise StateConflictError(f"Loan {loan_id} is not active")
            loan = Loan.from_dict(closed)

            quote = self._quote(loan)
            if offered < quote.required_total:
                raise BusinessRuleError(
                    f"Total preclose amount {offered} is less than the required "
                    f"amount {quote.required_total}",
                    details={"required_total": quote.required_total,
                             "principal_balance": quote.principal_balance,
                             "preclose_penalty_amount": quote.preclose_penalty_amount}
                )

            schedule = self.loans.get_schedule(loan.id)
            current = first_pending(schedule)
            now = utc_now()
            for emi in schedule:
                if emi.status is EmiStatus.PENDING:
                    emi.status = EmiStatus.COMPLETED
                    emi.updated_at = now
            self.storage.save_many(self.loans.emi_table, [e.to_dict() for e in schedule])

            record = LoanPreclose(
                id=new_id(),
                created_at=now,
                updated_at=now,
                shg_group_id=shg_group_id,
                loan_id=loan.id,
                total_preclose_amount=offered,
                principal_amount=quote.principal_balance,
                preclose_charge_amount=quote.preclose_penalty_amount,
                approved_by=approver.id,
                preclose_date=today,
                close_on_installment_no=current.installment_number if current else None,
                notes=notes,
            )
            self.storage.save(self.table_name, record.id, record.to_dict())

            ledger_notes = self.ledger.renderer.render(TransactionTemplate.LOAN_PRECLOSE, {
                "member_name": borrower.name,
                "amount": offered,
                "loan_id": loan.id,
                "principal_amount": quote.principal_balance,
                "preclose_charge_amount": quote.preclose_penalty_amount,
                "approved_by": approver.name,
                "preclose_date": today.isoformat(),
            })
            self.ledger.record_transaction(
                shg_group_id, offered, FlowType.IN, TransactionType.LOAN_PRECLOSE,
                member_id=loan.member_id,
                reference=LedgerReference.loan_preclose(record.id),
                notes=ledger_notes,
                transaction_date=today,
            )

        log_action(
            logger, "info", f"Loan pre-closed for {offered}",
            user_id=approver.id, action="loan_preclosed", resource=f"loan:{loan.id}",
            extra={"close_on_installment_no": record.close_on_installment_no,
                   "preclose_charge_amount": record.preclose_charge_amount}
        )
        return record

    def get_preclose_record(self, loan_id: str) -> Optional[LoanPreclose]:
        matches = self.storage.find(self.table_name, {"loan_id": loan_id})
        return LoanPreclose.from_dict(matches[0]) if matches else None

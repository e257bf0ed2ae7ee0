"""
Loan Module

Turns an eligible loan application into an active loan: checks the group's
available capital, builds the EMI schedule, and posts the disbursement and
processing fee to the group ledger. All of it commits as one unit.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .applications import ApplicationStatus, LoanApplicationManager
from .dates import local_today
from .errors import BusinessRuleError, NotFoundError, StateConflictError, parse_enum
from .groups import GroupDirectory
from .interest import Cadence, InstallmentType, InterestType, calculate_installment
from .ledger import FlowType, GroupLedger, LedgerReference, TransactionType
from .logging_config import get_logger, log_action
from .notifications import TransactionTemplate
from .schedule import EmiSchedule, EmiStatus, ScheduleBuilder
from .settings import SettingsRepository
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class Loan(StorageRecord):
    """Approved loan snapshot"""
    shg_group_id: str
    loan_application_id: str
    member_id: str
    approved_amount: int
    processing_fee: int
    tenure: int
    interest_rate: Decimal
    interest_type: InterestType
    installment_type: InstallmentType
    installment_frequency: Cadence
    installment_amount: int
    total_interest: int
    total_repayment_amount: int
    principal_balance: int              # Decremented by each approved payment
    no_of_installments: int
    loan_start_date: date
    loan_end_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    is_loan_preclosed: bool = False
    collateral: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE


@dataclass(frozen=True)
class MemberLoanSummary:
    """Repayment position of one member across their loans in a group"""
    total_amount: int
    paid_amount: int

    @property
    def due_amount(self) -> int:
        return self.total_amount - self.paid_amount


class LoanManager:
    """Loan origination and loan queries"""

    def __init__(
        self,
        storage: StorageInterface,
        applications: LoanApplicationManager,
        settings: SettingsRepository,
        ledger: GroupLedger,
        directory: GroupDirectory,
        schedule_builder: Optional[ScheduleBuilder] = None,
    ):
        self.storage = storage
        self.applications = applications
        self.settings = settings
        self.ledger = ledger
        self.directory = directory
        self.schedule_builder = schedule_builder or ScheduleBuilder()
        self.loans_table = "loans"
        self.emi_table = "emi_schedules"

    def create_loan(self, loan_application_id: str, today: Optional[date] = None) -> Loan:
        """
        Approve an application by creating its loan.

        Within one atomic block: re-derive the group balance from the ledger
        and require it to cover the amount, persist the loan and its full EMI
        schedule, mark the application approved, and post the disbursement
        (out) and processing fee (in) entries.

        Raises:
            NotFoundError: Application or settings missing
            StateConflictError: Application is not pending
            BusinessRuleError: Witnesses incomplete or insufficient group balance
        """
        today = today or local_today()
        application = self.applications.get_application(loan_application_id)
        if application.status is not ApplicationStatus.PENDING:
            raise StateConflictError(
                f"Loan application {loan_application_id} is {application.status.value}"
            )
        if not self.applications.is_eligible(loan_application_id):
            raise BusinessRuleError(
                "All witnesses must approve the loan application before the loan is created"
            )

        loan_settings = self.settings.get(application.shg_group_id).loan_settings
        member = self.directory.get_member(application.member_id)

        with self.storage.atomic():
            balance = self.ledger.get_balance(application.shg_group_id)
            if balance < application.amount_requested:
                raise BusinessRuleError(
                    "Insufficient balance in group",
                    details={"balance": balance, "requested": application.amount_requested}
                )

            quote = calculate_installment(
                application.amount_requested, application.interest_rate, application.tenure,
                application.installment_frequency, application.installment_type,
            )
            loan_id = new_id()
            installments = self.schedule_builder.build(
                loan_id=loan_id,
                shg_group_id=application.shg_group_id,
                member_id=application.member_id,
                principal=application.amount_requested,
                annual_rate=application.interest_rate,
                quote=quote,
                cadence=application.installment_frequency,
                installment_type=application.installment_type,
                loan_settings=loan_settings,
                today=today,
            )

            now = utc_now()
            loan = Loan(
                id=loan_id,
                created_at=now,
                updated_at=now,
                shg_group_id=application.shg_group_id,
                loan_application_id=application.id,
                member_id=application.member_id,
                approved_amount=application.amount_requested,
                processing_fee=loan_settings.processing_fee,
                tenure=application.tenure,
                interest_rate=application.interest_rate,
                interest_type=application.interest_type,
                installment_type=application.installment_type,
                installment_frequency=application.installment_frequency,
                installment_amount=quote.installment_amount,
                total_interest=quote.total_interest,
                total_repayment_amount=quote.total_amount,
                principal_balance=application.amount_requested,
                no_of_installments=quote.no_of_installments,
                loan_start_date=installments[0].due_date,
                loan_end_date=installments[-1].final_due_date,
                collateral=application.collateral,
            )
            self.storage.save(self.loans_table, loan.id, loan.to_dict())
            self.storage.save_many(self.emi_table, [e.to_dict() for e in installments])

            approved = self.storage.update_if(
                self.applications.applications_table, application.id,
                {"status": ApplicationStatus.PENDING.value},
                {"status": ApplicationStatus.APPROVED},
            )
            if approved is None:
                raise StateConflictError(f"Loan application {application.id} is no longer pending")

            renderer = self.ledger.renderer
            self.ledger.record_transaction(
                loan.shg_group_id, loan.approved_amount, FlowType.OUT, TransactionType.LOAN_DISBURSED,
                member_id=loan.member_id,
                reference=LedgerReference.loan(loan.id),
                notes=renderer.render(TransactionTemplate.LOAN_APPROVAL, {
                    "member_name": member.name, "amount": loan.approved_amount,
                }),
                transaction_date=today,
            )
            if loan.processing_fee > 0:
                self.ledger.record_transaction(
                    loan.shg_group_id, loan.processing_fee, FlowType.IN,
                    TransactionType.LOAN_PROCESSING_FEE,
                    member_id=loan.member_id,
                    reference=LedgerReference.loan(loan.id),
                    notes=renderer.render(TransactionTemplate.LOAN_PROCESSING_FEE, {
                        "member_name": member.name, "amount": loan.processing_fee,
                        "loan_id": loan.id,
                    }),
                    transaction_date=today,
                )

        log_action(
            logger, "info", f"Loan created for {loan.approved_amount} "
                            f"with {loan.no_of_installments} installments",
            user_id=loan.member_id, action="loan_created", resource=f"loan:{loan.id}",
            extra={"shg_group_id": loan.shg_group_id,
                   "installment_amount": loan.installment_amount,
                   "processing_fee": loan.processing_fee}
        )
        return loan

    def find_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.find_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_loans_by_status(self, shg_group_id: str, status) -> List[Loan]:
        status = parse_enum(LoanStatus, status, "status")
        loans = [Loan.from_dict(d) for d in self.storage.find(
            self.loans_table, {"shg_group_id": shg_group_id, "status": status.value})]
        loans.sort(key=lambda l: l.created_at, reverse=True)
        return loans

    def get_member_loans(self, member_id: str, shg_group_id: Optional[str] = None) -> List[Loan]:
        filters = {"member_id": member_id}
        if shg_group_id:
            filters["shg_group_id"] = shg_group_id
        return [Loan.from_dict(d) for d in self.storage.find(self.loans_table, filters)]

    def get_schedule(self, loan_id: str) -> List[EmiSchedule]:
        """All installments of a loan ordered by installment number"""
        rows = [EmiSchedule.from_dict(d)
                for d in self.storage.find(self.emi_table, {"loan_id": loan_id})]
        rows.sort(key=lambda e: e.installment_number)
        return rows

    def get_installment(self, installment_id: str) -> EmiSchedule:
        data = self.storage.load(self.emi_table, installment_id)
        if data is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        return EmiSchedule.from_dict(data)

    def get_current_installment(self, loan_id: str) -> Optional[EmiSchedule]:
        """Earliest installment not yet completed"""
        self.get_loan(loan_id)
        for emi in self.get_schedule(loan_id):
            if emi.status is not EmiStatus.COMPLETED:
                return emi
        return None

    def get_member_loan_summary(self, member_id: str, shg_group_id: str) -> MemberLoanSummary:
        """Total repayment owed across loans, and what completed installments have covered"""
        loans = self.get_member_loans(member_id, shg_group_id)
        total = sum(loan.total_repayment_amount for loan in loans)
        paid = 0
        for loan in loans:
            for data in self.storage.find(self.emi_table, {
                "loan_id": loan.id, "status": EmiStatus.COMPLETED.value,
            }):
                paid += data["total_installment_amount"]
        return MemberLoanSummary(total_amount=total, paid_amount=paid)

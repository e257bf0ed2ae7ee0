"""
Installment Lifecycle Module

State machine for each EMI row:

    pending --submit--> submitted --approve--> completed
                        submitted --reject---> pending (payment marked failed)
    pending --lateness sweep--> pending with penalty (at most once)

Every transition is a compare-and-set on the installment's current status, so
two concurrent approvals of the same installment cannot both decrement the
loan balance or both post to the ledger.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional

from .currency import Number, to_amount
from .dates import local_today
from .errors import (
    BusinessRuleError, NotFoundError, StateConflictError, ValidationError, parse_enum
)
from .files import ProofStorage, ProofUpload, store_proof
from .ledger import FlowType, GroupLedger, LedgerReference, TransactionType
from .loans import LoanManager, LoanStatus
from .logging_config import get_logger, log_action
from .notifications import TransactionTemplate
from .schedule import EmiSchedule, EmiStatus
from .settings import SettingsRepository
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("installments")


class PaymentStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMode(Enum):
    CASH = "cash"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"


@dataclass
class LoanPayment(StorageRecord):
    """One attempted payment against one installment"""
    shg_group_id: str
    loan_id: str
    emi_schedule_id: str
    member_id: str
    amount_paid: int
    payment_date: date
    payment_mode: PaymentMode
    status: PaymentStatus = PaymentStatus.SUCCESS
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None
    reject_reason: Optional[str] = None
    proof: Optional[str] = None


class InstallmentManager:
    """Payment submission, approval, rejection and lateness penalties"""

    def __init__(
        self,
        storage: StorageInterface,
        loans: LoanManager,
        settings: SettingsRepository,
        ledger: GroupLedger,
        proof_storage: Optional[ProofStorage] = None,
    ):
        self.storage = storage
        self.loans = loans
        self.settings = settings
        self.ledger = ledger
        self.proof_storage = proof_storage
        self.payments_table = "loan_payments"

    @property
    def emi_table(self) -> str:
        return self.loans.emi_table

    def submit_payment(
        self,
        emi_schedule_id: str,
        amount_paid: Number,
        payment_mode,
        payment_date: Optional[date] = None,
        transaction_id: Optional[str] = None,
        remarks: Optional[str] = None,
        proof: Optional[ProofUpload] = None,
    ) -> LoanPayment:
        """
        Record a payment for a pending installment and move it to submitted.

        Neither the loan balance nor the ledger changes until approval.

        Raises:
            StateConflictError: Installment missing or not pending
            BusinessRuleError: Amount below installment plus penalty
        """
        amount = to_amount(amount_paid, "amount_paid")
        mode = parse_enum(PaymentMode, payment_mode, "payment_mode")

        data = self.storage.load(self.emi_table, emi_schedule_id)
        if data is None or data["status"] != EmiStatus.PENDING.value:
            raise StateConflictError("EMI schedule not found or already paid")
        emi = EmiSchedule.from_dict(data)

        if amount < emi.amount_due:
            raise BusinessRuleError(
                f"Amount paid {amount} is less than the amount due {emi.amount_due}",
                details={"amount_due": emi.amount_due,
                         "total_installment_amount": emi.total_installment_amount,
                         "penalty_amount": emi.penalty_amount}
            )

        proof_path = store_proof(self.proof_storage, "loan_payment", proof)

        now = utc_now()
        payment = LoanPayment(
            id=new_id(),
            created_at=now,
            updated_at=now,
            shg_group_id=emi.shg_group_id,
            loan_id=emi.loan_id,
            emi_schedule_id=emi.id,
            member_id=emi.member_id,
            amount_paid=amount,
            payment_date=payment_date or local_today(),
            payment_mode=mode,
            transaction_id=transaction_id,
            remarks=remarks,
            proof=proof_path,
        )

        with self.storage.atomic():
            # Re-check the expected amount so a concurrent penalty is not skipped
            updated = self.storage.update_if(
                self.emi_table, emi.id,
                {"status": EmiStatus.PENDING.value, "penalty_amount": emi.penalty_amount},
                {"status": EmiStatus.SUBMITTED},
            )
            if updated is None:
                raise StateConflictError("EMI schedule not found or already paid")
            self.storage.save(self.payments_table, payment.id, payment.to_dict())

        log_action(
            logger, "info", f"Payment of {amount} submitted for installment {emi.installment_number}",
            user_id=emi.member_id, action="payment_submitted", resource=f"loan_payment:{payment.id}",
            extra={"loan_id": emi.loan_id, "emi_schedule_id": emi.id, "mode": mode.value}
        )
        return payment

    def approve_payment(self, payment_id: str, today: Optional[date] = None) -> LoanPayment:
        """
        Approve a submitted payment: installment completed, loan balance
        decremented by the amount paid, one ledger inflow. All or nothing.
        """
        payment = self.get_payment(payment_id)
        if payment.status is not PaymentStatus.SUCCESS:
            raise StateConflictError(f"Payment {payment_id} was rejected and cannot be approved")
        member = self.loans.directory.get_member(payment.member_id)

        with self.storage.atomic():
            updated = self.storage.update_if(
                self.emi_table, payment.emi_schedule_id,
                {"status": EmiStatus.SUBMITTED.value},
                {"status": EmiStatus.COMPLETED},
            )
            if updated is None:
                raise StateConflictError(
                    f"Installment {payment.emi_schedule_id} is not awaiting approval"
                )
            emi = EmiSchedule.from_dict(updated)

            loan = self.loans.get_loan(payment.loan_id)
            loan.principal_balance -= payment.amount_paid
            loan.updated_at = utc_now()
            self.storage.save(self.loans.loans_table, loan.id, loan.to_dict())

            template = (TransactionTemplate.LOAN_INSTALLMENT_WITH_PENALTY if emi.is_penalty_added
                        else TransactionTemplate.LOAN_INSTALLMENT_WITHOUT_PENALTY)
            notes = self.ledger.renderer.render(template, {
                "member_name": member.name,
                "amount": payment.amount_paid,
                "loan_id": payment.loan_id,
                "installment_number": emi.installment_number,
                "due_date": emi.due_date.isoformat(),
                "penalty_amount": emi.penalty_amount,
            })
            self.ledger.record_transaction(
                payment.shg_group_id, payment.amount_paid, FlowType.IN,
                TransactionType.LOAN_INSTALLMENT,
                member_id=payment.member_id,
                reference=LedgerReference.loan_payment(payment.id),
                notes=notes,
                transaction_date=today,
            )

        log_action(
            logger, "info", f"Payment of {payment.amount_paid} approved",
            user_id=payment.member_id, action="payment_approved",
            resource=f"loan_payment:{payment.id}",
            extra={"loan_id": loan.id, "principal_balance": loan.principal_balance}
        )
        return payment

    def reject_payment(self, payment_id: str, reason: str) -> LoanPayment:
        """Reopen the installment and mark the payment failed; no money moves"""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a payment")
        payment = self.get_payment(payment_id)
        if payment.status is not PaymentStatus.SUCCESS:
            raise StateConflictError(f"Payment {payment_id} was already rejected")

        with self.storage.atomic():
            updated = self.storage.update_if(
                self.emi_table, payment.emi_schedule_id,
                {"status": EmiStatus.SUBMITTED.value},
                {"status": EmiStatus.PENDING},
            )
            if updated is None:
                raise StateConflictError(
                    f"Installment {payment.emi_schedule_id} is not awaiting approval"
                )
            payment.status = PaymentStatus.FAILED
            payment.reject_reason = reason
            payment.updated_at = utc_now()
            self.storage.save(self.payments_table, payment.id, payment.to_dict())

        log_action(
            logger, "info", "Payment rejected",
            user_id=payment.member_id, action="payment_rejected",
            resource=f"loan_payment:{payment.id}", extra={"reason": reason}
        )
        return payment

    def get_payment(self, payment_id: str) -> LoanPayment:
        data = self.storage.load(self.payments_table, payment_id)
        if data is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return LoanPayment.from_dict(data)

    def get_payments(self, emi_schedule_id: str) -> List[LoanPayment]:
        payments = [LoanPayment.from_dict(d) for d in
                    self.storage.find(self.payments_table, {"emi_schedule_id": emi_schedule_id})]
        payments.sort(key=lambda p: p.created_at)
        return payments

    def get_installments_by_status(self, shg_group_id: str, status) -> List[EmiSchedule]:
        status = parse_enum(EmiStatus, status, "status")
        rows = [EmiSchedule.from_dict(d) for d in self.storage.find(
            self.emi_table, {"shg_group_id": shg_group_id, "status": status.value})]
        rows.sort(key=lambda e: (e.due_date, e.installment_number))
        return rows

    def _add_penalty(self, emi: EmiSchedule, penalty: int) -> Optional[EmiSchedule]:
        updated = self.storage.update_if(
            self.emi_table, emi.id,
            {"status": EmiStatus.PENDING.value, "is_penalty_added": False},
            {"penalty_amount": emi.penalty_amount + penalty, "is_penalty_added": True},
        )
        return EmiSchedule.from_dict(updated) if updated else None

    def apply_overdue_penalties(self, shg_group_id: str, today: Optional[date] = None) -> int:
        """
        Lateness sweep: add the group's loan penalty once to every pending
        installment past its final due date. Safe to run repeatedly.

        Returns:
            Number of installments penalized by this run
        """
        today = today or local_today()
        penalty = self.settings.get(shg_group_id).loan_settings.penalty_amount
        if penalty <= 0:
            return 0

        active_loans = {l.id for l in self.loans.get_loans_by_status(shg_group_id, LoanStatus.ACTIVE)}
        candidates = self.storage.find(self.emi_table, {
            "shg_group_id": shg_group_id,
            "status": EmiStatus.PENDING.value,
            "is_penalty_added": False,
        })
        applied = 0
        for data in candidates:
            emi = EmiSchedule.from_dict(data)
            if emi.loan_id not in active_loans or not emi.is_overdue(today):
                continue
            if self._add_penalty(emi, penalty):
                applied += 1

        log_action(
            logger, "info", f"Overdue installment sweep penalized {applied} installments",
            action="installment_penalty_sweep", resource=f"shg_group:{shg_group_id}",
            extra={"penalty_amount": penalty, "as_of": today.isoformat()}
        )
        return applied

    def apply_penalty(self, emi_schedule_id: str, today: Optional[date] = None) -> EmiSchedule:
        """Add the late penalty to a single overdue installment"""
        today = today or local_today()
        emi = self.loans.get_installment(emi_schedule_id)
        if emi.is_penalty_added:
            raise StateConflictError("Penalty already added for this installment")
        if emi.status is not EmiStatus.PENDING:
            raise StateConflictError(f"Installment is {emi.status.value}, penalty not applicable")
        if not emi.is_overdue(today):
            raise BusinessRuleError("Installment is not overdue yet")

        penalty = self.settings.get(emi.shg_group_id).loan_settings.penalty_amount
        if penalty <= 0:
            raise BusinessRuleError("No loan penalty is configured for this group")

        updated = self._add_penalty(emi, penalty)
        if updated is None:
            raise StateConflictError("Installment changed while applying penalty")

        log_action(
            logger, "info", f"Penalty of {penalty} added to installment {emi.installment_number}",
            user_id=emi.member_id, action="installment_penalty_applied",
            resource=f"emi_schedule:{emi.id}"
        )
        return updated

"""
Test suite for loan creation

Tests loan origination from an eligible application: balance check, schedule
materialization, ledger postings and rollback on failure.
"""

import pytest
from datetime import date

from shg_finance.applications import ApplicationStatus
from shg_finance.errors import BusinessRuleError, NotFoundError, StateConflictError
from shg_finance.interest import Cadence
from shg_finance.ledger import FlowType, LedgerReference, TransactionType
from shg_finance.loans import LoanStatus
from shg_finance.schedule import EmiStatus
from shg_finance.settings import GroupSettings
from shg_finance.storage import InMemoryStorage
from shg_finance.system import ShgSystem

TODAY = date(2024, 1, 10)


class TestLoanCreation:
    """Application to active loan"""
    
    def setup_method(self):
        self.system = ShgSystem(storage=InMemoryStorage())
        directory = self.system.directory
        self.group = directory.create_group("Asha SHG")
        self.borrower = directory.add_member(self.group.id, "Lakshmi")
        self.w1 = directory.add_member(self.group.id, "Meena")
        self.w2 = directory.add_member(self.group.id, "Radha")
        self._save_settings(processing_fee=100)
    
    def _save_settings(self, **loan_settings):
        loan_settings.setdefault("monthly_due_day", 5)
        loan_settings.setdefault("weekly_due_day", 1)
        loan_settings.setdefault("grace_period_days", 3)
        self.system.settings.save(GroupSettings.parse({
            "shg_group_id": self.group.id, "loan_settings": loan_settings,
        }))
    
    def _deposit(self, amount):
        self.system.ledger.record_member_deposit(self.group.id, self.w1.id, amount,
                                                 transaction_date=TODAY)
    
    def _application(self, amount=50000, frequency="monthly", approve=True):
        applications = self.system.applications
        application = applications.create_application(
            self.group.id, self.borrower.id, amount, 1, 12, "fixed", "reducing", frequency,
            [self.w1.id, self.w2.id], collateral="Gold chain",
        )
        if approve:
            for witness in (self.w1, self.w2):
                applications.record_witness_action(application.id, witness.id, "approved")
        return application
    
    def test_create_loan(self):
        """Loan is active with terms copied from the application"""
        self._deposit(100000)
        application = self._application()
        
        loan = self.system.loans.create_loan(application.id, today=TODAY)
        
        assert loan.status == LoanStatus.ACTIVE
        assert loan.approved_amount == 50000
        assert loan.principal_balance == 50000
        assert loan.installment_amount == 4442
        assert loan.no_of_installments == 12
        assert loan.installment_frequency == Cadence.MONTHLY
        assert loan.processing_fee == 100
        assert loan.collateral == "Gold chain"
        assert loan.loan_start_date == date(2024, 3, 5)
        assert loan.loan_end_date == date(2025, 2, 8)
        assert self.system.loans.get_loan(loan.id) == loan
        
        application = self.system.applications.get_application(application.id)
        assert application.status == ApplicationStatus.APPROVED
    
    def test_schedule_materialized(self):
        self._deposit(100000)
        loan = self.system.loans.create_loan(self._application().id, today=TODAY)
        
        schedule = self.system.loans.get_schedule(loan.id)
        
        assert [e.installment_number for e in schedule] == list(range(1, 13))
        assert all(e.status == EmiStatus.PENDING for e in schedule)
        assert all(e.total_installment_amount == 4442 for e in schedule)
        assert schedule[0].id == f"{loan.id}_1"
        assert schedule[0].final_due_date == date(2024, 3, 8)
        assert abs(schedule[-1].remaining_principal) <= 12
        assert self.system.loans.get_current_installment(loan.id).installment_number == 1
    
    def test_ledger_postings(self):
        """Disbursement out and processing fee in, both referencing the loan"""
        self._deposit(100000)
        loan = self.system.loans.create_loan(self._application().id, today=TODAY)
        
        entries = self.system.ledger.get_transactions(
            self.group.id, reference=LedgerReference.loan(loan.id)
        )
        by_type = {e.transaction_type: e for e in entries}
        
        assert len(entries) == 2
        assert by_type[TransactionType.LOAN_DISBURSED].flow_type == FlowType.OUT
        assert by_type[TransactionType.LOAN_DISBURSED].amount == 50000
        assert by_type[TransactionType.LOAN_PROCESSING_FEE].flow_type == FlowType.IN
        assert by_type[TransactionType.LOAN_PROCESSING_FEE].amount == 100
        assert by_type[TransactionType.LOAN_DISBURSED].member_id == self.borrower.id
        assert self.system.ledger.get_balance(self.group.id) == 50100
    
    def test_zero_fee_posts_no_fee_entry(self):
        self._save_settings(processing_fee=0)
        self._deposit(100000)
        loan = self.system.loans.create_loan(self._application().id, today=TODAY)
        
        entries = self.system.ledger.get_transactions(
            self.group.id, reference=LedgerReference.loan(loan.id)
        )
        
        assert [e.transaction_type for e in entries] == [TransactionType.LOAN_DISBURSED]
    
    def test_insufficient_balance_changes_nothing(self):
        """Rejected disbursement leaves no loan, schedule or ledger entry behind"""
        self._deposit(10000)
        application = self._application()
        
        with pytest.raises(BusinessRuleError, match="Insufficient balance in group"):
            self.system.loans.create_loan(application.id, today=TODAY)
        
        assert self.system.storage.count("loans") == 0
        assert self.system.storage.count("emi_schedules") == 0
        assert self.system.ledger.get_balance(self.group.id) == 10000
        assert len(self.system.ledger.get_transactions(self.group.id)) == 1
        assert self.system.applications.get_application(application.id).status == \
            ApplicationStatus.PENDING
    
    def test_exact_balance_is_enough(self):
        self._deposit(50000)
        loan = self.system.loans.create_loan(self._application().id, today=TODAY)
        
        assert self.system.ledger.get_balance(self.group.id) == 100
        assert loan.is_active
    
    def test_witnesses_must_approve(self):
        self._deposit(100000)
        application = self._application(approve=False)
        
        with pytest.raises(BusinessRuleError, match="witnesses must approve"):
            self.system.loans.create_loan(application.id, today=TODAY)
    
    def test_application_used_once(self):
        self._deposit(200000)
        application = self._application()
        self.system.loans.create_loan(application.id, today=TODAY)
        
        with pytest.raises(StateConflictError):
            self.system.loans.create_loan(application.id, today=TODAY)
        assert self.system.storage.count("loans") == 1
    
    def test_weekly_loan(self):
        self._deposit(100000)
        loan = self.system.loans.create_loan(self._application(frequency="weekly").id, today=TODAY)
        
        schedule = self.system.loans.get_schedule(loan.id)
        
        assert loan.no_of_installments == 52
        assert len(schedule) == 52
        assert schedule[0].due_date == date(2024, 1, 22)
        assert schedule[1].due_date == date(2024, 1, 29)
    
    def test_unknown_application(self):
        with pytest.raises(NotFoundError):
            self.system.loans.create_loan("missing", today=TODAY)


class TestLoanQueries:
    """Loan lookups and member summary"""
    
    def setup_method(self):
        self.system = ShgSystem(storage=InMemoryStorage())
        directory = self.system.directory
        self.group = directory.create_group("Asha SHG")
        self.borrower = directory.add_member(self.group.id, "Lakshmi")
        w1 = directory.add_member(self.group.id, "Meena")
        w2 = directory.add_member(self.group.id, "Radha")
        self.system.settings.save(GroupSettings(shg_group_id=self.group.id))
        self.system.ledger.record_member_deposit(self.group.id, w1.id, 100000)
        
        applications = self.system.applications
        application = applications.create_application(
            self.group.id, self.borrower.id, 12000, 1, 0, "fixed", "flat", "monthly", [w1.id, w2.id]
        )
        for witness in (w1, w2):
            applications.record_witness_action(application.id, witness.id, "approved")
        self.loan = self.system.loans.create_loan(application.id, today=TODAY)
    
    def test_loans_by_status(self):
        assert [l.id for l in self.system.loans.get_loans_by_status(self.group.id, "active")] == \
            [self.loan.id]
        assert self.system.loans.get_loans_by_status(self.group.id, LoanStatus.CLOSED) == []
    
    def test_member_loans(self):
        assert len(self.system.loans.get_member_loans(self.borrower.id)) == 1
        assert self.system.loans.find_loan("missing") is None
        with pytest.raises(NotFoundError):
            self.system.loans.get_loan("missing")
    
    def test_member_summary(self):
        first = self.system.loans.get_schedule(self.loan.id)[0]
        payment = self.system.installments.submit_payment(first.id, 1000, "cash",
                                                          payment_date=TODAY)
        self.system.installments.approve_payment(payment.id, today=TODAY)
        
        summary = self.system.loans.get_member_loan_summary(self.borrower.id, self.group.id)
        
        assert summary.total_amount == 12000
        assert summary.paid_amount == 1000
        assert summary.due_amount == 11000

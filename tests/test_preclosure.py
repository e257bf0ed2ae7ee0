"""
Test suite for loan pre-closure

Tests the pre-closure quote, the minimum offer rule and the all-or-nothing
settlement of a pre-closed loan.
"""

import pytest
from datetime import date
from decimal import Decimal

from shg_finance.errors import (
    BusinessRuleError, NotFoundError, StateConflictError, ValidationError
)
from shg_finance.ledger import FlowType, LedgerReference, TransactionType
from shg_finance.loans import LoanStatus
from shg_finance.schedule import EmiStatus
from shg_finance.settings import GroupSettings
from shg_finance.storage import InMemoryStorage
from shg_finance.system import ShgSystem

TODAY = date(2024, 1, 10)


class TestPreclosure:
    """Early payoff of a 10,000 loan at a 2% pre-closure charge"""
    
    def setup_method(self):
        self.system = ShgSystem(storage=InMemoryStorage())
        self.preclosure = self.system.preclosure
        directory = self.system.directory
        self.group = directory.create_group("Asha SHG")
        self.borrower = directory.add_member(self.group.id, "Lakshmi")
        self.treasurer = directory.add_member(self.group.id, "Meena")
        self.w2 = directory.add_member(self.group.id, "Radha")
        self.system.settings.save(GroupSettings.parse({
            "shg_group_id": self.group.id,
            "loan_settings": {"monthly_due_day": 5, "preclose_penalty_rate": "2"},
        }))
        self.system.ledger.record_member_deposit(self.group.id, self.treasurer.id, 20000,
                                                 transaction_date=TODAY)
        
        applications = self.system.applications
        application = applications.create_application(
            self.group.id, self.borrower.id, 10000, 1, 12, "fixed", "reducing", "monthly",
            [self.treasurer.id, self.w2.id]
        )
        for witness in (self.treasurer, self.w2):
            applications.record_witness_action(application.id, witness.id, "approved")
        self.loan = self.system.loans.create_loan(application.id, today=TODAY)
    
    def _preclose(self, amount, **kwargs):
        return self.preclosure.preclose_loan(
            self.group.id, self.loan.id, amount, self.treasurer.id, today=date(2024, 6, 1), **kwargs
        )
    
    def preclose_entries(self):
        return self.system.ledger.get_transactions(
            self.group.id, transaction_types=[TransactionType.LOAN_PRECLOSE]
        )
    
    def test_quote(self):
        quote = self.preclosure.get_preclose_quote(self.loan.id)
        
        assert quote.principal_balance == 10000
        assert quote.preclose_penalty_rate == Decimal('2')
        assert quote.preclose_penalty_amount == 200
        assert quote.required_total == 10200
    
    def test_offer_below_required_changes_nothing(self):
        with pytest.raises(BusinessRuleError, match="less than the required amount 10200"):
            self._preclose(10000)
        
        loan = self.system.loans.get_loan(self.loan.id)
        assert loan.status == LoanStatus.ACTIVE
        assert not loan.is_loan_preclosed
        assert all(e.status == EmiStatus.PENDING for e in self.system.loans.get_schedule(loan.id))
        assert self.preclosure.get_preclose_record(loan.id) is None
        assert self.preclose_entries() == []
    
    def test_preclose_loan(self):
        """Loan closed, pending installments settled, one ledger inflow"""
        record = self._preclose(10200, notes="Sold harvest")
        
        loan = self.system.loans.get_loan(self.loan.id)
        assert loan.status == LoanStatus.CLOSED
        assert loan.is_loan_preclosed
        assert all(e.status == EmiStatus.COMPLETED
                   for e in self.system.loans.get_schedule(loan.id))
        
        assert record.total_preclose_amount == 10200
        assert record.principal_amount == 10000
        assert record.preclose_charge_amount == 200
        assert record.close_on_installment_no == 1
        assert record.preclose_date == date(2024, 6, 1)
        assert record.notes == "Sold harvest"
        assert self.preclosure.get_preclose_record(loan.id) == record
        
        entries = self.preclose_entries()
        assert len(entries) == 1
        assert entries[0].flow_type == FlowType.IN
        assert entries[0].amount == 10200
        assert entries[0].reference == LedgerReference.loan_preclose(record.id)
        assert "approved by Meena" in entries[0].notes
    
    def test_overpayment_accepted(self):
        record = self._preclose(10500)
        
        assert record.total_preclose_amount == 10500
        assert self.preclose_entries()[0].amount == 10500
    
    def test_preclose_after_payments(self):
        """Charge is computed on the remaining balance; completed rows stay completed"""
        first = self.system.loans.get_schedule(self.loan.id)[0]
        payment = self.system.installments.submit_payment(first.id, first.amount_due, "cash")
        self.system.installments.approve_payment(payment.id, today=TODAY)
        balance = self.system.loans.get_loan(self.loan.id).principal_balance
        
        quote = self.preclosure.get_preclose_quote(self.loan.id)
        record = self._preclose(quote.required_total)
        
        assert quote.principal_balance == balance
        assert record.close_on_installment_no == 2
    
    def test_submitted_installment_left_alone(self):
        first = self.system.loans.get_schedule(self.loan.id)[0]
        self.system.installments.submit_payment(first.id, first.amount_due, "cash")
        
        self._preclose(10200)
        
        schedule = self.system.loans.get_schedule(self.loan.id)
        assert schedule[0].status == EmiStatus.SUBMITTED
        assert all(e.status == EmiStatus.COMPLETED for e in schedule[1:])
    
    def test_closed_loan_cannot_be_preclosed_again(self):
        self._preclose(10200)
        
        with pytest.raises(StateConflictError, match="is not active"):
            self._preclose(10200)
        assert len(self.preclose_entries()) == 1
    
    def test_wrong_group_or_approver(self):
        other = self.system.directory.create_group("Other SHG")
        outsider = self.system.directory.add_member(other.id, "Outsider")
        
        with pytest.raises(NotFoundError, match="not found in group"):
            self.preclosure.preclose_loan(other.id, self.loan.id, 10200, outsider.id)
        with pytest.raises(NotFoundError, match="Approving member"):
            self.preclosure.preclose_loan(self.group.id, self.loan.id, 10200, outsider.id)
    
    def test_approver_required(self):
        with pytest.raises(ValidationError, match="approved_by is required"):
            self.preclosure.preclose_loan(self.group.id, self.loan.id, 10200, "")
    
    def test_installments_of_closed_loan_not_penalized(self):
        self._preclose(10200)
        
        assert self.system.installments.apply_overdue_penalties(
            self.group.id, date(2025, 6, 1)) == 0
    
    def test_long_member_name_does_not_block_preclosure(self):
        """Generated notes are cut to the ledger limit rather than rejected"""
        borrower = self.system.directory.add_member(self.group.id, "Lakshmi " * 50)
        applications = self.system.applications
        application = applications.create_application(
            self.group.id, borrower.id, 10000, 1, 12, "fixed", "reducing", "monthly",
            [self.treasurer.id, self.w2.id]
        )
        for witness in (self.treasurer, self.w2):
            applications.record_witness_action(application.id, witness.id, "approved")
        loan = self.system.loans.create_loan(application.id, today=TODAY)
        
        record = self.preclosure.preclose_loan(self.group.id, loan.id, 10200, self.treasurer.id,
                                               today=date(2024, 6, 1))
        
        assert self.system.loans.get_loan(loan.id).status == LoanStatus.CLOSED
        entry = self.system.ledger.get_transactions(
            self.group.id, reference=LedgerReference.loan_preclose(record.id)
        )[0]
        assert entry.amount == 10200
        assert len(entry.notes) == 500
        assert entry.notes.endswith("...")

"""
Test suite for the group ledger

Tests entry validation, append-only recording, typed references, filtering
and balance derivation.
"""

import pytest
from datetime import date

from shg_finance.errors import NotFoundError, ValidationError
from shg_finance.ledger import (
    BalanceSheet, FlowType, GroupLedger, GroupTransaction, LedgerReference, ReferenceModel,
    TransactionType
)
from shg_finance.groups import GroupDirectory
from shg_finance.notifications import NotesRenderer, TransactionTemplate
from shg_finance.storage import InMemoryStorage


class TestLedgerRecording:
    """Recording entries"""
    
    def setup_method(self):
        self.storage = InMemoryStorage()
        self.directory = GroupDirectory(self.storage)
        self.ledger = GroupLedger(self.storage, self.directory)
        self.group = self.directory.create_group("Asha SHG")
        self.member = self.directory.add_member(self.group.id, "Lakshmi")
    
    def test_record_inflow(self):
        """Member deposit lands as an inflow with rendered notes"""
        entry = self.ledger.record_member_deposit(
            self.group.id, self.member.id, 5000, transaction_date=date(2024, 1, 10)
        )
        
        assert entry.flow_type == FlowType.IN
        assert entry.transaction_type == TransactionType.USER_DEPOSIT
        assert entry.amount == 5000
        assert entry.transaction_date == date(2024, 1, 10)
        assert entry.notes == "Lakshmi deposited 5000 into the group fund"
        assert self.ledger.get_transaction(entry.id) == entry
    
    def test_enum_values_accepted_as_strings(self):
        entry = self.ledger.record_transaction(
            self.group.id, 300, "OUT", "group_expense", is_group_activity=True
        )
        
        assert entry.flow_type == FlowType.OUT
        assert entry.transaction_type == TransactionType.GROUP_EXPENSE
        assert entry.member_id is None
    
    def test_reference_is_typed(self):
        entry = self.ledger.record_transaction(
            self.group.id, 100, FlowType.IN, TransactionType.OTHERS,
            member_id=self.member.id, reference=LedgerReference.savings("sav-1")
        )
        
        assert entry.reference_model == ReferenceModel.SAVINGS
        assert entry.reference == LedgerReference(ReferenceModel.SAVINGS, "sav-1")
    
    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError, match="greater than 0"):
            self.ledger.record_transaction(self.group.id, 0, FlowType.IN, TransactionType.OTHERS,
                                           member_id=self.member.id)
        with pytest.raises(ValidationError):
            self.ledger.record_transaction(self.group.id, -10, FlowType.IN, TransactionType.OTHERS,
                                           member_id=self.member.id)
    
    def test_fractional_amount_rejected(self):
        with pytest.raises(ValidationError, match="whole currency amount"):
            self.ledger.record_transaction(self.group.id, 10.5, FlowType.IN,
                                           TransactionType.OTHERS, member_id=self.member.id)
    
    def test_invalid_enums_rejected(self):
        with pytest.raises(ValidationError, match="Invalid flow_type"):
            self.ledger.record_transaction(self.group.id, 10, "sideways", TransactionType.OTHERS,
                                           member_id=self.member.id)
        with pytest.raises(ValidationError, match="Invalid transaction_type"):
            self.ledger.record_transaction(self.group.id, 10, FlowType.IN, "gift",
                                           member_id=self.member.id)
    
    def test_member_required_unless_group_activity(self):
        with pytest.raises(ValidationError, match="member_id is required"):
            self.ledger.record_transaction(self.group.id, 10, FlowType.IN, TransactionType.OTHERS)
    
    def test_notes_length_limit(self):
        with pytest.raises(ValidationError, match="at most 500 characters"):
            self.ledger.record_transaction(self.group.id, 10, FlowType.IN, TransactionType.OTHERS,
                                           member_id=self.member.id, notes="x" * 501)
    
    def test_invalid_reference_model(self):
        with pytest.raises(ValidationError, match="Invalid reference model"):
            LedgerReference("loan", "abc")
    
    def test_unknown_group_and_foreign_member(self):
        other = self.directory.create_group("Other SHG")
        outsider = self.directory.add_member(other.id, "Outsider")
        
        with pytest.raises(NotFoundError):
            self.ledger.record_transaction("missing", 10, FlowType.IN, TransactionType.OTHERS,
                                           is_group_activity=True)
        with pytest.raises(ValidationError, match="does not belong"):
            self.ledger.record_transaction(self.group.id, 10, FlowType.IN, TransactionType.OTHERS,
                                           member_id=outsider.id)
    
    def test_failed_validation_writes_nothing(self):
        with pytest.raises(ValidationError):
            self.ledger.record_transaction(self.group.id, 0, FlowType.IN, TransactionType.OTHERS,
                                           member_id=self.member.id)
        
        assert self.ledger.get_transactions(self.group.id) == []
    
    def test_deposit_uses_directory_name(self):
        other = self.directory.create_group("Other SHG")
        outsider = self.directory.add_member(other.id, "Outsider")
        
        with pytest.raises(ValidationError, match="does not belong"):
            self.ledger.record_member_deposit(self.group.id, outsider.id, 100)
        assert self.ledger.get_transactions(self.group.id) == []
    
    def test_deposit_requires_directory(self):
        ledger = GroupLedger(self.storage)
        
        with pytest.raises(ValidationError, match="group directory is required"):
            ledger.record_member_deposit(self.group.id, self.member.id, 100)


class TestLedgerQueries:
    """Balances and filtering"""
    
    def setup_method(self):
        self.storage = InMemoryStorage()
        self.directory = GroupDirectory(self.storage)
        self.ledger = GroupLedger(self.storage, self.directory)
        self.group = self.directory.create_group("Asha SHG")
        self.other_group = self.directory.create_group("Other SHG")
        self.alice = self.directory.add_member(self.group.id, "Alice")
        self.bina = self.directory.add_member(self.group.id, "Bina")
        
        self.ledger.record_member_deposit(self.group.id, self.alice.id, 1000,
                                          transaction_date=date(2024, 1, 1))
        self.ledger.record_member_deposit(self.group.id, self.bina.id, 500,
                                          transaction_date=date(2024, 1, 15))
        self.ledger.record_transaction(self.group.id, 300, FlowType.OUT,
                                       TransactionType.GROUP_EXPENSE, is_group_activity=True,
                                       transaction_date=date(2024, 2, 1))
        self.ledger.record_transaction(self.other_group.id, 9999, FlowType.IN,
                                       TransactionType.OTHERS, is_group_activity=True)
    
    def test_balance_is_inflows_minus_outflows(self):
        totals = self.ledger.get_totals(self.group.id)
        
        assert totals.total_in == 1500
        assert totals.total_out == 300
        assert totals.balance == 1200
        assert self.ledger.get_balance(self.group.id) == 1200
    
    def test_balance_matches_signed_sum(self):
        entries = self.ledger.get_transactions(self.group.id)
        
        assert sum(e.signed_amount for e in entries) == self.ledger.get_balance(self.group.id)
    
    def test_empty_group_balance(self):
        empty = self.directory.create_group("Empty SHG")
        
        assert self.ledger.get_balance(empty.id) == 0
    
    def test_filter_by_member_and_flow(self):
        assert len(self.ledger.get_transactions(self.group.id, member_id=self.alice.id)) == 1
        outflows = self.ledger.get_transactions(self.group.id, flow_types=["out"])
        assert [e.amount for e in outflows] == [300]
    
    def test_filter_by_type_and_dates(self):
        deposits = self.ledger.get_transactions(
            self.group.id, transaction_types=[TransactionType.USER_DEPOSIT]
        )
        assert len(deposits) == 2
        
        january = self.ledger.get_transactions(
            self.group.id, start_date=date(2024, 1, 10), end_date=date(2024, 1, 31)
        )
        assert [e.amount for e in january] == [500]
    
    def test_newest_first(self):
        entries = self.ledger.get_transactions(self.group.id)
        
        assert entries[0].amount == 300
        assert all(isinstance(e, GroupTransaction) for e in entries)

    def test_totals_for_date_range_and_member(self):
        january = self.ledger.get_totals(self.group.id, start_date=date(2024, 1, 10),
                                         end_date=date(2024, 1, 31))
        assert (january.total_in, january.total_out) == (500, 0)
    
        alice = self.ledger.get_totals(self.group.id, member_id=self.alice.id)
        assert (alice.total_in, alice.total_out) == (1000, 0)
    
    def record_march_activity(self):
        march = date(2024, 3, 5)
        self.ledger.record_transaction(self.group.id, 200, FlowType.IN,
                                       TransactionType.SAVINGS_DEPOSIT,
                                       member_id=self.alice.id, transaction_date=march)
        for amount, flow, kind in ((800, FlowType.OUT, TransactionType.LOAN_DISBURSED),
                                   (150, FlowType.IN, TransactionType.LOAN_INSTALLMENT),
                                   (50, FlowType.IN, TransactionType.LOAN_PROCESSING_FEE)):
            self.ledger.record_transaction(self.group.id, amount, flow, kind,
                                           member_id=self.bina.id, transaction_date=march)
        self.ledger.record_transaction(self.group.id, 40, FlowType.OUT, TransactionType.OTHERS,
                                       is_group_activity=True, transaction_date=march)
    
    def test_balance_sheet(self):
        self.record_march_activity()
    
        sheet = self.ledger.get_balance_sheet(self.group.id, date(2024, 1, 1), date(2024, 3, 31))
    
        assert sheet == BalanceSheet(
            total_deposit=1500, total_savings=200, total_loan_disbursed=800,
            interest_earned=150, other_income=50, other_expenses=340,
        )
    
    def test_balance_sheet_for_member_and_range(self):
        self.record_march_activity()
    
        bina = self.ledger.get_balance_sheet(self.group.id, date(2024, 1, 1), date(2024, 3, 31),
                                             member_id=self.bina.id)
        assert bina.total_deposit == 500
        assert bina.total_loan_disbursed == 800
        assert bina.other_income == 50
        assert bina.total_savings == 0
        assert bina.other_expenses == 0
    
        february = self.ledger.get_balance_sheet(self.group.id, date(2024, 2, 1),
                                                 date(2024, 2, 29))
        assert february.other_expenses == 300
        assert february.total_deposit == 0
    
    def test_balance_sheet_rejects_inverted_range(self):
        with pytest.raises(ValidationError, match="start_date must not be after end_date"):
            self.ledger.get_balance_sheet(self.group.id, date(2024, 3, 1), date(2024, 1, 1))
    
    def test_group_summary(self):
        self.record_march_activity()
    
        summary = self.ledger.get_group_summary(self.group.id, member_id=self.alice.id)
    
        assert summary.total_in == 1900
        assert summary.current_balance == 760
        assert summary.current_balance == self.ledger.get_balance(self.group.id)
        assert summary.member_net == 1200
        assert summary.total_savings == 200
        assert summary.total_loans == 800
    
    def test_group_summary_unknown_group(self):
        with pytest.raises(NotFoundError):
            self.ledger.get_group_summary("missing")


class TestNotesRenderer:
    """Notes templates"""
    
    def test_render_default_template(self):
        renderer = NotesRenderer()
        
        notes = renderer.render(TransactionTemplate.LOAN_APPROVAL,
                                {"member_name": "Lakshmi", "amount": 10000})
        
        assert notes == "Loan of 10000 disbursed to Lakshmi"
    
    def test_override_template(self):
        renderer = NotesRenderer({TransactionTemplate.USER_DEPOSIT: "{member_name}: +{amount}"})
        
        assert renderer.render(TransactionTemplate.USER_DEPOSIT,
                               {"member_name": "A", "amount": 5}) == "A: +5"
    
    def test_missing_key(self):
        with pytest.raises(ValidationError, match="missing key"):
            NotesRenderer().render(TransactionTemplate.LOAN_APPROVAL, {"amount": 1})
    
    def test_long_output_truncated(self):
        renderer = NotesRenderer(max_length=20)
        
        notes = renderer.render(TransactionTemplate.LOAN_APPROVAL,
                                {"member_name": "Lakshmi " * 10, "amount": 10000})
        
        assert len(notes) == 20
        assert notes == "Loan of 10000 dis..."
    
    def test_default_limit_keeps_deposit_recordable(self):
        storage = InMemoryStorage()
        directory = GroupDirectory(storage)
        ledger = GroupLedger(storage, directory)
        group = directory.create_group("Asha SHG")
        member = directory.add_member(group.id, "Lakshmi " * 80)
        
        entry = ledger.record_member_deposit(group.id, member.id, 100)
        
        assert len(entry.notes) == 500
        assert entry.notes.endswith("...")

"""
Group Ledger Module

Append-only record of money moving in and out of a group's pooled fund.
Every money-moving event in the engine funnels through GroupLedger.record_transaction.
Entries are never updated or deleted, and the group balance is always
re-derived from the entries (sum of inflows minus sum of outflows); no running
balance is stored anywhere.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .config import get_config
from .currency import Number, to_amount
from .dates import local_today
from .errors import ValidationError, parse_enum
from .groups import GroupDirectory
from .logging_config import get_logger, log_action
from .notifications import NotesRenderer, TransactionTemplate
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("ledger")


class FlowType(Enum):
    """Direction of money relative to the group fund"""
    IN = "in"
    OUT = "out"


class TransactionType(Enum):
    """Kinds of group transactions"""
    USER_DEPOSIT = "user_deposit"
    SAVINGS_DEPOSIT = "savings_deposit"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_PROCESSING_FEE = "loan_processing_fee"
    LOAN_INSTALLMENT = "loan_installment"
    LOAN_PRECLOSE = "loan_preclose"
    GROUP_EXPENSE = "group_expense"
    WITHDRAWAL_SAVINGS = "withdrawal_savings"
    OTHERS = "others"


class ReferenceModel(Enum):
    """Entity kinds a ledger entry can point back to"""
    LOAN = "loan"
    LOAN_PAYMENT = "loan_payment"
    LOAN_PRECLOSE = "loan_preclose"
    SAVINGS = "savings"


@dataclass(frozen=True)
class LedgerReference:
    """Typed link from a ledger entry to its originating record"""
    model: ReferenceModel
    record_id: str

    def __post_init__(self):
        if not isinstance(self.model, ReferenceModel):
            raise ValidationError(f"Invalid reference model '{self.model}'")
        if not self.record_id:
            raise ValidationError("Reference id is required")

    @classmethod
    def loan(cls, loan_id: str) -> 'LedgerReference':
        return cls(ReferenceModel.LOAN, loan_id)

    @classmethod
    def loan_payment(cls, payment_id: str) -> 'LedgerReference':
        return cls(ReferenceModel.LOAN_PAYMENT, payment_id)

    @classmethod
    def loan_preclose(cls, preclose_id: str) -> 'LedgerReference':
        return cls(ReferenceModel.LOAN_PRECLOSE, preclose_id)

    @classmethod
    def savings(cls, savings_id: str) -> 'LedgerReference':
        return cls(ReferenceModel.SAVINGS, savings_id)


@dataclass
class GroupTransaction(StorageRecord):
    """Immutable ledger entry"""
    shg_group_id: str
    amount: int
    flow_type: FlowType
    transaction_type: TransactionType
    transaction_date: date
    member_id: Optional[str] = None
    reference_model: Optional[ReferenceModel] = None
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    is_group_activity: bool = False

    @property
    def reference(self) -> Optional[LedgerReference]:
        if self.reference_model is None:
            return None
        return LedgerReference(self.reference_model, self.reference_id)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.flow_type is FlowType.IN else -self.amount


@dataclass(frozen=True)
class LedgerTotals:
    """Aggregate position of a group's fund"""
    total_in: int
    total_out: int

    @property
    def balance(self) -> int:
        return self.total_in - self.total_out


BALANCE_SHEET_LINES = (
    "total_deposit", "total_savings", "total_loan_disbursed",
    "interest_earned", "other_income", "other_expenses",
)


@dataclass(frozen=True)
class BalanceSheet:
    """Ledger activity over a period, by balance sheet line"""
    total_deposit: int
    total_savings: int
    total_loan_disbursed: int
    interest_earned: int        # Installment collections, principal included
    other_income: int
    other_expenses: int


@dataclass(frozen=True)
class GroupSummary:
    """Headline position of a group, and of one member within it"""
    total_in: int
    current_balance: int
    member_net: int             # Member inflows minus outflows; 0 without a member
    total_savings: int
    total_loans: int


_OTHER_INCOME = (TransactionType.OTHERS, TransactionType.LOAN_PROCESSING_FEE,
                 TransactionType.LOAN_PRECLOSE)
_OTHER_EXPENSES = (TransactionType.OTHERS, TransactionType.GROUP_EXPENSE,
                   TransactionType.WITHDRAWAL_SAVINGS)


def _balance_sheet_line(transaction_type: TransactionType, flow_type: FlowType) -> Optional[str]:
    if transaction_type is TransactionType.SAVINGS_DEPOSIT:
        return "total_savings"
    if transaction_type is TransactionType.USER_DEPOSIT:
        return "total_deposit"
    if transaction_type is TransactionType.LOAN_DISBURSED:
        return "total_loan_disbursed"
    if transaction_type is TransactionType.LOAN_INSTALLMENT:
        return "interest_earned"
    if flow_type is FlowType.IN and transaction_type in _OTHER_INCOME:
        return "other_income"
    if flow_type is FlowType.OUT and transaction_type in _OTHER_EXPENSES:
        return "other_expenses"
    return None


class GroupLedger:
    """Append-only group transaction ledger"""

    def __init__(self, storage: StorageInterface, directory: Optional[GroupDirectory] = None,
                 renderer: Optional[NotesRenderer] = None):
        self.storage = storage
        self.directory = directory
        self.renderer = renderer or NotesRenderer()
        self.table_name = "group_transactions"

    def record_transaction(
        self,
        shg_group_id: str,
        amount: Number,
        flow_type: Union[FlowType, str],
        transaction_type: Union[TransactionType, str],
        member_id: Optional[str] = None,
        reference: Optional[LedgerReference] = None,
        notes: Optional[str] = None,
        is_group_activity: bool = False,
        transaction_date: Optional[date] = None,
    ) -> GroupTransaction:
        """
        Append one ledger entry.

        Args:
            shg_group_id: Group whose fund moves
            amount: Whole currency amount, must be > 0
            flow_type: in or out
            transaction_type: One of TransactionType
            member_id: Member involved; required unless is_group_activity
            reference: Originating record
            notes: Rendered human-readable notes
            is_group_activity: Entry concerns the group as a whole
            transaction_date: Business date, defaults to local today

        Returns:
            The persisted GroupTransaction

        Raises:
            ValidationError: On any malformed field
        """
        if not shg_group_id:
            raise ValidationError("shg_group_id is required")
        amount = to_amount(amount, "amount")
        flow_type = parse_enum(FlowType, flow_type, "flow_type")
        transaction_type = parse_enum(TransactionType, transaction_type, "transaction_type")

        if not is_group_activity and not member_id:
            raise ValidationError("member_id is required unless is_group_activity is set")

        max_notes = get_config().ledger_notes_max_length
        if notes is not None and len(notes) > max_notes:
            raise ValidationError(f"notes must be at most {max_notes} characters")

        if reference is not None and not isinstance(reference, LedgerReference):
            raise ValidationError("reference must be a LedgerReference")

        if self.directory is not None:
            self.directory.get_group(shg_group_id)
            if member_id:
                self.directory.require_member(shg_group_id, member_id)

        now = utc_now()
        entry = GroupTransaction(
            id=new_id(),
            created_at=now,
            updated_at=now,
            shg_group_id=shg_group_id,
            amount=amount,
            flow_type=flow_type,
            transaction_type=transaction_type,
            transaction_date=transaction_date or local_today(),
            member_id=member_id,
            reference_model=reference.model if reference else None,
            reference_id=reference.record_id if reference else None,
            notes=notes,
            is_group_activity=is_group_activity,
        )
        self.storage.save(self.table_name, entry.id, entry.to_dict())

        log_action(
            logger, "info", f"Recorded {flow_type.value} {transaction_type.value} of {amount}",
            user_id=member_id, action="ledger_entry_recorded",
            resource=f"group_transaction:{entry.id}",
            extra={"shg_group_id": shg_group_id, "amount": amount,
                   "reference": f"{entry.reference_model.value}:{entry.reference_id}"
                   if reference else None}
        )
        return entry

    def record_member_deposit(self, shg_group_id: str, member_id: str, amount: Number,
                              transaction_date: Optional[date] = None) -> GroupTransaction:
        """Direct member deposit into the group fund"""
        amount = to_amount(amount, "amount")
        if self.directory is None:
            raise ValidationError("A group directory is required to record member deposits")
        member = self.directory.require_member(shg_group_id, member_id)
        notes = self.renderer.render(TransactionTemplate.USER_DEPOSIT,
                                     {"member_name": member.name, "amount": amount})
        return self.record_transaction(
            shg_group_id, amount, FlowType.IN, TransactionType.USER_DEPOSIT,
            member_id=member_id, notes=notes, transaction_date=transaction_date,
        )

    def get_transaction(self, transaction_id: str) -> Optional[GroupTransaction]:
        data = self.storage.load(self.table_name, transaction_id)
        return GroupTransaction.from_dict(data) if data else None

    def get_transactions(
        self,
        shg_group_id: str,
        member_id: Optional[str] = None,
        flow_types: Optional[Iterable[Union[FlowType, str]]] = None,
        transaction_types: Optional[Iterable[Union[TransactionType, str]]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        reference: Optional[LedgerReference] = None,
    ) -> List[GroupTransaction]:
        """Entries for a group matching the filters, newest first"""
        filters = {"shg_group_id": shg_group_id}
        if member_id:
            filters["member_id"] = member_id
        if flow_types:
            filters["flow_type"] = [parse_enum(FlowType, f, "flow_type").value for f in flow_types]
        if transaction_types:
            filters["transaction_type"] = [
                parse_enum(TransactionType, t, "transaction_type").value for t in transaction_types
            ]
        if reference is not None:
            filters["reference_model"] = reference.model.value
            filters["reference_id"] = reference.record_id

        entries = [GroupTransaction.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start_date:
            entries = [e for e in entries if e.transaction_date >= start_date]
        if end_date:
            entries = [e for e in entries if e.transaction_date <= end_date]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    def _entries_in_range(self, shg_group_id: str, member_id: Optional[str],
                          start_date: Optional[date], end_date: Optional[date]) -> List[dict]:
        filters = {"shg_group_id": shg_group_id}
        if member_id:
            filters["member_id"] = member_id
        entries = self.storage.find(self.table_name, filters)
        if start_date:
            entries = [e for e in entries if e["transaction_date"] >= start_date.isoformat()]
        if end_date:
            entries = [e for e in entries if e["transaction_date"] <= end_date.isoformat()]
        return entries

    def get_totals(self, shg_group_id: str, start_date: Optional[date] = None,
                   end_date: Optional[date] = None,
                   member_id: Optional[str] = None) -> LedgerTotals:
        """Re-aggregate the group's entries, optionally for one member or a date range"""
        total_in = 0
        total_out = 0
        for data in self._entries_in_range(shg_group_id, member_id, start_date, end_date):
            if data["flow_type"] == FlowType.IN.value:
                total_in += data["amount"]
            else:
                total_out += data["amount"]
        return LedgerTotals(total_in=total_in, total_out=total_out)

    def get_balance(self, shg_group_id: str) -> int:
        """Current balance: sum of inflows minus sum of outflows"""
        return self.get_totals(shg_group_id).balance

    def get_balance_sheet(self, shg_group_id: str, start_date: date, end_date: date,
                          member_id: Optional[str] = None) -> BalanceSheet:
        """
        Totals per (transaction type, flow type) over a date range, folded
        into balance sheet lines. Scoped to one member when ``member_id`` is
        given.
        """
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        grouped: Dict[Tuple[str, str], int] = {}
        for data in self._entries_in_range(shg_group_id, member_id, start_date, end_date):
            key = (data["transaction_type"], data["flow_type"])
            grouped[key] = grouped.get(key, 0) + data["amount"]

        lines = dict.fromkeys(BALANCE_SHEET_LINES, 0)
        for (transaction_type, flow_type), amount in grouped.items():
            line = _balance_sheet_line(TransactionType(transaction_type), FlowType(flow_type))
            if line:
                lines[line] += amount
        return BalanceSheet(**lines)

    def get_group_summary(self, shg_group_id: str,
                          member_id: Optional[str] = None) -> GroupSummary:
        """
        Headline figures for a group. Approved savings and loans are read
        from the ledger: every approved savings record posts one
        savings_deposit and every loan posts one loan_disbursed entry.
        """
        if self.directory is not None:
            self.directory.get_group(shg_group_id)

        total_in = 0
        total_out = 0
        member_net = 0
        total_savings = 0
        total_loans = 0
        for data in self.storage.find(self.table_name, {"shg_group_id": shg_group_id}):
            amount = data["amount"]
            inflow = data["flow_type"] == FlowType.IN.value
            if inflow:
                total_in += amount
            else:
                total_out += amount
            if member_id and data.get("member_id") == member_id:
                member_net += amount if inflow else -amount
            if data["transaction_type"] == TransactionType.SAVINGS_DEPOSIT.value and inflow:
                total_savings += amount
            elif data["transaction_type"] == TransactionType.LOAN_DISBURSED.value and not inflow:
                total_loans += amount

        return GroupSummary(
            total_in=total_in,
            current_balance=total_in - total_out,
            member_net=member_net,
            total_savings=total_savings,
            total_loans=total_loans,
        )

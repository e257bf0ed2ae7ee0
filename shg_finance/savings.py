"""
Savings Cycle Module

Generates one savings obligation per member per cadence period and carries it
through submission, approval (which posts the deposit to the group ledger) or
rejection. Lateness penalties are applied at most once per record.

Unlike loan installments, approval does not require a prior submission: an
admin may approve a pending record directly.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from .currency import Number, to_amount
from .dates import clamp_day, local_today, month_bounds, week_bounds
from .errors import (
    BusinessRuleError, NotFoundError, StateConflictError, ValidationError, parse_enum
)
from .files import ProofStorage, ProofUpload, store_proof
from .groups import GroupDirectory
from .interest import Cadence
from .ledger import FlowType, GroupLedger, LedgerReference, TransactionType
from .logging_config import get_logger, log_action
from .notifications import TransactionTemplate
from .settings import SavingsSettings, SettingsRepository
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("savings")


class SavingsStatus(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


# Statuses a lateness penalty can still apply to
OPEN_STATUSES = (SavingsStatus.PENDING.value, SavingsStatus.REJECTED.value)


@dataclass
class Savings(StorageRecord):
    """One member's savings obligation for one cycle"""
    shg_group_id: str
    member_id: str
    due_amount: int
    due_date: date
    final_due_date: date
    cycle_start_date: date
    cycle_end_date: date
    paid_amount: int = 0
    penalty_amount: int = 0
    is_penalty_added: bool = False
    status: SavingsStatus = SavingsStatus.PENDING
    member_remarks: Optional[str] = None
    admin_remarks: Optional[str] = None
    proof: Optional[str] = None


@dataclass(frozen=True)
class SavingsCycle:
    """Bounds and due dates of one cadence period"""
    cadence: Cadence
    cycle_start_date: date
    cycle_end_date: date
    due_date: date
    final_due_date: date


@dataclass(frozen=True)
class CycleStatus:
    """Whether every member has a record for the cycle"""
    cycle: SavingsCycle
    existing_savings_count: int
    total_member_count: int

    @property
    def is_initiated(self) -> bool:
        return self.existing_savings_count >= self.total_member_count


def savings_cycle(initiate_date: date, settings: SavingsSettings) -> SavingsCycle:
    """
    Cycle containing ``initiate_date``: calendar month, or ISO week for weekly
    cadence. Monthly due date is ``due_day`` of the month (clamped); weekly is
    the ``due_day``-th day of the week, capped at the week's last day.
    """
    cadence = settings.frequency
    if cadence is Cadence.MONTHLY:
        start, end = month_bounds(initiate_date)
        due = clamp_day(start.year, start.month, settings.due_day)
    else:
        start, end = week_bounds(initiate_date)
        due = start + timedelta(days=min(settings.due_day, 7) - 1)
    return SavingsCycle(
        cadence=cadence,
        cycle_start_date=start,
        cycle_end_date=end,
        due_date=due,
        final_due_date=due + timedelta(days=settings.grace_period_days),
    )


class SavingsManager:
    """Savings cycle generation and savings lifecycle"""

    def __init__(
        self,
        storage: StorageInterface,
        directory: GroupDirectory,
        settings: SettingsRepository,
        ledger: GroupLedger,
        proof_storage: Optional[ProofStorage] = None,
    ):
        self.storage = storage
        self.directory = directory
        self.settings = settings
        self.ledger = ledger
        self.proof_storage = proof_storage
        self.table_name = "savings"

    def _cycle_records(self, shg_group_id: str, cycle: SavingsCycle) -> List[dict]:
        return self.storage.find(self.table_name, {
            "shg_group_id": shg_group_id,
            "cycle_start_date": cycle.cycle_start_date.isoformat(),
            "cycle_end_date": cycle.cycle_end_date.isoformat(),
        })

    def initiate_cycle(self, shg_group_id: str, initiate_date: Optional[date] = None,
                       today: Optional[date] = None) -> List[Savings]:
        """
        Create the cycle's savings record for every active member who has none.

        A record created after its final due date (backdated initiation)
        carries the penalty from the start.

        Returns:
            The newly created records (empty if the cycle was already complete)
        """
        today = today or local_today()
        initiate_date = initiate_date or today
        self.directory.get_group(shg_group_id)
        savings_settings = self.settings.get(shg_group_id).savings_settings
        cycle = savings_cycle(initiate_date, savings_settings)

        late = today > cycle.final_due_date
        penalty = savings_settings.penalty_amount if late else 0

        created = []
        with self.storage.atomic():
            existing = {r["member_id"] for r in self._cycle_records(shg_group_id, cycle)}
            now = utc_now()
            for member in self.directory.list_members(shg_group_id):
                if member.id in existing:
                    continue
                created.append(Savings(
                    id=new_id(),
                    created_at=now,
                    updated_at=now,
                    shg_group_id=shg_group_id,
                    member_id=member.id,
                    due_amount=savings_settings.amount + penalty,
                    due_date=cycle.due_date,
                    final_due_date=cycle.final_due_date,
                    cycle_start_date=cycle.cycle_start_date,
                    cycle_end_date=cycle.cycle_end_date,
                    penalty_amount=penalty,
                    is_penalty_added=penalty > 0,
                ))
            if created:
                self.storage.save_many(self.table_name, [s.to_dict() for s in created])

        log_action(
            logger, "info", f"Savings cycle initiated with {len(created)} new records",
            action="savings_cycle_initiated", resource=f"shg_group:{shg_group_id}",
            extra={"cycle_start_date": cycle.cycle_start_date.isoformat(),
                   "cycle_end_date": cycle.cycle_end_date.isoformat(),
                   "skipped": len(existing)}
        )
        return created

    def check_cycle_initiated(self, shg_group_id: str, initiate_date: date) -> CycleStatus:
        savings_settings = self.settings.get(shg_group_id).savings_settings
        cycle = savings_cycle(initiate_date, savings_settings)
        return CycleStatus(
            cycle=cycle,
            existing_savings_count=len(self._cycle_records(shg_group_id, cycle)),
            total_member_count=len(self.directory.list_members(shg_group_id)),
        )

    def get_savings(self, savings_id: str) -> Savings:
        data = self.storage.load(self.table_name, savings_id)
        if data is None:
            raise NotFoundError(f"Savings {savings_id} not found")
        return Savings.from_dict(data)

    def get_savings_by_status(self, shg_group_id: str, statuses: Iterable,
                              member_id: Optional[str] = None) -> List[Savings]:
        filters = {
            "shg_group_id": shg_group_id,
            "status": [parse_enum(SavingsStatus, s, "status").value for s in statuses],
        }
        if member_id:
            filters["member_id"] = member_id
        records = [Savings.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        records.sort(key=lambda s: (s.due_date, s.member_id))
        return records

    def submit_savings(self, savings_id: str, paid_amount: Number,
                       member_remarks: Optional[str] = None,
                       proof: Optional[ProofUpload] = None) -> Savings:
        """Member reports a payment; pending or rejected records only"""
        amount = to_amount(paid_amount, "paid_amount")
        savings = self.get_savings(savings_id)
        if savings.status.value not in OPEN_STATUSES:
            raise StateConflictError(f"Savings {savings_id} is {savings.status.value}")
        if amount < savings.due_amount:
            raise BusinessRuleError(
                f"Amount paid {amount} is less than the amount due {savings.due_amount}"
            )

        changes = {"status": SavingsStatus.SUBMITTED, "paid_amount": amount,
                   "member_remarks": member_remarks}
        proof_path = store_proof(self.proof_storage, "savings", proof)
        if proof_path:
            changes["proof"] = proof_path

        updated = self.storage.update_if(
            self.table_name, savings_id,
            {"status": list(OPEN_STATUSES), "due_amount": savings.due_amount},
            changes,
        )
        if updated is None:
            raise StateConflictError(f"Savings {savings_id} changed before submission")

        log_action(
            logger, "info", f"Savings of {amount} submitted",
            user_id=savings.member_id, action="savings_submitted",
            resource=f"savings:{savings_id}"
        )
        return Savings.from_dict(updated)

    def approve_savings(self, savings_id: str, paid_amount: Optional[Number] = None,
                        admin_remarks: Optional[str] = None,
                        today: Optional[date] = None) -> Savings:
        """
        Approve a pending or submitted record and post the deposit.

        ``paid_amount`` overrides the submitted amount; it is required when
        approving a record nobody submitted.
        """
        savings = self.get_savings(savings_id)
        amount = to_amount(paid_amount if paid_amount is not None else savings.paid_amount,
                           "paid_amount")
        member = self.directory.get_member(savings.member_id)

        with self.storage.atomic():
            updated = self.storage.update_if(
                self.table_name, savings_id,
                {"status": [SavingsStatus.PENDING.value, SavingsStatus.SUBMITTED.value]},
                {"status": SavingsStatus.APPROVED, "paid_amount": amount,
                 "admin_remarks": admin_remarks},
            )
            if updated is None:
                raise StateConflictError(f"Savings {savings_id} is {savings.status.value}")
            savings = Savings.from_dict(updated)

            template = (TransactionTemplate.SAVINGS_DEPOSIT_WITH_PENALTY if savings.is_penalty_added
                        else TransactionTemplate.SAVINGS_DEPOSIT_WITHOUT_PENALTY)
            notes = self.ledger.renderer.render(template, {
                "member_name": member.name,
                "amount": amount,
                "cycle_start_date": savings.cycle_start_date.isoformat(),
                "cycle_end_date": savings.cycle_end_date.isoformat(),
                "penalty_amount": savings.penalty_amount,
            })
            self.ledger.record_transaction(
                savings.shg_group_id, amount, FlowType.IN, TransactionType.SAVINGS_DEPOSIT,
                member_id=savings.member_id,
                reference=LedgerReference.savings(savings.id),
                notes=notes,
                transaction_date=today,
            )

        log_action(
            logger, "info", f"Savings of {amount} approved",
            user_id=savings.member_id, action="savings_approved",
            resource=f"savings:{savings_id}"
        )
        return savings

    def reject_savings(self, savings_id: str, admin_remarks: str) -> Savings:
        """Send a submitted record back to the member"""
        if not admin_remarks or not admin_remarks.strip():
            raise ValidationError("admin_remarks are required to reject savings")
        savings = self.get_savings(savings_id)
        updated = self.storage.update_if(
            self.table_name, savings_id,
            {"status": SavingsStatus.SUBMITTED.value},
            {"status": SavingsStatus.REJECTED, "admin_remarks": admin_remarks},
        )
        if updated is None:
            raise StateConflictError(f"Savings {savings_id} is {savings.status.value}")

        log_action(
            logger, "info", "Savings rejected",
            user_id=savings.member_id, action="savings_rejected",
            resource=f"savings:{savings_id}", extra={"reason": admin_remarks}
        )
        return Savings.from_dict(updated)

    def _add_penalty(self, savings: Savings, penalty: int) -> Optional[Savings]:
        updated = self.storage.update_if(
            self.table_name, savings.id,
            {"status": list(OPEN_STATUSES), "is_penalty_added": False},
            {"due_amount": savings.due_amount + penalty,
             "penalty_amount": savings.penalty_amount + penalty,
             "is_penalty_added": True},
        )
        return Savings.from_dict(updated) if updated else None

    def apply_overdue_penalties(self, shg_group_id: str, today: Optional[date] = None) -> int:
        """
        Lateness sweep over pending and rejected records past their final due
        date. Safe to run repeatedly.

        Returns:
            Number of records penalized by this run
        """
        today = today or local_today()
        penalty = self.settings.get(shg_group_id).savings_settings.penalty_amount
        if penalty <= 0:
            return 0

        applied = 0
        for data in self.storage.find(self.table_name, {
            "shg_group_id": shg_group_id,
            "status": list(OPEN_STATUSES),
            "is_penalty_added": False,
        }):
            savings = Savings.from_dict(data)
            if today > savings.final_due_date and self._add_penalty(savings, penalty):
                applied += 1

        log_action(
            logger, "info", f"Overdue savings sweep penalized {applied} records",
            action="savings_penalty_sweep", resource=f"shg_group:{shg_group_id}",
            extra={"penalty_amount": penalty, "as_of": today.isoformat()}
        )
        return applied

    def apply_penalty(self, savings_id: str, today: Optional[date] = None) -> Savings:
        """Penalize a single overdue record"""
        today = today or local_today()
        savings = self.get_savings(savings_id)
        if savings.status.value not in OPEN_STATUSES:
            raise StateConflictError(f"Savings is {savings.status.value}, penalty not applicable")
        if savings.is_penalty_added:
            raise StateConflictError("Penalty already added for this savings record")
        if today <= savings.final_due_date:
            raise BusinessRuleError("Savings is not overdue yet")

        penalty = self.settings.get(savings.shg_group_id).savings_settings.penalty_amount
        if penalty <= 0:
            raise BusinessRuleError("No savings penalty is configured for this group")
        updated = self._add_penalty(savings, penalty)
        if updated is None:
            raise StateConflictError("Savings changed while applying penalty")

        log_action(
            logger, "info", f"Penalty of {penalty} added to savings",
            user_id=savings.member_id, action="savings_penalty_applied",
            resource=f"savings:{savings_id}"
        )
        return updated

"""
Loan Application Module

Handles loan requests and the witness approvals that gate them. An
application becomes eligible for loan creation only once every witness has
acted and none has rejected it; approval itself happens when the loan is
created from the application.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .config import get_config
from .currency import Number, to_amount, to_decimal
from .dates import local_today
from .errors import (
    BusinessRuleError, NotFoundError, StateConflictError, ValidationError, parse_enum
)
from .groups import GroupDirectory
from .interest import (
    Cadence, InstallmentType, InterestType, calculate_installment, validate_terms
)
from .logging_config import get_logger, log_action
from .settings import SettingsRepository
from .storage import StorageInterface, StorageRecord, new_id, utc_now

logger = get_logger("applications")


class ApplicationStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WitnessActionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class LoanApplication(StorageRecord):
    """Requested loan terms, priced at request time"""
    shg_group_id: str
    member_id: str
    amount_requested: int
    tenure: int                         # Years
    interest_rate: Decimal              # Annual percent
    interest_type: InterestType
    installment_type: InstallmentType
    installment_frequency: Cadence
    installment_amount: int
    total_interest: int
    purpose: Optional[str] = None
    collateral: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.PENDING
    reject_reason: Optional[str] = None


@dataclass
class WitnessAction(StorageRecord):
    """One witness's decision on one application"""
    shg_group_id: str
    loan_application_id: str
    member_id: str
    status: WitnessActionStatus = WitnessActionStatus.PENDING
    reason: Optional[str] = None
    action_date: Optional[date] = None


@dataclass(frozen=True)
class ApplicationReview:
    """Pending application whose witnesses have all acted"""
    application: LoanApplication
    approved_count: int
    rejected_count: int


class LoanApplicationManager:
    """Loan requests and witness actions"""

    def __init__(self, storage: StorageInterface, directory: GroupDirectory,
                 settings: SettingsRepository):
        self.storage = storage
        self.directory = directory
        self.settings = settings
        self.applications_table = "loan_applications"
        self.actions_table = "loan_application_actions"

    def create_application(
        self,
        shg_group_id: str,
        member_id: str,
        amount_requested: Number,
        tenure: int,
        interest_rate: Number,
        interest_type,
        installment_type,
        installment_frequency,
        witness_ids: Sequence[str],
        purpose: Optional[str] = None,
        collateral: Optional[str] = None,
    ) -> LoanApplication:
        """
        Create a pending loan application with one pending action per witness.

        The installment figures are computed here and stored on the
        application; the loan re-prices from the same terms at creation.
        """
        amount = to_amount(amount_requested, "amount_requested")
        validate_terms(amount, interest_rate, tenure)
        interest_type = parse_enum(InterestType, interest_type, "interest_type")
        installment_type = parse_enum(InstallmentType, installment_type, "installment_type")
        cadence = parse_enum(Cadence, installment_frequency, "installment_frequency")

        witness_ids = list(dict.fromkeys(witness_ids or []))
        required = get_config().loan_witness_count
        if len(witness_ids) < required:
            raise BusinessRuleError(f"At least {required} witnesses are required")
        if member_id in witness_ids:
            raise ValidationError("Applicant cannot be their own witness")

        self.directory.get_group(shg_group_id)
        self.directory.require_member(shg_group_id, member_id)
        for witness_id in witness_ids:
            self.directory.require_member(shg_group_id, witness_id)

        loan_settings = self.settings.get(shg_group_id).loan_settings
        if loan_settings.loan_limit and amount > loan_settings.loan_limit:
            raise BusinessRuleError(
                f"Requested amount {amount} exceeds group loan limit {loan_settings.loan_limit}"
            )
        if loan_settings.tenure_limit and tenure > loan_settings.tenure_limit:
            raise BusinessRuleError(
                f"Requested tenure {tenure} exceeds group tenure limit {loan_settings.tenure_limit}"
            )

        quote = calculate_installment(amount, interest_rate, tenure, cadence, installment_type)

        now = utc_now()
        application = LoanApplication(
            id=new_id(),
            created_at=now,
            updated_at=now,
            shg_group_id=shg_group_id,
            member_id=member_id,
            amount_requested=amount,
            tenure=tenure,
            interest_rate=to_decimal(interest_rate),
            interest_type=interest_type,
            installment_type=installment_type,
            installment_frequency=cadence,
            installment_amount=quote.installment_amount,
            total_interest=quote.total_interest,
            purpose=purpose,
            collateral=collateral,
        )
        actions = [
            WitnessAction(
                id=new_id(), created_at=now, updated_at=now,
                shg_group_id=shg_group_id,
                loan_application_id=application.id,
                member_id=witness_id,
            )
            for witness_id in witness_ids
        ]

        with self.storage.atomic():
            self.storage.save(self.applications_table, application.id, application.to_dict())
            self.storage.save_many(self.actions_table, [a.to_dict() for a in actions])

        log_action(
            logger, "info", f"Loan application created for {amount}",
            user_id=member_id, action="loan_application_created",
            resource=f"loan_application:{application.id}",
            extra={"shg_group_id": shg_group_id, "witnesses": len(actions)}
        )
        return application

    def record_witness_action(self, loan_application_id: str, witness_id: str, status,
                              reason: Optional[str] = None,
                              today: Optional[date] = None) -> WitnessAction:
        """A witness approves or rejects (or resets to pending) an application"""
        status = parse_enum(WitnessActionStatus, status, "status")
        application = self.get_application(loan_application_id)
        if application.status is not ApplicationStatus.PENDING:
            raise StateConflictError(
                f"Loan application {loan_application_id} is {application.status.value}"
            )

        matches = self.storage.find(self.actions_table, {
            "loan_application_id": loan_application_id,
            "member_id": witness_id,
        })
        if not matches:
            raise NotFoundError(
                f"Witness {witness_id} is not assigned to loan application {loan_application_id}"
            )

        action = WitnessAction.from_dict(matches[0])
        action.status = status
        action.reason = reason
        action.action_date = today or local_today()
        action.updated_at = utc_now()
        self.storage.save(self.actions_table, action.id, action.to_dict())

        log_action(
            logger, "info", f"Witness {status.value} loan application",
            user_id=witness_id, action="witness_action_recorded",
            resource=f"loan_application:{loan_application_id}"
        )
        return action

    def get_application(self, loan_application_id: str) -> LoanApplication:
        data = self.storage.load(self.applications_table, loan_application_id)
        if data is None:
            raise NotFoundError(f"Loan application {loan_application_id} not found")
        return LoanApplication.from_dict(data)

    def get_actions(self, loan_application_id: str) -> List[WitnessAction]:
        return [
            WitnessAction.from_dict(d) for d in
            self.storage.find(self.actions_table, {"loan_application_id": loan_application_id})
        ]

    def get_applications_by_status(self, shg_group_id: str, status) -> List[LoanApplication]:
        status = parse_enum(ApplicationStatus, status, "status")
        applications = [
            LoanApplication.from_dict(d) for d in self.storage.find(
                self.applications_table, {"shg_group_id": shg_group_id, "status": status.value}
            )
        ]
        applications.sort(key=lambda a: a.created_at, reverse=True)
        return applications

    def get_applications_for_witness(self, witness_id: str,
                                     status=WitnessActionStatus.PENDING
                                     ) -> List[Tuple[LoanApplication, List[WitnessAction]]]:
        """Applications where the witness has an action in ``status``, with all their actions"""
        status = parse_enum(WitnessActionStatus, status, "status")
        actions = self.storage.find(self.actions_table,
                                    {"member_id": witness_id, "status": status.value})
        result = []
        for action in actions:
            application = self.get_application(action["loan_application_id"])
            result.append((application, self.get_actions(application.id)))
        result.sort(key=lambda pair: pair[0].created_at, reverse=True)
        return result

    @staticmethod
    def _count(actions: List[WitnessAction]) -> Dict[WitnessActionStatus, int]:
        counts = {s: 0 for s in WitnessActionStatus}
        for action in actions:
            counts[action.status] += 1
        return counts

    def is_eligible(self, loan_application_id: str) -> bool:
        """All witness actions present and non-pending, none rejected"""
        counts = self._count(self.get_actions(loan_application_id))
        total = sum(counts.values())
        return (total > 0
                and counts[WitnessActionStatus.PENDING] == 0
                and counts[WitnessActionStatus.REJECTED] == 0)

    def get_ready_for_review(self, shg_group_id: str) -> List[ApplicationReview]:
        """Pending applications whose witnesses have all acted"""
        result = []
        for application in self.get_applications_by_status(shg_group_id, ApplicationStatus.PENDING):
            actions = self.get_actions(application.id)
            counts = self._count(actions)
            if actions and counts[WitnessActionStatus.PENDING] == 0:
                result.append(ApplicationReview(
                    application=application,
                    approved_count=counts[WitnessActionStatus.APPROVED],
                    rejected_count=counts[WitnessActionStatus.REJECTED],
                ))
        return result

    def update_status(self, loan_application_id: str, status,
                      reject_reason: Optional[str] = None) -> LoanApplication:
        """
        Reject an application, or reset a rejected one to pending.

        Approval is not accepted here; it happens only by creating the loan.
        """
        status = parse_enum(ApplicationStatus, status, "status")
        if status is ApplicationStatus.APPROVED:
            raise ValidationError("Applications are approved by creating the loan")
        if status is ApplicationStatus.REJECTED and not (reject_reason and reject_reason.strip()):
            raise ValidationError("reject_reason is required when rejecting an application")

        self.get_application(loan_application_id)
        changes = {
            "status": status,
            "reject_reason": reject_reason if status is ApplicationStatus.REJECTED else None,
        }
        updated = self.storage.update_if(
            self.applications_table, loan_application_id,
            {"status": [ApplicationStatus.PENDING.value, ApplicationStatus.REJECTED.value]},
            changes,
        )
        if updated is None:
            raise StateConflictError(
                f"Loan application {loan_application_id} is approved and can no longer change"
            )

        log_action(
            logger, "info", f"Loan application set to {status.value}",
            action="loan_application_status_updated",
            resource=f"loan_application:{loan_application_id}",
            extra={"reject_reason": reject_reason} if reject_reason else None
        )
        return LoanApplication.from_dict(updated)

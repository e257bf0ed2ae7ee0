"""
Transaction Notes Module

Renders the human-readable notes attached to ledger entries. Templates use
str.format placeholders and are rendered from a flat key/value context.
"""

from enum import Enum
from typing import Any, Dict, Optional

from .config import get_config
from .errors import ValidationError


class TransactionTemplate(Enum):
    """Names of the ledger notes templates"""
    USER_DEPOSIT = "USER_DEPOSIT"
    LOAN_APPROVAL = "LOAN_APPROVAL"
    LOAN_PROCESSING_FEE = "LOAN_PROCESSING_FEE"
    LOAN_PRECLOSE = "LOAN_PRECLOSE"
    LOAN_INSTALLMENT_WITH_PENALTY = "LOAN_INSTALLMENT_WITH_PENALTY"
    LOAN_INSTALLMENT_WITHOUT_PENALTY = "LOAN_INSTALLMENT_WITHOUT_PENALTY"
    SAVINGS_DEPOSIT_WITH_PENALTY = "SAVINGS_DEPOSIT_WITH_PENALTY"
    SAVINGS_DEPOSIT_WITHOUT_PENALTY = "SAVINGS_DEPOSIT_WITHOUT_PENALTY"


ELLIPSIS = "..."

DEFAULT_TEMPLATES: Dict[TransactionTemplate, str] = {
    TransactionTemplate.USER_DEPOSIT:
        "{member_name} deposited {amount} into the group fund",
    TransactionTemplate.LOAN_APPROVAL:
        "Loan of {amount} disbursed to {member_name}",
    TransactionTemplate.LOAN_PROCESSING_FEE:
        "Processing fee of {amount} collected from {member_name} for loan {loan_id}",
    TransactionTemplate.LOAN_PRECLOSE:
        "{member_name} pre-closed loan {loan_id} paying {amount} on {preclose_date} "
        "(principal {principal_amount}, pre-closure charge {preclose_charge_amount}), "
        "approved by {approved_by}",
    TransactionTemplate.LOAN_INSTALLMENT_WITH_PENALTY:
        "{member_name} paid installment {installment_number} of {amount} "
        "due on {due_date}, including late penalty of {penalty_amount}",
    TransactionTemplate.LOAN_INSTALLMENT_WITHOUT_PENALTY:
        "{member_name} paid installment {installment_number} of {amount} due on {due_date}",
    TransactionTemplate.SAVINGS_DEPOSIT_WITH_PENALTY:
        "{member_name} deposited savings of {amount} for {cycle_start_date} to {cycle_end_date}, "
        "including late penalty of {penalty_amount}",
    TransactionTemplate.SAVINGS_DEPOSIT_WITHOUT_PENALTY:
        "{member_name} deposited savings of {amount} for {cycle_start_date} to {cycle_end_date}",
}


class NotesRenderer:
    """Renders ledger notes from named templates"""

    def __init__(self, templates: Optional[Dict[TransactionTemplate, str]] = None,
                 max_length: Optional[int] = None):
        self.templates = dict(DEFAULT_TEMPLATES)
        if templates:
            self.templates.update(templates)
        self.max_length = max_length

    def render(self, template: TransactionTemplate, context: Dict[str, Any]) -> str:
        """
        Render a template. Output longer than the ledger notes limit is
        cut to the limit, ending in an ellipsis.
        """
        try:
            notes = self.templates[template].format(**context)
        except KeyError as e:
            raise ValidationError(f"Template {template.value} rendering failed - missing key: {e}")

        limit = self.max_length or get_config().ledger_notes_max_length
        if len(notes) > limit:
            notes = notes[:max(limit - len(ELLIPSIS), 0)] + ELLIPSIS
        return notes[:limit]

"""
Group Settings Module

Per-group savings, loan and meeting configuration. A validated GroupSettings
snapshot is passed explicitly into every calculation that needs it; nothing
reads settings ambiently.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError
from .interest import Cadence, InstallmentType, InterestType
from .storage import StorageInterface, utc_now


class SavingsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: Cadence = Cadence.MONTHLY
    amount: int = Field(0, ge=0)
    due_day: int = Field(1, ge=1, le=31)
    grace_period_days: int = Field(0, ge=0)
    penalty_amount: int = Field(0, ge=0)


class LoanSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    weekly_due_day: int = Field(1, ge=1, le=7, description="ISO weekday, Monday=1")
    monthly_due_day: int = Field(1, ge=1, le=31)
    grace_period_days: int = Field(0, ge=0)
    penalty_amount: int = Field(0, ge=0)
    interest_type: InterestType = InterestType.FIXED
    installment_type: InstallmentType = InstallmentType.REDUCING
    interest_rate: Decimal = Field(Decimal('0'), ge=0, le=100)
    processing_fee: int = Field(0, ge=0)
    loan_limit: int = Field(0, ge=0, description="0 means no limit")
    tenure_limit: int = Field(0, ge=0, description="Years; 0 means no limit")
    preclose_penalty_rate: Decimal = Field(Decimal('0'), ge=0, le=100)

    def due_day_for(self, cadence: Cadence) -> int:
        return self.monthly_due_day if cadence is Cadence.MONTHLY else self.weekly_due_day


class MeetingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: Cadence = Cadence.MONTHLY
    due_day: int = Field(1, ge=1, le=31)


class GroupSettings(BaseModel):
    """Settings snapshot for one group"""
    model_config = ConfigDict(frozen=True)

    shg_group_id: str
    savings_settings: SavingsSettings = Field(default_factory=SavingsSettings)
    loan_settings: LoanSettings = Field(default_factory=LoanSettings)
    meeting_settings: MeetingSettings = Field(default_factory=MeetingSettings)

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> 'GroupSettings':
        """Validate a raw settings document"""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid group settings: {e}",
                                  details={"errors": e.errors(include_url=False)})


class SettingsRepository:
    """Settings provider: one settings document per group"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "settings"

    def save(self, settings: GroupSettings) -> GroupSettings:
        """Create or replace a group's settings"""
        existing = self.storage.load(self.table_name, settings.shg_group_id)
        now = utc_now().isoformat()
        record = settings.model_dump(mode="json")
        record["id"] = settings.shg_group_id
        record["created_at"] = existing["created_at"] if existing else now
        record["updated_at"] = now
        self.storage.save(self.table_name, settings.shg_group_id, record)
        return settings

    def find(self, shg_group_id: str) -> Optional[GroupSettings]:
        data = self.storage.load(self.table_name, shg_group_id)
        if data is None:
            return None
        return GroupSettings.parse(data)

    def get(self, shg_group_id: str) -> GroupSettings:
        """Fetch settings, failing if the group has none"""
        settings = self.find(shg_group_id)
        if settings is None:
            raise NotFoundError(f"Settings not found for group {shg_group_id}")
        return settings

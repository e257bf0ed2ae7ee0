"""
Group Directory Module

Minimal read contract over groups and their members. Group and user CRUD
belongs to the surrounding application; the engine only needs to resolve ids,
check membership and look up member names for ledger notes.
"""

from dataclasses import dataclass
from typing import List, Optional

from .errors import NotFoundError, StateConflictError, ValidationError
from .storage import StorageInterface, StorageRecord, new_id, utc_now


@dataclass
class ShgGroup(StorageRecord):
    """Self-help group"""
    name: str
    is_active: bool = True


@dataclass
class Member(StorageRecord):
    """Group member"""
    shg_group_id: str
    name: str
    phone: Optional[str] = None
    is_active: bool = True


class GroupDirectory:
    """Groups and members backed by storage"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.groups_table = "shg_groups"
        self.members_table = "members"

    def create_group(self, name: str) -> ShgGroup:
        if not name or not name.strip():
            raise ValidationError("Group name is required")
        name = name.strip()
        with self.storage.atomic():
            for existing in self.storage.load_all(self.groups_table):
                if existing["name"].lower() == name.lower():
                    raise StateConflictError(f"Group with name '{name}' already exists")
            now = utc_now()
            group = ShgGroup(id=new_id(), created_at=now, updated_at=now, name=name)
            self.storage.save(self.groups_table, group.id, group.to_dict())
        return group

    def add_member(self, shg_group_id: str, name: str, phone: Optional[str] = None) -> Member:
        if not name or not name.strip():
            raise ValidationError("Member name is required")
        self.get_group(shg_group_id)
        now = utc_now()
        member = Member(id=new_id(), created_at=now, updated_at=now,
                        shg_group_id=shg_group_id, name=name.strip(), phone=phone)
        self.storage.save(self.members_table, member.id, member.to_dict())
        return member

    def get_group(self, shg_group_id: str) -> ShgGroup:
        data = self.storage.load(self.groups_table, shg_group_id)
        if data is None:
            raise NotFoundError(f"Group {shg_group_id} not found")
        return ShgGroup.from_dict(data)

    def get_member(self, member_id: str) -> Member:
        data = self.storage.load(self.members_table, member_id)
        if data is None:
            raise NotFoundError(f"Member {member_id} not found")
        return Member.from_dict(data)

    def require_member(self, shg_group_id: str, member_id: str) -> Member:
        """Member must exist and belong to the group"""
        member = self.get_member(member_id)
        if member.shg_group_id != shg_group_id:
            raise ValidationError(f"Member {member_id} does not belong to group {shg_group_id}")
        return member

    def list_members(self, shg_group_id: str, active_only: bool = True) -> List[Member]:
        filters = {"shg_group_id": shg_group_id}
        if active_only:
            filters["is_active"] = True
        return [Member.from_dict(d) for d in self.storage.find(self.members_table, filters)]

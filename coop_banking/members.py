"""
Member Registry Module

Manages cooperative members: the owners of accounts, borrowers, depositors
and shareholders. Every lifecycle component verifies the referenced member
exists and is active through this registry.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import EngineError, MemberNotFound, MemberInactive, InvalidInputError, InvalidTransition
from .logging_config import get_logger, log_action, log_rejection


class MemberStatus(Enum):
    """Member lifecycle states"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    CLOSED = "closed"


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass
class Member(StorageRecord):
    """Cooperative member"""
    member_number: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: MemberStatus = MemberStatus.ACTIVE
    version: int = 1

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise InvalidInputError("Member name is required")
        if self.email and not EMAIL_PATTERN.match(self.email):
            raise InvalidInputError("Invalid email format")

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


class MemberRegistry:
    """
    Registers members and answers existence/status checks for the engine
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "members"
        self.logger = get_logger("coop_banking.members")

    def register(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        member_number: Optional[str] = None,
        status: MemberStatus = MemberStatus.ACTIVE
    ) -> Member:
        """
        Register a new member

        Args:
            name: Member's full name
            email: Contact email
            phone: Contact phone
            member_number: Specific member number (generated if not provided)
            status: Initial status

        Returns:
            Created Member
        """
        now = datetime.now(timezone.utc)
        member_id = str(uuid.uuid4())

        member = Member(
            id=member_id,
            created_at=now,
            updated_at=now,
            member_number=member_number or f"MEM{member_id.replace('-', '')[:10].upper()}",
            name=name,
            email=email,
            phone=phone,
            status=status
        )

        with self.storage.atomic():
            self.storage.save(self.table_name, member.id, member.to_dict(), expected_version=0)
            self.audit_trail.log_event(
                event_type=AuditEventType.MEMBER_REGISTERED,
                entity_type="member",
                entity_id=member.id,
                metadata={"member_number": member.member_number, "status": status.value}
            )

        log_action(
            self.logger, "info", "Member registered",
            action="register_member", resource=f"member:{member.id}",
            extra={"member_number": member.member_number}
        )
        return member

    def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID"""
        data = self.storage.load(self.table_name, member_id)
        if data:
            return self._member_from_dict(data)
        return None

    def require_member(self, member_id: str) -> Member:
        """Load a member or raise MemberNotFound"""
        member = self.get_member(member_id)
        if not member:
            raise MemberNotFound(f"Member {member_id} not found", entity_id=member_id)
        return member

    def require_active(self, member_id: str) -> Member:
        """Load a member and check it is active"""
        member = self.require_member(member_id)
        if not member.is_active:
            raise MemberInactive(
                f"Member {member_id} is not active (status: {member.status.value})",
                entity_id=member_id
            )
        return member

    def update_status(self, member_id: str, new_status: MemberStatus, reason: str) -> Member:
        """Change a member's status; closed members cannot be reopened"""
        try:
            with self.storage.atomic():
                member = self.require_member(member_id)
                if member.status == MemberStatus.CLOSED and new_status != MemberStatus.CLOSED:
                    raise InvalidTransition(f"Member {member_id} is closed", entity_id=member_id)

                old_status = member.status
                member.status = new_status
                member.updated_at = datetime.now(timezone.utc)
                member.version += 1
                self.storage.save(self.table_name, member.id, member.to_dict(),
                                  expected_version=member.version - 1)

                self.audit_trail.log_event(
                    event_type=AuditEventType.MEMBER_STATUS_CHANGED,
                    entity_type="member",
                    entity_id=member.id,
                    metadata={"old_status": old_status.value, "new_status": new_status.value, "reason": reason}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "update_member_status", f"member:{member_id}")

        log_action(
            self.logger, "info", f"Member status changed to {new_status.value}",
            action="update_member_status", resource=f"member:{member.id}",
            extra={"old_status": old_status.value, "reason": reason}
        )
        return member

    def list_members(self, status: Optional[MemberStatus] = None) -> List[Member]:
        """List members, optionally filtered by status"""
        filters = {"status": status.value} if status else {}
        return [self._member_from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def _member_from_dict(self, data: Dict) -> Member:
        return Member(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            member_number=data['member_number'],
            name=data['name'],
            email=data.get('email'),
            phone=data.get('phone'),
            status=MemberStatus(data['status']),
            version=data.get('version', 1)
        )

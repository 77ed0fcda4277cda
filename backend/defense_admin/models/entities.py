"""
Entity records held by the entity store.

Every record is addressed by its business ``code`` and carries a ``version``
that the store bumps on each committed write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import FrozenSet, Optional, Tuple


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class TopicStatus(str, Enum):
    """Lifecycle of a thesis topic."""
    DRAFT = "Draft"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    ELIGIBLE_FOR_DEFENSE = "EligibleForDefense"
    SCHEDULED = "Scheduled"
    DEFENDED = "Defended"
    WITHDRAWN = "Withdrawn"


class MemberRole(str, Enum):
    """Roles a lecturer can hold on a committee."""
    CHAIR = "Chair"
    SECRETARY = "Secretary"
    MEMBER = "Member"
    REVIEWER = "Reviewer"


class CommitteeStatus(str, Enum):
    """Derived state of a committee, computed by the read models."""
    DRAFT = "Draft"
    READY = "Ready"
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"


# -----------------------------------------------------------------------------
# Collaborator records (read by the engine, owned elsewhere)
# -----------------------------------------------------------------------------

@dataclass
class Tag:
    code: str
    name: str = ""
    description: Optional[str] = None
    version: int = 0


@dataclass
class StudentProfile:
    code: str
    full_name: str = ""
    department_code: Optional[str] = None
    version: int = 0


@dataclass
class LecturerProfile:
    """A lecturer who may sit on committees.

    The current defense count is not stored here; it is derived from the
    committee memberships at read time.
    """
    code: str
    full_name: str = ""
    degree: Optional[str] = None
    department_code: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    defense_quota: int = 5
    version: int = 0


@dataclass
class Topic:
    code: str
    title: str = ""
    summary: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    primary_tag: Optional[str] = None
    department_code: Optional[str] = None
    specialty_code: Optional[str] = None
    status: TopicStatus = TopicStatus.DRAFT
    student_code: Optional[str] = None
    supervisor_code: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    version: int = 0

    def main_tag(self) -> Optional[str]:
        if self.primary_tag:
            return self.primary_tag
        if self.tags:
            return sorted(self.tags)[0]
        return None


# -----------------------------------------------------------------------------
# Records owned by the engine
# -----------------------------------------------------------------------------

@dataclass
class Committee:
    code: str
    name: str = ""
    defense_date: Optional[date] = None
    room: Optional[str] = None
    session_capacity: int = 8
    tags: FrozenSet[str] = field(default_factory=frozenset)
    start_time: time = time(7, 30)
    end_time: time = time(17, 0)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    version: int = 0

    def session_window(self) -> Optional[Tuple[datetime, datetime]]:
        if self.defense_date is None:
            return None
        return (
            datetime.combine(self.defense_date, self.start_time),
            datetime.combine(self.defense_date, self.end_time),
        )

    def overlaps(self, other: "Committee") -> bool:
        """True when both committees sit on the same date with intersecting windows."""
        mine = self.session_window()
        theirs = other.session_window()
        if mine is None or theirs is None:
            return False
        return mine[0] < theirs[1] and theirs[0] < mine[1]


@dataclass
class CommitteeMember:
    code: str
    committee_code: str
    lecturer_code: str
    role: MemberRole = MemberRole.MEMBER
    is_chair: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    version: int = 0


@dataclass
class DefenseAssignment:
    code: str
    topic_code: str
    committee_code: str
    scheduled_at: datetime
    ends_at: datetime
    session: int = 1
    active: bool = True
    tag_override: bool = False
    override_reason: Optional[str] = None
    assigned_by: str = "system"
    assigned_at: datetime = field(default_factory=datetime.now)
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[str] = None
    version: int = 0


@dataclass
class TopicStatusChange:
    code: str
    topic_code: str
    old_status: TopicStatus
    new_status: TopicStatus
    changed_by: str = "system"
    changed_at: datetime = field(default_factory=datetime.now)
    comment: str = ""
    version: int = 0


ENTITY_TYPES = {
    cls.__name__: cls
    for cls in (
        Tag,
        StudentProfile,
        LecturerProfile,
        Topic,
        Committee,
        CommitteeMember,
        DefenseAssignment,
        TopicStatusChange,
    )
}

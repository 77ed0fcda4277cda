from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import MemberRole
from .registry import CommitteeChanges, CommitteeDraft, MemberInput
from .scheduler import AssignmentRequest


class MemberPayload(BaseModel):
    lecturer_code: str = Field(..., description="Lecturer business code")
    role: MemberRole = MemberRole.MEMBER
    is_chair: bool = False

    def to_input(self) -> MemberInput:
        return MemberInput(self.lecturer_code, self.role, self.is_chair)


class CommitteeCreateRequest(BaseModel):
    code: Optional[str] = Field(None, description="Leave empty to generate one")
    name: str
    defense_date: Optional[date] = None
    room: Optional[str] = None
    session_capacity: Optional[int] = Field(None, ge=1)
    tags: List[str] = Field(default_factory=list)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    members: Optional[List[MemberPayload]] = None

    def to_draft(self) -> CommitteeDraft:
        return CommitteeDraft(
            code=self.code or None,
            name=self.name,
            defense_date=self.defense_date,
            room=self.room,
            session_capacity=self.session_capacity,
            tags=self.tags,
            start_time=self.start_time,
            end_time=self.end_time,
            members=[m.to_input() for m in self.members] if self.members else None,
        )


class CommitteeUpdateRequest(BaseModel):
    """Omitted fields keep their stored value."""
    name: Optional[str] = None
    defense_date: Optional[date] = None
    room: Optional[str] = None
    session_capacity: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    def to_changes(self) -> CommitteeChanges:
        return CommitteeChanges(**self.model_dump())


class CommitteeMembersRequest(BaseModel):
    members: List[MemberPayload] = Field(default_factory=list)


class AssignmentItem(BaseModel):
    topic_code: str
    scheduled_at: Optional[datetime] = Field(None, description="Defaults to the next free slot")
    ends_at: Optional[datetime] = None
    override_tag_match: bool = False
    override_reason: Optional[str] = None

    def to_request(self) -> AssignmentRequest:
        return AssignmentRequest(
            topic_code=self.topic_code,
            scheduled_at=self.scheduled_at,
            ends_at=self.ends_at,
            override_tag_match=self.override_tag_match,
            override_reason=self.override_reason,
        )


class AssignTopicsRequest(BaseModel):
    committee_code: str
    items: List[AssignmentItem] = Field(..., min_length=1)


class AutoAssignRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    tag_priority_order: List[str] = Field(default_factory=list)
    per_session_cap: Optional[int] = Field(None, ge=1)
    override_committees: List[str] = Field(default_factory=list)
    topic_codes: Optional[List[str]] = None


class ChangeAssignmentRequest(BaseModel):
    new_committee_code: str
    new_scheduled_at: Optional[datetime] = None
    new_ends_at: Optional[datetime] = None
    override_tag_match: bool = False
    override_reason: Optional[str] = None


class ErrorBody(BaseModel):
    kind: str
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "AssignTopicsRequest",
    "AssignmentItem",
    "AutoAssignRequest",
    "ChangeAssignmentRequest",
    "CommitteeCreateRequest",
    "CommitteeMembersRequest",
    "CommitteeUpdateRequest",
    "ErrorBody",
    "MemberPayload",
]

from .entities import (
    ENTITY_TYPES,
    Committee,
    CommitteeMember,
    CommitteeStatus,
    DefenseAssignment,
    LecturerProfile,
    MemberRole,
    StudentProfile,
    Tag,
    Topic,
    TopicStatus,
    TopicStatusChange,
)

__all__ = [
    "ENTITY_TYPES",
    "Committee",
    "CommitteeMember",
    "CommitteeStatus",
    "DefenseAssignment",
    "LecturerProfile",
    "MemberRole",
    "StudentProfile",
    "Tag",
    "Topic",
    "TopicStatus",
    "TopicStatusChange",
]

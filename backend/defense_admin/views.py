"""Read models for committee, lecturer and student screens."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, Dict, List, Optional

from .errors import NotFoundError
from .filters import TopicFilter
from .models import (
    Committee,
    CommitteeStatus,
    MemberRole,
    StudentProfile,
    Tag,
    Topic,
    TopicStatus,
    TopicStatusChange,
)
from .schedule_view import ScheduleView
from .store import InMemoryEntityStore


@dataclass
class TagSummary:
    code: str
    name: str = ""


@dataclass
class MemberDetail:
    lecturer_code: str
    full_name: str
    degree: Optional[str]
    role: MemberRole
    is_chair: bool
    tags: List[str] = field(default_factory=list)


@dataclass
class AssignmentDetail:
    assignment_code: str
    topic_code: str
    title: str
    student_code: Optional[str]
    student_name: Optional[str]
    supervisor_code: Optional[str]
    supervisor_name: Optional[str]
    session: int
    scheduled_at: datetime
    ends_at: datetime
    room: Optional[str]
    tags: List[str] = field(default_factory=list)
    tag_override: bool = False


@dataclass
class SessionGroup:
    session: int
    topics: List[AssignmentDetail] = field(default_factory=list)


@dataclass
class CommitteeDetail:
    committee_code: str
    name: str
    defense_date: Optional[date]
    room: Optional[str]
    start_time: time
    end_time: time
    session_capacity: int
    remaining_capacity: int
    status: CommitteeStatus
    tags: List[TagSummary] = field(default_factory=list)
    members: List[MemberDetail] = field(default_factory=list)
    assignments: List[AssignmentDetail] = field(default_factory=list)
    sessions: List[SessionGroup] = field(default_factory=list)


@dataclass
class LecturerCommittee:
    role: MemberRole
    is_chair: bool
    committee: CommitteeDetail


@dataclass
class LecturerCommittees:
    lecturer_code: str
    full_name: str
    committees: List[LecturerCommittee] = field(default_factory=list)


@dataclass
class StudentCommitteeMember:
    name: str
    role: MemberRole


@dataclass
class StudentCommittee:
    committee_code: str
    name: str
    defense_date: Optional[date]
    room: Optional[str]
    members: List[StudentCommitteeMember] = field(default_factory=list)


@dataclass
class StudentDefenseInfo:
    student_code: str
    student_name: str
    topic_code: str
    title: str
    topic_status: TopicStatus
    committee: Optional[StudentCommittee] = None
    scheduled_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    session: Optional[int] = None


def committee_status(view: ScheduleView, committee: Committee, today: date) -> CommitteeStatus:
    if committee.defense_date is not None and committee.defense_date < today:
        return CommitteeStatus.COMPLETED
    if len(view.chairs_of(committee.code)) != 1:
        return CommitteeStatus.DRAFT
    if view.active_count(committee.code) > 0:
        return CommitteeStatus.SCHEDULED
    return CommitteeStatus.READY


class DefenseViews:
    def __init__(self, store: InMemoryEntityStore, clock: Callable[[], datetime] = datetime.now):
        self._store = store
        self._clock = clock

    def _names(self) -> Dict[str, str]:
        students = self._store.list(StudentProfile)
        return {s.code: s.full_name for s in students}

    def committee_detail(self, committee_code: str, view: Optional[ScheduleView] = None) -> CommitteeDetail:
        view = view or ScheduleView.load(self._store)
        committee = view.committee(committee_code)
        if committee is None:
            raise NotFoundError("Committee", committee_code)
        return self._build_detail(view, committee, self._names(), self._tag_names())

    def _tag_names(self) -> Dict[str, str]:
        return {t.code: t.name for t in self._store.list(Tag)}

    def _build_detail(
        self,
        view: ScheduleView,
        committee: Committee,
        student_names: Dict[str, str],
        tag_names: Dict[str, str],
    ) -> CommitteeDetail:
        members = []
        for member in view.members_of(committee.code):
            lecturer = view.lecturers.get(member.lecturer_code)
            members.append(
                MemberDetail(
                    lecturer_code=member.lecturer_code,
                    full_name=lecturer.full_name if lecturer else member.lecturer_code,
                    degree=lecturer.degree if lecturer else None,
                    role=member.role,
                    is_chair=member.is_chair,
                    tags=sorted(lecturer.tags) if lecturer else [],
                )
            )
        # chair first, then by role and code
        role_order = list(MemberRole)
        members.sort(key=lambda m: (not m.is_chair, role_order.index(m.role), m.lecturer_code))

        assignments = []
        for assignment in view.active_assignments(committee_code=committee.code):
            topic = view.topics.get(assignment.topic_code)
            supervisor = view.lecturers.get(topic.supervisor_code) if topic and topic.supervisor_code else None
            assignments.append(
                AssignmentDetail(
                    assignment_code=assignment.code,
                    topic_code=assignment.topic_code,
                    title=topic.title if topic else "",
                    student_code=topic.student_code if topic else None,
                    student_name=student_names.get(topic.student_code) if topic and topic.student_code else None,
                    supervisor_code=topic.supervisor_code if topic else None,
                    supervisor_name=supervisor.full_name if supervisor else None,
                    session=assignment.session,
                    scheduled_at=assignment.scheduled_at,
                    ends_at=assignment.ends_at,
                    room=committee.room,
                    tags=sorted(topic.tags) if topic else [],
                    tag_override=assignment.tag_override,
                )
            )

        grouped: Dict[int, List[AssignmentDetail]] = defaultdict(list)
        for item in assignments:
            grouped[item.session].append(item)
        sessions = [SessionGroup(session, grouped[session]) for session in sorted(grouped)]

        return CommitteeDetail(
            committee_code=committee.code,
            name=committee.name,
            defense_date=committee.defense_date,
            room=committee.room,
            start_time=committee.start_time,
            end_time=committee.end_time,
            session_capacity=committee.session_capacity,
            remaining_capacity=max(committee.session_capacity - len(assignments), 0),
            status=committee_status(view, committee, self._clock().date()),
            tags=[TagSummary(code, tag_names.get(code, "")) for code in sorted(committee.tags)],
            members=members,
            assignments=assignments,
            sessions=sessions,
        )

    def lecturer_committees(self, lecturer_code: str) -> LecturerCommittees:
        view = ScheduleView.load(self._store)
        lecturer = view.lecturers.get(lecturer_code)
        if lecturer is None:
            raise NotFoundError("LecturerProfile", lecturer_code)
        student_names = self._names()
        tag_names = self._tag_names()
        seats = view.memberships_of(lecturer_code)
        items = []
        for seat in seats:
            committee = view.committee(seat.committee_code)
            if committee is None:
                continue
            items.append(
                LecturerCommittee(
                    role=seat.role,
                    is_chair=seat.is_chair,
                    committee=self._build_detail(view, committee, student_names, tag_names),
                )
            )
        items.sort(key=lambda item: (item.committee.defense_date or date.max, item.committee.committee_code))
        return LecturerCommittees(lecturer_code, lecturer.full_name, items)

    def student_defense_info(self, student_code: str) -> StudentDefenseInfo:
        student = self._store.find(StudentProfile, student_code)
        if student is None:
            raise NotFoundError("StudentProfile", student_code)
        topics = self._store.list(
            Topic,
            TopicFilter(student_code=student_code).matches,
            sort_key=lambda t: (t.created_at, t.code),
        )
        topics = [t for t in topics if t.status != TopicStatus.WITHDRAWN] or topics
        if not topics:
            raise NotFoundError(
                "Topic", student_code, message=f"Student '{student_code}' has no registered topic"
            )
        topic = topics[-1]

        view = ScheduleView.load(self._store)
        info = StudentDefenseInfo(
            student_code=student.code,
            student_name=student.full_name,
            topic_code=topic.code,
            title=topic.title,
            topic_status=topic.status,
        )
        assignment = view.active_for_topic(topic.code)
        if assignment is None:
            return info
        committee = view.committee(assignment.committee_code)
        if committee is not None:
            members = []
            for member in view.members_of(committee.code):
                lecturer = view.lecturers.get(member.lecturer_code)
                members.append(
                    StudentCommitteeMember(
                        name=lecturer.full_name if lecturer else member.lecturer_code,
                        role=member.role,
                    )
                )
            info.committee = StudentCommittee(
                committee_code=committee.code,
                name=committee.name,
                defense_date=committee.defense_date,
                room=committee.room,
                members=members,
            )
        info.scheduled_at = assignment.scheduled_at
        info.ends_at = assignment.ends_at
        info.session = assignment.session
        return info

    def topic_history(self, topic_code: str) -> List[TopicStatusChange]:
        if self._store.find(Topic, topic_code) is None:
            raise NotFoundError("Topic", topic_code)
        return self._store.list(
            TopicStatusChange,
            lambda change: change.topic_code == topic_code,
            sort_key=lambda change: (change.changed_at, change.code),
        )

    def tags(self) -> List[Tag]:
        return self._store.list(Tag)


__all__ = [
    "AssignmentDetail",
    "CommitteeDetail",
    "DefenseViews",
    "LecturerCommittees",
    "MemberDetail",
    "SessionGroup",
    "StudentDefenseInfo",
    "committee_status",
]

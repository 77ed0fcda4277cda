"""
Committee registry: committee records and their membership rosters.

The registry is the only writer of ``CommitteeMember`` rows. Rosters are
replaced as a whole so the one-chair rule can be checked on the final set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .config import Settings
from .errors import FailureKind, NotFoundError, ValidationFailedError, raise_if_cancelled
from .filters import CommitteeFilter
from .guards import active_set_unchanged, lecturers_free, roster_unchanged
from .models import (
    Committee,
    CommitteeMember,
    CommitteeStatus,
    DefenseAssignment,
    LecturerProfile,
    MemberRole,
    Tag,
)
from .policies import ChairEligibilityPolicy
from .schedule_view import ScheduleView
from .store import Delete, InMemoryEntityStore, Mutation, Put
from .views import committee_status

logger = logging.getLogger(__name__)

COMMITTEE_PREFIX = "COM"
MEMBER_PREFIX = "CMB"


@dataclass
class MemberInput:
    lecturer_code: str
    role: MemberRole = MemberRole.MEMBER
    is_chair: bool = False


@dataclass
class CommitteeDraft:
    name: str
    defense_date: Optional[date] = None
    room: Optional[str] = None
    session_capacity: Optional[int] = None
    tags: Iterable[str] = ()
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    code: Optional[str] = None
    members: Optional[List[MemberInput]] = None


@dataclass
class CommitteeChanges:
    """Fields left as ``None`` keep their stored value."""
    name: Optional[str] = None
    defense_date: Optional[date] = None
    room: Optional[str] = None
    session_capacity: Optional[int] = None
    tags: Optional[Iterable[str]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None


@dataclass
class CommitteeSummary:
    committee: Committee
    member_count: int
    topic_count: int
    status: CommitteeStatus


@dataclass
class CreateInit:
    next_code: str
    default_defense_date: date
    start_time: time
    end_time: time
    session_capacity: int
    rooms: List[str] = field(default_factory=list)
    suggested_tags: List[Tag] = field(default_factory=list)


def _invalid(kind: FailureKind, detail: str, **details) -> ValidationFailedError:
    return ValidationFailedError.of(kind, detail, **details)


def _coverage(view: ScheduleView, tags: Iterable[str], members: Iterable[CommitteeMember]) -> FrozenSet[str]:
    """Committee tags plus the tags of the given roster."""
    covered = set(tags)
    for member in members:
        lecturer = view.lecturers.get(member.lecturer_code)
        if lecturer is not None:
            covered.update(lecturer.tags)
    return frozenset(covered)


class CommitteeRegistry:
    def __init__(
        self,
        store: InMemoryEntityStore,
        chair_policy: ChairEligibilityPolicy,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self.chair_policy = chair_policy
        self.settings = settings
        self._clock = clock

    # -- queries ---------------------------------------------------------------

    def get_committee(self, code: str) -> Committee:
        return self._store.get_by_code(Committee, code)

    def list_committees(
        self,
        committee_filter: Optional[CommitteeFilter] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Tuple[List[CommitteeSummary], int]:
        predicate = committee_filter.matches if committee_filter else None
        committees, total = self._store.query(
            Committee,
            predicate,
            page=page,
            page_size=page_size,
            sort_key=lambda c: (c.defense_date or date.max, c.code),
        )
        view = ScheduleView.load(self._store)
        today = self._clock().date()
        summaries = [
            CommitteeSummary(
                committee=committee,
                member_count=len(view.members_of(committee.code)),
                topic_count=view.active_count(committee.code),
                status=committee_status(view, committee, today),
            )
            for committee in committees
        ]
        return summaries, total

    def create_init(self) -> CreateInit:
        """Defaults for a new committee form. The code is a preview and is not reserved."""
        existing = {c.code for c in self._store.list(Committee)}
        number = len(existing) + 1
        next_code = f"{COMMITTEE_PREFIX}_{number:05d}"
        while next_code in existing:
            number += 1
            next_code = f"{COMMITTEE_PREFIX}_{number:05d}"
        return CreateInit(
            next_code=next_code,
            default_defense_date=self._clock().date() + timedelta(days=self.settings.default_lead_days),
            start_time=self.settings.session_start,
            end_time=self.settings.session_end,
            session_capacity=self.settings.default_session_capacity,
            rooms=list(self.settings.rooms),
            suggested_tags=self._store.list(Tag),
        )

    # -- committee records -----------------------------------------------------

    def create_committee(
        self, draft: CommitteeDraft, cancel_event: Optional[threading.Event] = None
    ) -> Committee:
        if not draft.name or not draft.name.strip():
            raise _invalid(FailureKind.INVALID_INPUT, "Committee name is required")
        if draft.code and self._store.find(Committee, draft.code) is not None:
            raise _invalid(
                FailureKind.DUPLICATE_CODE,
                f"Committee code '{draft.code}' already exists",
                committee_code=draft.code,
            )
        capacity = draft.session_capacity
        if capacity is None:
            capacity = self.settings.default_session_capacity
        if capacity < 1:
            raise _invalid(FailureKind.INVALID_INPUT, "Session capacity must be at least 1")
        start_time = draft.start_time or self.settings.session_start
        end_time = draft.end_time or self.settings.session_end
        if end_time <= start_time:
            raise _invalid(FailureKind.INVALID_SCHEDULE, "Session must end after it starts")

        now = self._clock()
        committee = Committee(
            code=draft.code or self._store.generate_code(COMMITTEE_PREFIX),
            name=draft.name.strip(),
            defense_date=draft.defense_date,
            room=draft.room,
            session_capacity=capacity,
            tags=frozenset(draft.tags or ()),
            start_time=start_time,
            end_time=end_time,
            created_at=now,
        )
        mutations: List[Mutation] = [Put(committee)]
        guards = []
        if draft.members:
            view = ScheduleView.load(self._store)
            view.committees[committee.code] = committee
            members, quotas = self._plan_roster(view, committee, draft.members)
            mutations.extend(Put(member) for member in members)
            guards.append(lecturers_free(committee, quotas))

        raise_if_cancelled(cancel_event, "CreateCommittee")
        saved = self._store.save(mutations, guards)
        logger.info(
            "Created committee %s (%s) with %d members",
            committee.code,
            committee.defense_date,
            len(draft.members or ()),
        )
        return saved[0]

    def update_committee(
        self,
        code: str,
        changes: CommitteeChanges,
        cancel_event: Optional[threading.Event] = None,
    ) -> Committee:
        view = ScheduleView.load(self._store)
        current = view.committee(code)
        if current is None:
            raise NotFoundError("Committee", code)

        updated = replace(
            current,
            name=changes.name.strip() if changes.name is not None else current.name,
            defense_date=changes.defense_date if changes.defense_date is not None else current.defense_date,
            room=changes.room if changes.room is not None else current.room,
            session_capacity=(
                changes.session_capacity if changes.session_capacity is not None else current.session_capacity
            ),
            tags=frozenset(changes.tags) if changes.tags is not None else current.tags,
            start_time=changes.start_time or current.start_time,
            end_time=changes.end_time or current.end_time,
            updated_at=self._clock(),
        )
        if not updated.name:
            raise _invalid(FailureKind.INVALID_INPUT, "Committee name is required")
        if updated.session_capacity < 1:
            raise _invalid(FailureKind.INVALID_INPUT, "Session capacity must be at least 1")
        if updated.end_time <= updated.start_time:
            raise _invalid(FailureKind.INVALID_SCHEDULE, "Session must end after it starts")

        active = view.active_assignments(committee_code=code)
        if updated.session_capacity < len(active):
            raise _invalid(
                FailureKind.NO_CAPACITY,
                f"Committee '{code}' already hosts {len(active)} defenses",
                committee_code=code,
            )
        if active and updated.defense_date != current.defense_date:
            raise _invalid(
                FailureKind.INVALID_SCHEDULE,
                f"Committee '{code}' hosts scheduled defenses; remove them before moving the date",
                committee_code=code,
            )
        window = updated.session_window()
        if active and window is not None:
            outside = [a.topic_code for a in active if a.scheduled_at < window[0] or a.ends_at > window[1]]
            if outside:
                raise _invalid(
                    FailureKind.INVALID_SCHEDULE,
                    f"Defenses of {', '.join(outside)} fall outside the new window",
                    committee_code=code,
                )

        guards = [active_set_unchanged(code, [a.code for a in active])]
        if updated.tags != current.tags:
            sitting_members = view.members_of(code)
            self._check_coverage(view, active, _coverage(view, updated.tags, sitting_members))
            guards.append(roster_unchanged(code, [m.code for m in sitting_members]))
        if updated.session_window() != current.session_window():
            sitting = [m.lecturer_code for m in view.members_of(code)]
            for lecturer_code in sitting:
                for other in view.overlapping_committees(updated):
                    if any(m.lecturer_code == lecturer_code for m in view.members_of(other.code)):
                        raise _invalid(
                            FailureKind.LECTURER_CONFLICT,
                            f"Lecturer '{lecturer_code}' also sits on committee '{other.code}' "
                            "during the new session",
                            lecturer_code=lecturer_code,
                        )
            if sitting:
                # moving the window does not change anyone's load
                guards.append(lecturers_free(updated, {lecturer_code: None for lecturer_code in sitting}))
        raise_if_cancelled(cancel_event, "UpdateCommittee")
        saved = self._store.save([Put(updated)], guards)
        logger.info("Updated committee %s", code)
        return saved[0]

    # -- membership ------------------------------------------------------------

    def save_committee_members(
        self,
        committee_code: str,
        members: Sequence[MemberInput],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[CommitteeMember]:
        """Replace the committee roster with ``members`` in one transaction."""
        view = ScheduleView.load(self._store)
        committee = view.committee(committee_code)
        if committee is None:
            raise NotFoundError("Committee", committee_code)

        existing = view.members_of(committee_code)
        active = view.active_assignments(committee_code=committee_code)
        if not members:
            if active:
                raise _invalid(
                    FailureKind.INVALID_COMPOSITION,
                    f"Committee '{committee_code}' hosts scheduled defenses and needs a full roster",
                    committee_code=committee_code,
                )
            planned: List[CommitteeMember] = []
            quotas: Dict[str, int] = {}
        else:
            planned, quotas = self._plan_roster(view, committee, members)
            self._check_coverage(view, active, _coverage(view, committee.tags, planned))

        mutations: List[Mutation] = [Put(replace(committee, updated_at=self._clock()))]
        mutations.extend(Delete(CommitteeMember, m.code, m.version) for m in existing)
        mutations.extend(Put(m) for m in planned)
        guards = [
            roster_unchanged(committee_code, [m.code for m in existing]),
            active_set_unchanged(committee_code, [a.code for a in active]),
        ]
        if quotas:
            guards.append(lecturers_free(committee, quotas))
        raise_if_cancelled(cancel_event, "SaveCommitteeMembers")
        saved = self._store.save(mutations, guards)
        logger.info("Saved %d members for committee %s", len(planned), committee_code)
        return [row for row in saved if isinstance(row, CommitteeMember)]

    @staticmethod
    def _check_coverage(view: ScheduleView, active: Sequence[DefenseAssignment], coverage: FrozenSet[str]) -> None:
        # overridden assignments were accepted without a shared tag
        for assignment in active:
            if assignment.tag_override:
                continue
            topic = view.topics.get(assignment.topic_code)
            if topic is not None and not topic.tags & coverage:
                raise _invalid(
                    FailureKind.NO_TAG_MATCH,
                    f"Topic '{topic.code}' would share no tag with committee '{assignment.committee_code}'",
                    topic_code=topic.code,
                    committee_code=assignment.committee_code,
                )

    def _plan_roster(
        self,
        view: ScheduleView,
        committee: Committee,
        members: Sequence[MemberInput],
    ) -> Tuple[List[CommitteeMember], Dict[str, int]]:
        settings = self.settings
        if not settings.min_members <= len(members) <= settings.max_members:
            raise _invalid(
                FailureKind.INVALID_COMPOSITION,
                f"A committee needs between {settings.min_members} and {settings.max_members} members",
                member_count=len(members),
            )
        codes = [m.lecturer_code for m in members]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise _invalid(
                FailureKind.INVALID_COMPOSITION,
                f"Lecturers listed twice: {', '.join(duplicates)}",
                lecturer_codes=duplicates,
            )

        normalized: List[MemberInput] = []
        for item in members:
            is_chair = item.is_chair or item.role == MemberRole.CHAIR
            role = MemberRole.CHAIR if is_chair else item.role
            normalized.append(MemberInput(item.lecturer_code, role, is_chair))
        chairs = [m for m in normalized if m.is_chair]
        if len(chairs) != 1:
            raise _invalid(
                FailureKind.INVALID_COMPOSITION,
                f"A committee needs exactly one chair, got {len(chairs)}",
            )
        secretaries = [m for m in normalized if m.role == MemberRole.SECRETARY]
        if settings.require_secretary and len(secretaries) != 1:
            raise _invalid(
                FailureKind.INVALID_COMPOSITION,
                f"A committee needs exactly one secretary, got {len(secretaries)}",
            )

        lecturers: Dict[str, LecturerProfile] = {}
        for code in codes:
            lecturer = view.lecturers.get(code)
            if lecturer is None:
                raise NotFoundError("LecturerProfile", code)
            lecturers[code] = lecturer

        chair = lecturers[chairs[0].lecturer_code]
        if not self.chair_policy.is_eligible(chair):
            raise _invalid(
                FailureKind.CHAIR_NOT_ELIGIBLE,
                f"Lecturer '{chair.code}' may not chair ({self.chair_policy.describe()})",
                lecturer_code=chair.code,
            )

        overlapping = view.overlapping_committees(committee)
        for code, lecturer in lecturers.items():
            load = view.lecturer_load(code, excluding_committee=committee.code)
            if load >= lecturer.defense_quota:
                raise _invalid(
                    FailureKind.QUOTA_EXCEEDED,
                    f"Lecturer '{code}' already sits on {load} committees (quota {lecturer.defense_quota})",
                    lecturer_code=code,
                )
            for other in overlapping:
                if any(m.lecturer_code == code for m in view.members_of(other.code)):
                    raise _invalid(
                        FailureKind.LECTURER_CONFLICT,
                        f"Lecturer '{code}' already sits on committee '{other.code}' "
                        f"during an overlapping session",
                        lecturer_code=code,
                        committee_code=other.code,
                    )

        for assignment in view.active_assignments(committee_code=committee.code):
            topic = view.topics.get(assignment.topic_code)
            if topic is not None and topic.supervisor_code in lecturers:
                raise _invalid(
                    FailureKind.SUPERVISOR_CONFLICT,
                    f"Lecturer '{topic.supervisor_code}' supervises topic '{topic.code}' "
                    f"heard by this committee",
                    lecturer_code=topic.supervisor_code,
                    topic_code=topic.code,
                )

        now = self._clock()
        planned = [
            CommitteeMember(
                code=self._store.generate_code(MEMBER_PREFIX),
                committee_code=committee.code,
                lecturer_code=item.lecturer_code,
                role=item.role,
                is_chair=item.is_chair,
                created_at=now,
            )
            for item in normalized
        ]
        quotas = {code: lecturer.defense_quota for code, lecturer in lecturers.items()}
        return planned, quotas

    # -- removal ---------------------------------------------------------------

    def removal_mutations(self, view: ScheduleView, committee_code: str) -> List[Mutation]:
        """Membership deletes followed by the committee delete, in that order."""
        committee = view.committee(committee_code)
        if committee is None:
            raise NotFoundError("Committee", committee_code)
        mutations: List[Mutation] = [
            Delete(CommitteeMember, m.code, m.version) for m in view.members_of(committee_code)
        ]
        mutations.append(Delete(Committee, committee.code, committee.version))
        return mutations


__all__ = [
    "CommitteeChanges",
    "CommitteeDraft",
    "CommitteeRegistry",
    "CommitteeSummary",
    "CreateInit",
    "MemberInput",
]

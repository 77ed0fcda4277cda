"""
Read snapshot of the scheduling state with derived indexes.

The availability index, the conflict validator and the auto-assign planner
all reason over a ``ScheduleView``. A view can exclude committed assignments
(a reassignment does not compete with itself) and carry pending ones (an
auto-assign batch sees its own earlier placements) without touching the store.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from datetime import datetime, time, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .models import Committee, CommitteeMember, DefenseAssignment, LecturerProfile, Topic
from .store import InMemoryEntityStore


def session_of(scheduled_at: datetime, afternoon_start: time) -> int:
    """Session number of a slot: 1 before the afternoon split, 2 after."""
    return 1 if scheduled_at.time() < afternoon_start else 2


class ScheduleView:
    def __init__(
        self,
        committees: Iterable[Committee],
        members: Iterable[CommitteeMember],
        assignments: Iterable[DefenseAssignment],
        lecturers: Iterable[LecturerProfile] = (),
        topics: Iterable[Topic] = (),
    ) -> None:
        self.committees: Dict[str, Committee] = {c.code: c for c in committees}
        self.lecturers: Dict[str, LecturerProfile] = {l.code: l for l in lecturers}
        self.topics: Dict[str, Topic] = {t.code: t for t in topics}
        self._members_by_committee: Dict[str, List[CommitteeMember]] = defaultdict(list)
        self._members_by_lecturer: Dict[str, List[CommitteeMember]] = defaultdict(list)
        for member in sorted(members, key=lambda m: m.code):
            self._members_by_committee[member.committee_code].append(member)
            self._members_by_lecturer[member.lecturer_code].append(member)
        self._committed: Dict[str, DefenseAssignment] = {
            a.code: a for a in assignments if a.active
        }
        self._excluded: Set[str] = set()
        self._pending: List[DefenseAssignment] = []

    @classmethod
    def load(cls, store: InMemoryEntityStore) -> "ScheduleView":
        snap = store.snapshot(Committee, CommitteeMember, DefenseAssignment, LecturerProfile, Topic)
        return cls(
            snap[Committee],
            snap[CommitteeMember],
            snap[DefenseAssignment],
            snap[LecturerProfile],
            snap[Topic],
        )

    # -- derived copies --------------------------------------------------------

    def fork(self) -> "ScheduleView":
        clone = copy.copy(self)
        clone._excluded = set(self._excluded)
        clone._pending = list(self._pending)
        return clone

    def without(self, assignment_code: Optional[str]) -> "ScheduleView":
        clone = self.fork()
        if assignment_code:
            clone._excluded.add(assignment_code)
        return clone

    def add_pending(self, assignment: DefenseAssignment) -> None:
        self._pending.append(assignment)

    @property
    def pending(self) -> List[DefenseAssignment]:
        return list(self._pending)

    # -- committees and members ------------------------------------------------

    def committee(self, code: str) -> Optional[Committee]:
        return self.committees.get(code)

    def members_of(self, committee_code: str) -> List[CommitteeMember]:
        return list(self._members_by_committee.get(committee_code, []))

    def chairs_of(self, committee_code: str) -> List[CommitteeMember]:
        return [m for m in self.members_of(committee_code) if m.is_chair]

    def memberships_of(self, lecturer_code: str) -> List[CommitteeMember]:
        return list(self._members_by_lecturer.get(lecturer_code, []))

    def lecturer_load(self, lecturer_code: str, excluding_committee: Optional[str] = None) -> int:
        return sum(
            1
            for member in self.memberships_of(lecturer_code)
            if member.committee_code != excluding_committee
        )

    def overlapping_committees(self, committee: Committee) -> List[Committee]:
        return sorted(
            (
                other
                for other in self.committees.values()
                if other.code != committee.code and other.overlaps(committee)
            ),
            key=lambda c: c.code,
        )

    def coverage_tags(self, committee_code: str) -> FrozenSet[str]:
        """Committee tags plus the tags of every sitting member."""
        committee = self.committees.get(committee_code)
        tags: Set[str] = set(committee.tags) if committee else set()
        for member in self.members_of(committee_code):
            lecturer = self.lecturers.get(member.lecturer_code)
            if lecturer is not None:
                tags.update(lecturer.tags)
        return frozenset(tags)

    # -- assignments -----------------------------------------------------------

    def active_assignments(
        self,
        committee_code: Optional[str] = None,
        topic_code: Optional[str] = None,
    ) -> List[DefenseAssignment]:
        rows = [a for code, a in self._committed.items() if code not in self._excluded]
        rows.extend(self._pending)
        if committee_code is not None:
            rows = [a for a in rows if a.committee_code == committee_code]
        if topic_code is not None:
            rows = [a for a in rows if a.topic_code == topic_code]
        return sorted(rows, key=lambda a: (a.scheduled_at, a.code))

    def active_for_topic(self, topic_code: str) -> Optional[DefenseAssignment]:
        rows = self.active_assignments(topic_code=topic_code)
        return rows[0] if rows else None

    def active_count(self, committee_code: str) -> int:
        return len(self.active_assignments(committee_code=committee_code))

    def next_free_slot(self, committee: Committee, slot_minutes: int) -> Optional[datetime]:
        """First slot of the committee's window that no active assignment occupies."""
        window = committee.session_window()
        if window is None:
            return None
        start, end = window
        step = timedelta(minutes=slot_minutes)
        busy = [(a.scheduled_at, a.ends_at) for a in self.active_assignments(committee_code=committee.code)]
        cursor = start
        while cursor + step <= end:
            if not any(cursor < busy_end and busy_start < cursor + step for busy_start, busy_end in busy):
                return cursor
            cursor += step
        return None

    def slot_holder(
        self, committee_code: str, starts: datetime, ends: datetime
    ) -> Optional[DefenseAssignment]:
        """Active assignment of the committee whose time range intersects ``[starts, ends)``."""
        for assignment in self.active_assignments(committee_code=committee_code):
            if starts < assignment.ends_at and assignment.scheduled_at < ends:
                return assignment
        return None


__all__ = ["ScheduleView", "session_of"]

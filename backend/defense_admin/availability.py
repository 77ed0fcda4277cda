"""
Availability index: which lecturers and topics can be placed.

Answers are derived from the latest committed store state on every call and
nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from .errors import NotFoundError
from .filters import LecturerFilter, TopicFilter
from .models import Committee, LecturerProfile, MemberRole, Topic, TopicStatus
from .policies import ChairEligibilityPolicy
from .schedule_view import ScheduleView
from .store import InMemoryEntityStore

logger = logging.getLogger(__name__)


@dataclass
class AvailableLecturer:
    lecturer: LecturerProfile
    current_defense_count: int
    is_eligible_chair: bool

    @property
    def code(self) -> str:
        return self.lecturer.code


class AvailabilityIndex:
    def __init__(self, store: InMemoryEntityStore, chair_policy: ChairEligibilityPolicy):
        self._store = store
        self.chair_policy = chair_policy

    def available_lecturers(
        self,
        tag: Optional[str] = None,
        on_date: Optional[date] = None,
        role: Optional[MemberRole] = None,
        require_chair: bool = False,
        excluding_committee: Optional[str] = None,
        view: Optional[ScheduleView] = None,
    ) -> List[AvailableLecturer]:
        """
        Lecturers with quota headroom and no overlapping booking.

        Args:
            tag: Keep only lecturers carrying this tag.
            on_date: Drop lecturers already sitting on a committee that day.
                Defaults to the date of ``excluding_committee``.
            role: Requested role; ``Chair`` implies ``require_chair``.
            require_chair: Keep only lecturers the chair policy accepts.
            excluding_committee: Committee being edited. Its own memberships
                count neither against quota nor as a booking.

        Returns:
            Matches ordered by current load, then code.
        """
        view = view or ScheduleView.load(self._store)
        anchor: Optional[Committee] = None
        if excluding_committee:
            anchor = view.committee(excluding_committee)
            if anchor is None:
                raise NotFoundError("Committee", excluding_committee)
            if on_date is None:
                on_date = anchor.defense_date
        require_chair = require_chair or role == MemberRole.CHAIR
        lecturer_filter = LecturerFilter(tag=tag)

        results: List[AvailableLecturer] = []
        for lecturer in sorted(view.lecturers.values(), key=lambda l: l.code):
            if not lecturer_filter.matches(lecturer):
                continue
            load = view.lecturer_load(lecturer.code, excluding_committee)
            if load >= lecturer.defense_quota:
                continue
            if on_date is not None and self._is_booked(view, lecturer.code, on_date, anchor):
                continue
            eligible = self.chair_policy.is_eligible(lecturer)
            if require_chair and not eligible:
                continue
            results.append(AvailableLecturer(lecturer, load, eligible))
        results.sort(key=lambda item: (item.current_defense_count, item.code))
        return results

    @staticmethod
    def _is_booked(
        view: ScheduleView,
        lecturer_code: str,
        on_date: date,
        anchor: Optional[Committee],
    ) -> bool:
        for member in view.memberships_of(lecturer_code):
            if anchor is not None and member.committee_code == anchor.code:
                continue
            other = view.committee(member.committee_code)
            if other is None or other.defense_date != on_date:
                continue
            if anchor is not None and anchor.defense_date == on_date and not other.overlaps(anchor):
                continue
            return True
        return False

    def available_topics(
        self,
        tag: Optional[str] = None,
        department: Optional[str] = None,
        excluding_committee: Optional[str] = None,
        view: Optional[ScheduleView] = None,
    ) -> List[Topic]:
        """Eligible topics without an active assignment, oldest first.

        With ``excluding_committee``, topics supervised by one of that
        committee's members are left out since they could not be heard there.
        """
        view = view or ScheduleView.load(self._store)
        topic_filter = TopicFilter(
            status=TopicStatus.ELIGIBLE_FOR_DEFENSE,
            tag=tag,
            department_code=department,
        )
        blocked_supervisors = set()
        if excluding_committee:
            if view.committee(excluding_committee) is None:
                raise NotFoundError("Committee", excluding_committee)
            blocked_supervisors = {m.lecturer_code for m in view.members_of(excluding_committee)}

        assigned = {a.topic_code for a in view.active_assignments()}
        topics = [
            topic
            for topic in view.topics.values()
            if topic_filter.matches(topic)
            and topic.code not in assigned
            and topic.supervisor_code not in blocked_supervisors
        ]
        topics.sort(key=lambda t: (t.created_at, t.code))
        logger.debug("Found %d available topics (tag=%s, department=%s)", len(topics), tag, department)
        return topics


__all__ = ["AvailabilityIndex", "AvailableLecturer"]

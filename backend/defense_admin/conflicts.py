"""
Conflict validator.

Pure predicates over a ``ScheduleView``: given a proposed placement of a
topic on a committee at a time, report the first unmet check or ``None``.
Nothing here writes to the store.

Checks run in this order and the first failure wins:

1. the topic is free (no other active assignment) and in an assignable status
2. the committee has exactly one chair
3. the committee session has room: capacity, date/window, free slot
4. no member is double-booked on an overlapping session, and the topic's
   supervisor does not sit on the committee
5. the topic shares a tag with the committee's coverage, unless overridden
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional

from .errors import FailureKind, NotFoundError, ValidationFailure
from .models import Committee, DefenseAssignment, Topic, TopicStatus
from .schedule_view import ScheduleView, session_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    """A topic proposed for a committee slot.

    ``reassigning`` names the assignment this placement would replace; that
    assignment is ignored for capacity and booking counts.
    """
    topic_code: str
    committee_code: str
    scheduled_at: datetime
    ends_at: Optional[datetime] = None
    override_tag_match: bool = False
    reassigning: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    placement: Placement
    failure: Optional[ValidationFailure] = None

    @property
    def accepted(self) -> bool:
        return self.failure is None


class ConflictValidator:
    def __init__(self, slot_minutes: int = 60, afternoon_start: time = time(13, 0)):
        self.slot = timedelta(minutes=slot_minutes)
        self.afternoon_start = afternoon_start

    def slot_end(self, placement: Placement) -> datetime:
        return placement.ends_at or placement.scheduled_at + self.slot

    def provisional_assignment(
        self,
        placement: Placement,
        code: str,
        assigned_by: str = "system",
        assigned_at: Optional[datetime] = None,
        override_reason: Optional[str] = None,
    ) -> DefenseAssignment:
        """The active assignment row a placement turns into once accepted."""
        return DefenseAssignment(
            code=code,
            topic_code=placement.topic_code,
            committee_code=placement.committee_code,
            scheduled_at=placement.scheduled_at,
            ends_at=self.slot_end(placement),
            session=session_of(placement.scheduled_at, self.afternoon_start),
            active=True,
            tag_override=placement.override_tag_match,
            override_reason=override_reason if placement.override_tag_match else None,
            assigned_by=assigned_by,
            assigned_at=assigned_at or datetime.now(),
        )

    # -- entry points ----------------------------------------------------------

    def validate(
        self,
        view: ScheduleView,
        placement: Placement,
        capacity_cap: Optional[int] = None,
    ) -> Optional[ValidationFailure]:
        """
        Run every check against ``view``.

        Raises:
            NotFoundError: the topic or committee code is unknown.

        Returns:
            The first failure, or None when the placement is acceptable.
        """
        topic = view.topics.get(placement.topic_code)
        if topic is None:
            raise NotFoundError("Topic", placement.topic_code)
        committee = view.committee(placement.committee_code)
        if committee is None:
            raise NotFoundError("Committee", placement.committee_code)

        view = view.without(placement.reassigning)
        failure = (
            self.topic_is_free(view, topic, placement)
            or self.has_chair(view, committee)
            or self.session_has_room(view, committee, placement, capacity_cap)
            or self.double_booking(view, committee)
            or self.supervisor_conflict(view, topic, committee)
            or self.tags_match(view, topic, committee, placement.override_tag_match)
        )
        if failure is not None:
            logger.debug(
                "Rejected %s -> %s at %s: %s",
                placement.topic_code,
                placement.committee_code,
                placement.scheduled_at,
                failure.kind.value,
            )
        return failure

    def validate_batch(
        self,
        view: ScheduleView,
        placements: Iterable[Placement],
        capacity_cap: Optional[int] = None,
        cumulative: bool = False,
    ) -> List[ValidationResult]:
        """
        Validate each placement and report one result per candidate.

        A failing candidate never stops the batch. With ``cumulative`` the
        accepted candidates are treated as already placed when validating the
        ones after them.
        """
        working = view.fork()
        results: List[ValidationResult] = []
        for index, placement in enumerate(placements):
            try:
                failure = self.validate(working, placement, capacity_cap)
            except NotFoundError as exc:
                failure = ValidationFailure(FailureKind.INVALID_INPUT, exc.message)
            results.append(ValidationResult(placement, failure))
            if cumulative and failure is None:
                working = working.without(placement.reassigning)
                working.add_pending(self.provisional_assignment(placement, f"pending-{index}"))
        return results

    # -- individual checks -----------------------------------------------------

    def topic_is_free(
        self, view: ScheduleView, topic: Topic, placement: Placement
    ) -> Optional[ValidationFailure]:
        existing = view.active_for_topic(topic.code)
        if existing is not None:
            return ValidationFailure(
                FailureKind.TOPIC_ALREADY_ASSIGNED,
                f"Topic '{topic.code}' already has active assignment '{existing.code}'",
            )
        allowed = {TopicStatus.ELIGIBLE_FOR_DEFENSE}
        if placement.reassigning:
            allowed.add(TopicStatus.SCHEDULED)
        if topic.status not in allowed:
            return ValidationFailure(
                FailureKind.TOPIC_NOT_ELIGIBLE,
                f"Topic '{topic.code}' is {topic.status.value}, not eligible for defense",
            )
        return None

    def has_chair(self, view: ScheduleView, committee: Committee) -> Optional[ValidationFailure]:
        chairs = view.chairs_of(committee.code)
        if len(chairs) == 1:
            return None
        if not chairs:
            detail = f"Committee '{committee.code}' has no chair"
        else:
            detail = f"Committee '{committee.code}' has {len(chairs)} chairs"
        return ValidationFailure(FailureKind.MISSING_CHAIR, detail)

    def session_has_room(
        self,
        view: ScheduleView,
        committee: Committee,
        placement: Placement,
        capacity_cap: Optional[int] = None,
    ) -> Optional[ValidationFailure]:
        window = committee.session_window()
        if window is None:
            return ValidationFailure(
                FailureKind.INVALID_SCHEDULE,
                f"Committee '{committee.code}' has no defense date",
            )
        capacity = committee.session_capacity
        if capacity_cap is not None:
            capacity = min(capacity, capacity_cap)
        count = view.active_count(committee.code)
        if count >= capacity:
            return ValidationFailure(
                FailureKind.NO_CAPACITY,
                f"Committee '{committee.code}' session on {committee.defense_date} "
                f"is full ({count}/{capacity})",
            )

        starts = placement.scheduled_at
        ends = self.slot_end(placement)
        if ends <= starts:
            return ValidationFailure(FailureKind.INVALID_SCHEDULE, "Defense must end after it starts")
        if starts.date() != committee.defense_date:
            return ValidationFailure(
                FailureKind.INVALID_SCHEDULE,
                f"Defense must take place on the committee date {committee.defense_date}",
            )
        if starts < window[0] or ends > window[1]:
            return ValidationFailure(
                FailureKind.INVALID_SCHEDULE,
                f"Defense must fit within {committee.start_time:%H:%M}-{committee.end_time:%H:%M}",
            )
        holder = view.slot_holder(committee.code, starts, ends)
        if holder is not None:
            return ValidationFailure(
                FailureKind.SLOT_TAKEN,
                f"Slot {starts:%Y-%m-%d %H:%M} of committee '{committee.code}' "
                f"is taken by topic '{holder.topic_code}'",
            )
        return None

    def double_booking(self, view: ScheduleView, committee: Committee) -> Optional[ValidationFailure]:
        """A member also sits on another committee with an overlapping, non-empty session."""
        overlapping = {other.code for other in view.overlapping_committees(committee)}
        if not overlapping:
            return None
        for member in view.members_of(committee.code):
            for membership in view.memberships_of(member.lecturer_code):
                other_code = membership.committee_code
                if other_code in overlapping and view.active_count(other_code) > 0:
                    return ValidationFailure(
                        FailureKind.LECTURER_CONFLICT,
                        f"Lecturer '{member.lecturer_code}' also sits on committee "
                        f"'{other_code}' during an overlapping session",
                    )
        return None

    def supervisor_conflict(
        self, view: ScheduleView, topic: Topic, committee: Committee
    ) -> Optional[ValidationFailure]:
        if not topic.supervisor_code:
            return None
        if any(m.lecturer_code == topic.supervisor_code for m in view.members_of(committee.code)):
            return ValidationFailure(
                FailureKind.SUPERVISOR_CONFLICT,
                f"Supervisor '{topic.supervisor_code}' of topic '{topic.code}' "
                f"sits on committee '{committee.code}'",
            )
        return None

    def tags_match(
        self,
        view: ScheduleView,
        topic: Topic,
        committee: Committee,
        override: bool = False,
    ) -> Optional[ValidationFailure]:
        if override:
            return None
        if topic.tags & view.coverage_tags(committee.code):
            return None
        return ValidationFailure(
            FailureKind.NO_TAG_MATCH,
            f"Topic '{topic.code}' shares no tag with committee '{committee.code}'",
        )


__all__ = ["ConflictValidator", "Placement", "ValidationResult"]

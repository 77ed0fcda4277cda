"""
Assignment scheduler.

The only component that creates or deactivates ``DefenseAssignment`` rows and
moves topics in and out of ``Scheduled``. Every operation validates against a
``ScheduleView`` first and then commits one transaction whose guards repeat
the capacity and one-active-assignment checks against committed state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .availability import AvailabilityIndex
from .conflicts import ConflictValidator, Placement
from .errors import (
    ConflictError,
    FailureKind,
    NotFoundError,
    ValidationFailedError,
    raise_if_cancelled,
)
from .guards import active_set_unchanged, capacity_left, committee_unchanged, slot_free, topic_free
from .models import Committee, DefenseAssignment, Topic, TopicStatus, TopicStatusChange
from .registry import CommitteeRegistry
from .schedule_view import ScheduleView
from .store import Guard, InMemoryEntityStore, Mutation, Put

logger = logging.getLogger(__name__)

ASSIGNMENT_PREFIX = "ASG"
STATUS_CHANGE_PREFIX = "TSC"
AUTO_OVERRIDE_REASON = "Committee listed for tag override in auto-assign"


class UnassignedReason(str, Enum):
    NO_CAPACITY = "NoCapacity"
    NO_TAG_MATCH = "NoTagMatch"
    LECTURER_CONFLICT = "LecturerConflict"


@dataclass
class AssignmentRequest:
    """One topic for a committee. Without ``scheduled_at`` the next free slot is used."""
    topic_code: str
    scheduled_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    override_tag_match: bool = False
    override_reason: Optional[str] = None


@dataclass
class UnassignedTopic:
    topic_code: str
    reason: UnassignedReason
    detail: str = ""


@dataclass
class AutoAssignResult:
    assigned: List[DefenseAssignment] = field(default_factory=list)
    unassigned: List[UnassignedTopic] = field(default_factory=list)


@dataclass
class CommitteeDeletion:
    committee_code: str
    deactivated: List[DefenseAssignment] = field(default_factory=list)
    reverted_topics: List[str] = field(default_factory=list)


_CONFLICT_KINDS = {FailureKind.LECTURER_CONFLICT, FailureKind.SUPERVISOR_CONFLICT}
_CAPACITY_KINDS = {FailureKind.NO_CAPACITY, FailureKind.SLOT_TAKEN}


class AssignmentScheduler:
    def __init__(
        self,
        store: InMemoryEntityStore,
        validator: ConflictValidator,
        availability: AvailabilityIndex,
        registry: CommitteeRegistry,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self.validator = validator
        self.availability = availability
        self.registry = registry
        self._clock = clock
        self._slot_minutes = int(validator.slot.total_seconds() // 60)

    # -- helpers ---------------------------------------------------------------

    def _slot_for(self, view: ScheduleView, committee: Committee, requested: Optional[datetime]) -> datetime:
        if requested is not None:
            return requested
        free = view.next_free_slot(committee, self._slot_minutes)
        if free is not None:
            return free
        # no free slot: validate at the window start so the proper failure is reported
        day = committee.defense_date or self._clock().date()
        return datetime.combine(day, committee.start_time)

    def _status_change(
        self,
        topic: Topic,
        new_status: TopicStatus,
        changed_by: str,
        now: datetime,
        comment: str,
    ) -> List[Mutation]:
        history = TopicStatusChange(
            code=self._store.generate_code(STATUS_CHANGE_PREFIX),
            topic_code=topic.code,
            old_status=topic.status,
            new_status=new_status,
            changed_by=changed_by,
            changed_at=now,
            comment=comment,
        )
        if new_status == topic.status:
            return [Put(history)]
        return [Put(replace(topic, status=new_status, updated_at=now)), Put(history)]

    @staticmethod
    def _retire(assignment: DefenseAssignment, by: str, now: datetime) -> DefenseAssignment:
        return replace(assignment, active=False, deactivated_at=now, deactivated_by=by)

    def _place(
        self,
        view: ScheduleView,
        topic: Topic,
        committee: Committee,
        placement: Placement,
        assigned_by: str,
        override_reason: Optional[str],
        now: datetime,
    ) -> DefenseAssignment:
        # only keep the override flag when it actually bypassed a mismatch
        bypassed = placement.override_tag_match and self.validator.tags_match(view, topic, committee) is not None
        placement = replace(placement, override_tag_match=bypassed)
        return self.validator.provisional_assignment(
            placement,
            self._store.generate_code(ASSIGNMENT_PREFIX),
            assigned_by=assigned_by,
            assigned_at=now,
            override_reason=override_reason,
        )

    # -- manual operations -----------------------------------------------------

    def assign(
        self,
        topic_code: str,
        committee_code: str,
        scheduled_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        assigned_by: str = "system",
        override_tag_match: bool = False,
        override_reason: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DefenseAssignment:
        """Place one topic on a committee and mark it ``Scheduled``.

        Raises:
            NotFoundError: unknown topic or committee.
            ValidationFailedError: the first failed check; nothing is written.
            ConflictError: a concurrent write invalidated the placement.
        """
        request = AssignmentRequest(topic_code, scheduled_at, ends_at, override_tag_match, override_reason)
        return self.assign_topics(committee_code, [request], assigned_by, cancel_event)[0]

    def assign_topics(
        self,
        committee_code: str,
        requests: Sequence[AssignmentRequest],
        assigned_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[DefenseAssignment]:
        """Place several topics on one committee; all of them or none."""
        if not requests:
            raise ValidationFailedError.of(FailureKind.INVALID_INPUT, "No topics to assign")
        codes = [r.topic_code for r in requests]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValidationFailedError.of(
                FailureKind.INVALID_INPUT,
                f"Topics listed twice: {', '.join(duplicates)}",
                topic_codes=duplicates,
            )

        view = ScheduleView.load(self._store)
        committee = view.committee(committee_code)
        if committee is None:
            raise NotFoundError("Committee", committee_code)
        for code in codes:
            if code not in view.topics:
                raise NotFoundError("Topic", code)

        now = self._clock()
        working = view.fork()
        mutations: List[Mutation] = []
        created: List[DefenseAssignment] = []
        for request in requests:
            topic = view.topics[request.topic_code]
            placement = Placement(
                topic_code=topic.code,
                committee_code=committee_code,
                scheduled_at=self._slot_for(working, committee, request.scheduled_at),
                ends_at=request.ends_at,
                override_tag_match=request.override_tag_match,
            )
            failure = self.validator.validate(working, placement)
            if failure is not None:
                raise ValidationFailedError(
                    failure,
                    {"topic_code": topic.code, "committee_code": committee_code},
                )
            assignment = self._place(
                working, topic, committee, placement, assigned_by, request.override_reason, now
            )
            working.add_pending(assignment)
            created.append(assignment)
            mutations.append(Put(assignment))
            mutations.extend(
                self._status_change(
                    topic, TopicStatus.SCHEDULED, assigned_by, now, f"Assigned to committee {committee_code}"
                )
            )

        guards: List[Guard] = [topic_free(a.topic_code) for a in created]
        guards.append(capacity_left(committee_code, len(created)))
        guards.extend(slot_free(committee_code, a.scheduled_at, a.ends_at) for a in created)
        guards.append(committee_unchanged(committee))

        raise_if_cancelled(cancel_event, "AssignTopics")
        saved = self._store.save(mutations, guards)
        assignments = [row for row in saved if isinstance(row, DefenseAssignment)]
        logger.info(
            "Assigned %d topic(s) to committee %s: %s",
            len(assignments),
            committee_code,
            ", ".join(a.topic_code for a in assignments),
        )
        return assignments

    def change_assignment(
        self,
        topic_code: str,
        new_committee_code: str,
        new_scheduled_at: Optional[datetime] = None,
        new_ends_at: Optional[datetime] = None,
        changed_by: str = "system",
        override_tag_match: bool = False,
        override_reason: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DefenseAssignment:
        """
        Move a topic's active assignment to another committee or slot.

        The current assignment is ignored while validating the new placement
        and is only deactivated in the same commit that creates its successor.
        """
        view = ScheduleView.load(self._store)
        topic = view.topics.get(topic_code)
        if topic is None:
            raise NotFoundError("Topic", topic_code)
        committee = view.committee(new_committee_code)
        if committee is None:
            raise NotFoundError("Committee", new_committee_code)
        current = view.active_for_topic(topic_code)
        if current is None:
            raise ValidationFailedError.of(
                FailureKind.TOPIC_NOT_ASSIGNED,
                f"Topic '{topic_code}' has no active assignment to change",
                topic_code=topic_code,
            )

        base = view.without(current.code)
        placement = Placement(
            topic_code=topic_code,
            committee_code=new_committee_code,
            scheduled_at=self._slot_for(base, committee, new_scheduled_at),
            ends_at=new_ends_at,
            override_tag_match=override_tag_match,
            reassigning=current.code,
        )
        failure = self.validator.validate(view, placement)
        if failure is not None:
            raise ValidationFailedError(
                failure,
                {"topic_code": topic_code, "committee_code": new_committee_code},
            )

        now = self._clock()
        successor = self._place(base, topic, committee, placement, changed_by, override_reason, now)
        mutations: List[Mutation] = [Put(self._retire(current, changed_by, now)), Put(successor)]
        mutations.extend(
            self._status_change(
                topic,
                TopicStatus.SCHEDULED,
                changed_by,
                now,
                f"Moved from committee {current.committee_code} to {new_committee_code}",
            )
        )
        guards = [
            topic_free(topic_code, except_code=current.code),
            capacity_left(new_committee_code, 1, excluding=[current.code]),
            slot_free(new_committee_code, successor.scheduled_at, successor.ends_at, excluding=[current.code]),
            committee_unchanged(committee),
        ]

        raise_if_cancelled(cancel_event, "ChangeAssignment")
        saved = self._store.save(mutations, guards)
        logger.info(
            "Moved topic %s from %s to %s at %s",
            topic_code,
            current.committee_code,
            new_committee_code,
            successor.scheduled_at,
        )
        return next(row for row in saved if isinstance(row, DefenseAssignment) and row.active)

    def remove_assignment(
        self,
        topic_code: str,
        removed_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[DefenseAssignment]:
        """Deactivate the topic's assignment. Removing an unassigned topic is a no-op."""
        view = ScheduleView.load(self._store)
        topic = view.topics.get(topic_code)
        if topic is None:
            raise NotFoundError("Topic", topic_code)
        current = view.active_for_topic(topic_code)
        if current is None:
            logger.info("Topic %s has no active assignment, nothing to remove", topic_code)
            return None

        now = self._clock()
        mutations: List[Mutation] = [Put(self._retire(current, removed_by, now))]
        if topic.status == TopicStatus.SCHEDULED:
            mutations.extend(
                self._status_change(
                    topic,
                    TopicStatus.ELIGIBLE_FOR_DEFENSE,
                    removed_by,
                    now,
                    f"Removed from committee {current.committee_code}",
                )
            )

        raise_if_cancelled(cancel_event, "RemoveAssignment")
        saved = self._store.save(mutations)
        logger.info("Removed topic %s from committee %s", topic_code, current.committee_code)
        return saved[0]

    def delete_committee(
        self,
        committee_code: str,
        force: bool = False,
        deleted_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> CommitteeDeletion:
        """
        Delete a committee with its roster.

        Without ``force`` a committee that still hosts defenses is refused with
        a ``ConflictError`` naming the blocking assignments. With ``force`` the
        assignments are deactivated, their topics reverted, the roster and then
        the committee removed, all in one commit.
        """
        view = ScheduleView.load(self._store)
        committee = view.committee(committee_code)
        if committee is None:
            raise NotFoundError("Committee", committee_code)
        active = view.active_assignments(committee_code=committee_code)
        if active and not force:
            raise ConflictError(
                f"Committee '{committee_code}' still hosts {len(active)} defense(s)",
                blocking=[a.code for a in active],
            )

        now = self._clock()
        mutations: List[Mutation] = [Put(self._retire(a, deleted_by, now)) for a in active]
        reverted: List[str] = []
        for assignment in active:
            topic = view.topics.get(assignment.topic_code)
            if topic is None or topic.status != TopicStatus.SCHEDULED:
                continue
            mutations.extend(
                self._status_change(
                    topic,
                    TopicStatus.ELIGIBLE_FOR_DEFENSE,
                    deleted_by,
                    now,
                    f"Committee {committee_code} deleted",
                )
            )
            reverted.append(topic.code)
        mutations.extend(self.registry.removal_mutations(view, committee_code))

        raise_if_cancelled(cancel_event, "DeleteCommittee")
        saved = self._store.save(mutations, [active_set_unchanged(committee_code, [a.code for a in active])])
        deactivated = [row for row in saved if isinstance(row, DefenseAssignment)]
        logger.info(
            "Deleted committee %s (%d assignment(s) deactivated)", committee_code, len(deactivated)
        )
        return CommitteeDeletion(committee_code, deactivated, reverted)

    # -- automatic assignment --------------------------------------------------

    def auto_assign(
        self,
        tag_priority_order: Sequence[str] = (),
        per_session_cap: Optional[int] = None,
        override_committees: Iterable[str] = (),
        topic_codes: Optional[Iterable[str]] = None,
        assigned_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> AutoAssignResult:
        """
        Greedy first-fit placement of every available topic.

        Topics are ordered by the position of their primary tag in
        ``tag_priority_order`` (unlisted tags last), then oldest first.
        Committees with a future date, a chair and room left are ordered by
        date, then most remaining room. Each topic takes the first committee
        that accepts it; topics that fit nowhere are reported with a reason.
        The whole plan is computed before a single commit, so a concurrent
        write aborts the batch without partial effects.
        """
        if per_session_cap is not None and per_session_cap < 1:
            raise ValidationFailedError.of(FailureKind.INVALID_INPUT, "per_session_cap must be at least 1")
        overrides = set(override_committees)
        view = ScheduleView.load(self._store)
        today = self._clock().date()

        topics = self.availability.available_topics(view=view)
        if topic_codes is not None:
            wanted = set(topic_codes)
            topics = [t for t in topics if t.code in wanted]
        order = list(tag_priority_order)
        rank: Dict[str, int] = {}
        for index, tag in enumerate(order):
            rank.setdefault(tag, index)
        topics.sort(key=lambda t: (rank.get(t.main_tag(), len(order)), t.created_at, t.code))

        def remaining(committee: Committee, state: ScheduleView) -> int:
            capacity = committee.session_capacity
            if per_session_cap is not None:
                capacity = min(capacity, per_session_cap)
            return capacity - state.active_count(committee.code)

        future = [
            c for c in view.committees.values() if c.defense_date is not None and c.defense_date > today
        ]
        candidates = [c for c in future if len(view.chairs_of(c.code)) == 1 and remaining(c, view) > 0]
        candidates.sort(key=lambda c: (c.defense_date, -remaining(c, view), c.code))
        logger.info(
            "Auto-assign: %d topic(s), %d candidate committee(s)", len(topics), len(candidates)
        )

        now = self._clock()
        working = view.fork()
        result = AutoAssignResult()
        mutations: List[Mutation] = []
        used: Dict[str, int] = {}
        for topic in topics:
            raise_if_cancelled(cancel_event, "AutoAssignTopics")
            failures: List[FailureKind] = []
            placed: Optional[DefenseAssignment] = None
            for committee in candidates:
                override = committee.code in overrides
                # only committees that can hear the topic count towards its unassigned reason
                if self.validator.tags_match(working, topic, committee, override) is not None:
                    failures.append(FailureKind.NO_TAG_MATCH)
                    continue
                if remaining(committee, working) <= 0:
                    failures.append(FailureKind.NO_CAPACITY)
                    continue
                slot = working.next_free_slot(committee, self._slot_minutes)
                if slot is None:
                    failures.append(FailureKind.NO_CAPACITY)
                    continue
                placement = Placement(
                    topic_code=topic.code,
                    committee_code=committee.code,
                    scheduled_at=slot,
                    override_tag_match=override,
                )
                failure = self.validator.validate(working, placement, capacity_cap=per_session_cap)
                if failure is not None:
                    failures.append(failure.kind)
                    continue
                placed = self._place(
                    working,
                    topic,
                    committee,
                    placement,
                    assigned_by,
                    AUTO_OVERRIDE_REASON if override else None,
                    now,
                )
                break

            if placed is None:
                reason = self._unassigned_reason(topic, failures, future, working, overrides)
                result.unassigned.append(UnassignedTopic(topic.code, reason, self._describe(reason, topic)))
                continue
            working.add_pending(placed)
            used[placed.committee_code] = used.get(placed.committee_code, 0) + 1
            result.assigned.append(placed)
            mutations.append(Put(placed))
            mutations.extend(
                self._status_change(
                    topic,
                    TopicStatus.SCHEDULED,
                    assigned_by,
                    now,
                    f"Auto-assigned to committee {placed.committee_code}",
                )
            )

        if not result.assigned:
            logger.info("Auto-assign placed nothing; %d topic(s) unassigned", len(result.unassigned))
            return result

        guards: List[Guard] = [topic_free(a.topic_code) for a in result.assigned]
        for committee_code, count in sorted(used.items()):
            guards.append(capacity_left(committee_code, count, cap=per_session_cap))
            guards.append(committee_unchanged(view.committees[committee_code]))
        guards.extend(slot_free(a.committee_code, a.scheduled_at, a.ends_at) for a in result.assigned)

        raise_if_cancelled(cancel_event, "AutoAssignTopics")
        saved = self._store.save(mutations, guards)
        result.assigned = [row for row in saved if isinstance(row, DefenseAssignment)]
        logger.info(
            "Auto-assign committed %d assignment(s); %d topic(s) unassigned",
            len(result.assigned),
            len(result.unassigned),
        )
        return result

    @staticmethod
    def _unassigned_reason(
        topic: Topic,
        failures: List[FailureKind],
        future: List[Committee],
        view: ScheduleView,
        overrides: set,
    ) -> UnassignedReason:
        if any(kind in _CONFLICT_KINDS for kind in failures):
            return UnassignedReason.LECTURER_CONFLICT
        if any(kind in _CAPACITY_KINDS for kind in failures):
            return UnassignedReason.NO_CAPACITY
        # a matching committee exists but was skipped as full or without a chair
        for committee in future:
            if committee.code in overrides or topic.tags & view.coverage_tags(committee.code):
                return UnassignedReason.NO_CAPACITY
        return UnassignedReason.NO_TAG_MATCH

    @staticmethod
    def _describe(reason: UnassignedReason, topic: Topic) -> str:
        if reason == UnassignedReason.LECTURER_CONFLICT:
            return f"Every matching committee for '{topic.code}' has a conflicting member"
        if reason == UnassignedReason.NO_CAPACITY:
            return f"No matching committee for '{topic.code}' has room left"
        return f"No upcoming committee covers the tags of '{topic.code}'"


__all__ = [
    "AssignmentRequest",
    "AssignmentScheduler",
    "AutoAssignResult",
    "CommitteeDeletion",
    "UnassignedReason",
    "UnassignedTopic",
]

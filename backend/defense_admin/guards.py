"""Commit-time preconditions shared by the registry and the scheduler.

Each factory returns a ``Guard`` the store evaluates against committed state
inside its commit critical section.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Optional

from .models import Committee, CommitteeMember, DefenseAssignment
from .store import Guard, StoreReader


def _active_rows(reader: StoreReader, committee_code: str, excluding: Iterable[str] = ()):
    skip = set(excluding)
    return reader.rows(
        DefenseAssignment,
        lambda a: a.active and a.committee_code == committee_code and a.code not in skip,
    )


def topic_free(topic_code: str, except_code: Optional[str] = None) -> Guard:
    def check(reader: StoreReader) -> bool:
        return not reader.rows(
            DefenseAssignment,
            lambda a: a.active and a.topic_code == topic_code and a.code != except_code,
        )

    return Guard(f"topic '{topic_code}' has no other active assignment", check, (topic_code,))


def capacity_left(
    committee_code: str,
    adding: int,
    cap: Optional[int] = None,
    excluding: Iterable[str] = (),
) -> Guard:
    excluded = tuple(excluding)

    def check(reader: StoreReader) -> bool:
        committee = reader.get(Committee, committee_code)
        if committee is None:
            return False
        capacity = committee.session_capacity if cap is None else min(cap, committee.session_capacity)
        return len(_active_rows(reader, committee_code, excluded)) + adding <= capacity

    return Guard(f"committee '{committee_code}' has room for {adding} more", check, (committee_code,))


def slot_free(
    committee_code: str,
    starts: datetime,
    ends: datetime,
    excluding: Iterable[str] = (),
) -> Guard:
    excluded = tuple(excluding)

    def check(reader: StoreReader) -> bool:
        return not any(
            starts < a.ends_at and a.scheduled_at < ends
            for a in _active_rows(reader, committee_code, excluded)
        )

    return Guard(
        f"slot {starts:%Y-%m-%d %H:%M} of committee '{committee_code}' is free",
        check,
        (committee_code,),
    )


def committee_unchanged(committee: Committee) -> Guard:
    def check(reader: StoreReader) -> bool:
        current = reader.get(Committee, committee.code)
        return current is not None and current.version == committee.version

    return Guard(f"committee '{committee.code}' unchanged", check, (committee.code,))


def active_set_unchanged(committee_code: str, assignment_codes: Iterable[str]) -> Guard:
    expected = frozenset(assignment_codes)

    def check(reader: StoreReader) -> bool:
        return {a.code for a in _active_rows(reader, committee_code)} == expected

    return Guard(f"active assignments of committee '{committee_code}' unchanged", check, tuple(expected))


def roster_unchanged(committee_code: str, member_codes: Iterable[str]) -> Guard:
    expected = frozenset(member_codes)

    def check(reader: StoreReader) -> bool:
        current = reader.rows(CommitteeMember, lambda m: m.committee_code == committee_code)
        return {m.code for m in current} == expected

    return Guard(f"members of committee '{committee_code}' unchanged", check, (committee_code,))


def lecturers_free(committee: Committee, quotas: Dict[str, Optional[int]]) -> Guard:
    """Every lecturer keeps quota headroom and no overlapping seat elsewhere.

    A ``None`` quota skips the headroom check for that lecturer.
    """

    def check(reader: StoreReader) -> bool:
        for lecturer_code, quota in quotas.items():
            seats = reader.rows(
                CommitteeMember,
                lambda m: m.lecturer_code == lecturer_code and m.committee_code != committee.code,
            )
            if quota is not None and len(seats) >= quota:
                return False
            for seat in seats:
                other = reader.get(Committee, seat.committee_code)
                if other is not None and other.overlaps(committee):
                    return False
        return True

    return Guard(
        f"lecturers of committee '{committee.code}' remain available",
        check,
        tuple(sorted(quotas)),
    )


__all__ = [
    "active_set_unchanged",
    "capacity_left",
    "committee_unchanged",
    "lecturers_free",
    "roster_unchanged",
    "slot_free",
    "topic_free",
]

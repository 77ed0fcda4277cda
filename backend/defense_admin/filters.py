"""Typed filters for store queries, one per entity family."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import FrozenSet, Optional

from .models import Committee, LecturerProfile, Topic, TopicStatus


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle.lower() in haystack.lower()


@dataclass(frozen=True)
class TopicFilter:
    status: Optional[TopicStatus] = None
    tag: Optional[str] = None
    department_code: Optional[str] = None
    specialty_code: Optional[str] = None
    student_code: Optional[str] = None
    codes: Optional[FrozenSet[str]] = None

    def matches(self, topic: Topic) -> bool:
        if self.status is not None and topic.status != self.status:
            return False
        if self.tag and self.tag not in topic.tags:
            return False
        if self.department_code and topic.department_code != self.department_code:
            return False
        if self.specialty_code and topic.specialty_code != self.specialty_code:
            return False
        if self.student_code and topic.student_code != self.student_code:
            return False
        if self.codes is not None and topic.code not in self.codes:
            return False
        return True


@dataclass(frozen=True)
class CommitteeFilter:
    keyword: Optional[str] = None
    defense_date: Optional[date] = None
    tags: Optional[FrozenSet[str]] = None

    def matches(self, committee: Committee) -> bool:
        if self.keyword:
            keyword = self.keyword.strip()
            if not (
                _contains(committee.code, keyword)
                or _contains(committee.name, keyword)
                or _contains(committee.room, keyword)
            ):
                return False
        if self.defense_date is not None and committee.defense_date != self.defense_date:
            return False
        if self.tags and not (self.tags & committee.tags):
            return False
        return True


@dataclass(frozen=True)
class LecturerFilter:
    tag: Optional[str] = None
    department_code: Optional[str] = None

    def matches(self, lecturer: LecturerProfile) -> bool:
        if self.tag and self.tag not in lecturer.tags:
            return False
        if self.department_code and lecturer.department_code != self.department_code:
            return False
        return True


__all__ = ["CommitteeFilter", "LecturerFilter", "TopicFilter"]

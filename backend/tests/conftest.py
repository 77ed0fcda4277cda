"""
Defense Admin - Test Configuration and Fixtures
"""
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

import pytest

from defense_admin.config import Settings
from defense_admin.models import (
    Committee,
    LecturerProfile,
    MemberRole,
    StudentProfile,
    Tag,
    Topic,
    TopicStatus,
)
from defense_admin.registry import CommitteeDraft, MemberInput
from defense_admin.service import DefenseAdminService
from defense_admin.store import InMemoryEntityStore, Put

FIXED_NOW = datetime(2025, 6, 1, 9, 0)
DEFENSE_DAY = date(2025, 6, 10)


def at(hour: int, minute: int = 0, day: date = DEFENSE_DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class Seeder:
    """Writes collaborator records straight to the store and committees through the registry."""

    def __init__(self, store: InMemoryEntityStore, service: DefenseAdminService):
        self.store = store
        self.service = service
        self._topic_seq = 0

    def tag(self, code: str, name: Optional[str] = None) -> Tag:
        return self.store.save([Put(Tag(code=code, name=name or code))])[0]

    def lecturer(
        self,
        code: str,
        tags: Iterable[str] = (),
        degree: Optional[str] = "PhD",
        quota: int = 5,
    ) -> LecturerProfile:
        record = LecturerProfile(
            code=code,
            full_name=f"Lecturer {code}",
            degree=degree,
            tags=frozenset(tags),
            defense_quota=quota,
        )
        return self.store.save([Put(record)])[0]

    def student(self, code: str) -> StudentProfile:
        return self.store.save([Put(StudentProfile(code=code, full_name=f"Student {code}"))])[0]

    def topic(
        self,
        code: str,
        tags: Iterable[str] = (),
        status: TopicStatus = TopicStatus.ELIGIBLE_FOR_DEFENSE,
        supervisor: Optional[str] = None,
        student: Optional[str] = None,
        created_at: Optional[datetime] = None,
        primary_tag: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Topic:
        self._topic_seq += 1
        record = Topic(
            code=code,
            title=f"Thesis {code}",
            tags=frozenset(tags),
            primary_tag=primary_tag,
            department_code=department,
            status=status,
            supervisor_code=supervisor,
            student_code=student,
            created_at=created_at or FIXED_NOW - timedelta(days=30) + timedelta(minutes=self._topic_seq),
        )
        return self.store.save([Put(record)])[0]

    def roster(self, prefix: str, tags: Iterable[str] = (), chair_degree: str = "PhD") -> List[MemberInput]:
        """Four fresh lecturers: chair, secretary and two members."""
        codes = [f"{prefix}_L{i}" for i in range(1, 5)]
        self.lecturer(codes[0], tags, degree=chair_degree)
        for code in codes[1:]:
            self.lecturer(code, tags, degree="MSc")
        return [
            MemberInput(codes[0], MemberRole.CHAIR, True),
            MemberInput(codes[1], MemberRole.SECRETARY),
            MemberInput(codes[2], MemberRole.MEMBER),
            MemberInput(codes[3], MemberRole.REVIEWER),
        ]

    def committee(
        self,
        code: str,
        tags: Iterable[str] = (),
        defense_date: Optional[date] = DEFENSE_DAY,
        capacity: int = 5,
        members: Optional[List[MemberInput]] = None,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> Committee:
        if members is None:
            members = self.roster(code)
        draft = CommitteeDraft(
            code=code,
            name=f"Committee {code}",
            defense_date=defense_date,
            room="B1-201",
            session_capacity=capacity,
            tags=tags,
            start_time=start_time,
            end_time=end_time,
            members=members or None,
        )
        return self.service.registry.create_committee(draft)


@pytest.fixture
def settings() -> Settings:
    return Settings(store_backend="memory", rooms=["B1-201", "B1-202"])


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def service(store, settings) -> DefenseAdminService:
    return DefenseAdminService(store, settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def seed(store, service) -> Seeder:
    return Seeder(store, service)


@pytest.fixture
def scheduler(service):
    return service.scheduler


@pytest.fixture
def registry(service):
    return service.registry

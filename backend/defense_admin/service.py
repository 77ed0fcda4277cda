"""
Public operation surface of the defense administration engine.

Each operation returns an ``OperationResult`` envelope instead of raising, so
callers (the HTTP layer, the CLI) can branch on ``success`` and map
``error["kind"]`` to their own status codes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from .availability import AvailabilityIndex
from .config import Settings, load_settings
from .conflicts import ConflictValidator
from .errors import DefenseAdminError, FailureKind, ValidationFailedError
from .export import EXPORT_FORMATS, export_schedule
from .filters import CommitteeFilter
from .models import MemberRole
from .policies import ChairEligibilityPolicy, build_chair_policy
from .registry import CommitteeChanges, CommitteeDraft, CommitteeRegistry, MemberInput
from .scheduler import AssignmentRequest, AssignmentScheduler
from .store import InMemoryEntityStore, JsonEntityStore
from .views import DefenseViews

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, data: T = None) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: DefenseAdminError) -> "OperationResult[T]":
        return cls(success=False, error=exc.to_dict())

    @property
    def error_kind(self) -> Optional[str]:
        return self.error["kind"] if self.error else None


def build_store(settings: Settings) -> InMemoryEntityStore:
    if settings.store_backend == "memory":
        return InMemoryEntityStore()
    if settings.store_backend == "json":
        return JsonEntityStore(settings.store_path)
    raise ValueError(f"Unknown store backend '{settings.store_backend}'")


class DefenseAdminService:
    def __init__(
        self,
        store: InMemoryEntityStore,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
        chair_policy: Optional[ChairEligibilityPolicy] = None,
    ):
        self.store = store
        self.settings = settings
        self.chair_policy = chair_policy or build_chair_policy(settings)
        self.validator = ConflictValidator(settings.slot_minutes, settings.afternoon_start)
        self.availability = AvailabilityIndex(store, self.chair_policy)
        self.registry = CommitteeRegistry(store, self.chair_policy, settings, clock)
        self.scheduler = AssignmentScheduler(store, self.validator, self.availability, self.registry, clock)
        self.views = DefenseViews(store, clock)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[InMemoryEntityStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "DefenseAdminService":
        settings = settings or load_settings()
        store = store if store is not None else build_store(settings)
        return cls(store, settings, clock or datetime.now)

    def _run(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        try:
            return OperationResult.ok(func(*args, **kwargs))
        except DefenseAdminError as exc:
            logger.info("%s failed: %s (%s)", operation, exc.message, exc.code)
            return OperationResult.fail(exc)

    # -- scheduling ------------------------------------------------------------

    def assign_topic(
        self,
        topic_code: str,
        committee_code: str,
        scheduled_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        assigned_by: str = "system",
        override_tag_match: bool = False,
        override_reason: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "Assign",
            self.scheduler.assign,
            topic_code,
            committee_code,
            scheduled_at,
            ends_at,
            assigned_by=assigned_by,
            override_tag_match=override_tag_match,
            override_reason=override_reason,
            cancel_event=cancel_event,
        )

    def assign_topics(
        self,
        committee_code: str,
        requests: Sequence[AssignmentRequest],
        assigned_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "AssignTopics",
            self.scheduler.assign_topics,
            committee_code,
            requests,
            assigned_by=assigned_by,
            cancel_event=cancel_event,
        )

    def auto_assign_topics(
        self,
        tag_priority_order: Sequence[str] = (),
        per_session_cap: Optional[int] = None,
        override_committees: Iterable[str] = (),
        topic_codes: Optional[Iterable[str]] = None,
        assigned_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "AutoAssignTopics",
            self.scheduler.auto_assign,
            tag_priority_order,
            per_session_cap,
            override_committees=override_committees,
            topic_codes=topic_codes,
            assigned_by=assigned_by,
            cancel_event=cancel_event,
        )

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
    ) -> OperationResult:
        return self._run(
            "ChangeAssignment",
            self.scheduler.change_assignment,
            topic_code,
            new_committee_code,
            new_scheduled_at,
            new_ends_at,
            changed_by=changed_by,
            override_tag_match=override_tag_match,
            override_reason=override_reason,
            cancel_event=cancel_event,
        )

    def remove_assignment(
        self,
        topic_code: str,
        removed_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "RemoveAssignment",
            self.scheduler.remove_assignment,
            topic_code,
            removed_by=removed_by,
            cancel_event=cancel_event,
        )

    # -- committees ------------------------------------------------------------

    def create_committee(
        self, draft: CommitteeDraft, cancel_event: Optional[threading.Event] = None
    ) -> OperationResult:
        return self._run("CreateCommittee", self.registry.create_committee, draft, cancel_event)

    def update_committee(
        self,
        committee_code: str,
        changes: CommitteeChanges,
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run("UpdateCommittee", self.registry.update_committee, committee_code, changes, cancel_event)

    def save_committee_members(
        self,
        committee_code: str,
        members: Sequence[MemberInput],
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "SaveCommitteeMembers", self.registry.save_committee_members, committee_code, members, cancel_event
        )

    def delete_committee(
        self,
        committee_code: str,
        force: bool = False,
        deleted_by: str = "system",
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        return self._run(
            "DeleteCommittee",
            self.scheduler.delete_committee,
            committee_code,
            force,
            deleted_by=deleted_by,
            cancel_event=cancel_event,
        )

    def list_committees(
        self,
        committee_filter: Optional[CommitteeFilter] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> OperationResult:
        def run() -> Dict[str, Any]:
            items, total = self.registry.list_committees(committee_filter, page, page_size)
            return {"items": items, "total": total, "page": page, "page_size": page_size}

        return self._run("ListCommittees", run)

    def get_committee_create_init(self) -> OperationResult:
        return self._run("GetCommitteeCreateInit", self.registry.create_init)

    # -- queries ---------------------------------------------------------------

    def get_available_lecturers(
        self,
        tag: Optional[str] = None,
        on_date: Optional[date] = None,
        role: Optional[MemberRole] = None,
        require_chair: bool = False,
        excluding_committee: Optional[str] = None,
    ) -> OperationResult:
        return self._run(
            "GetAvailableLecturers",
            self.availability.available_lecturers,
            tag,
            on_date,
            role,
            require_chair,
            excluding_committee,
        )

    def get_available_topics(
        self,
        tag: Optional[str] = None,
        department: Optional[str] = None,
        excluding_committee: Optional[str] = None,
    ) -> OperationResult:
        return self._run(
            "GetAvailableTopics", self.availability.available_topics, tag, department, excluding_committee
        )

    def get_committee_detail(self, committee_code: str) -> OperationResult:
        return self._run("GetCommitteeDetail", self.views.committee_detail, committee_code)

    def get_lecturer_committees(self, lecturer_code: str) -> OperationResult:
        return self._run("GetLecturerCommittees", self.views.lecturer_committees, lecturer_code)

    def get_student_defense_info(self, student_code: str) -> OperationResult:
        return self._run("GetStudentDefenseInfo", self.views.student_defense_info, student_code)

    def get_topic_history(self, topic_code: str) -> OperationResult:
        return self._run("GetTopicHistory", self.views.topic_history, topic_code)

    def get_tags(self) -> OperationResult:
        return self._run("GetTags", self.views.tags)

    def export_schedule(self, fmt: str = "csv", committee_code: Optional[str] = None) -> OperationResult[bytes]:
        def run() -> bytes:
            if fmt not in EXPORT_FORMATS:
                raise ValidationFailedError.of(
                    FailureKind.INVALID_INPUT,
                    f"Unsupported export format '{fmt}'",
                    formats=list(EXPORT_FORMATS),
                )
            if committee_code is not None:
                self.registry.get_committee(committee_code)
            return export_schedule(self.store, fmt, committee_code)

        return self._run("ExportSchedule", run)


__all__ = ["DefenseAdminService", "OperationResult", "build_store"]

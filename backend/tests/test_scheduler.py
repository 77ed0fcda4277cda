"""
Tests for manual assignment, reassignment, removal and committee deletion.
"""
import threading
from datetime import timedelta

import pytest

from conftest import DEFENSE_DAY, at
from defense_admin.errors import (
    ConflictError,
    FailureKind,
    NotFoundError,
    OperationCancelled,
    ValidationFailedError,
)
from defense_admin.models import Committee, CommitteeMember, DefenseAssignment, Topic, TopicStatus
from defense_admin.schedule_view import ScheduleView
from defense_admin.scheduler import AssignmentRequest


def active_rows(store, topic_code=None):
    return store.list(
        DefenseAssignment,
        lambda a: a.active and (topic_code is None or a.topic_code == topic_code),
    )


def status_of(store, topic_code):
    return store.get_by_code(Topic, topic_code).status


class TestAssign:
    def test_assign_schedules_topic(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})

        assignment = scheduler.assign("T1", "C1", at(9), assigned_by="admin")

        assert assignment.active
        assert (assignment.scheduled_at, assignment.ends_at) == (at(9), at(10))
        assert assignment.session == 1
        assert assignment.assigned_by == "admin"
        assert status_of(store, "T1") == TopicStatus.SCHEDULED

    def test_assign_writes_history(self, scheduler, seed, service):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1", assigned_by="admin")

        history = service.views.topic_history("T1")
        assert [(h.old_status, h.new_status) for h in history] == [
            (TopicStatus.ELIGIBLE_FOR_DEFENSE, TopicStatus.SCHEDULED)
        ]
        assert history[0].changed_by == "admin"

    def test_afternoon_slot_is_session_two(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        assert scheduler.assign("T1", "C1", at(14)).session == 2

    def test_next_free_slot_is_used_without_a_time(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        seed.topic("T2", tags={"AI"})
        first = scheduler.assign("T1", "C1")
        second = scheduler.assign("T2", "C1")
        assert first.scheduled_at == at(7, 30)
        assert second.scheduled_at == at(8, 30)

    def test_full_committee_refuses(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"}, capacity=1)
        seed.topic("T1", tags={"AI"})
        seed.topic("T3", tags={"AI"})
        scheduler.assign("T1", "C1")

        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign("T3", "C1", at(11))
        assert exc.value.failure.kind == FailureKind.NO_CAPACITY
        assert exc.value.details["topic_code"] == "T3"
        assert active_rows(store, "T3") == []
        assert status_of(store, "T3") == TopicStatus.ELIGIBLE_FOR_DEFENSE

    def test_second_assignment_of_same_topic(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1")
        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign("T1", "C1")
        assert exc.value.failure.kind == FailureKind.TOPIC_ALREADY_ASSIGNED

    def test_unknown_codes(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        with pytest.raises(NotFoundError):
            scheduler.assign("NOPE", "C1")
        with pytest.raises(NotFoundError):
            scheduler.assign("T1", "NOPE")

    def test_override_is_recorded_when_it_bypasses_a_mismatch(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"Networking"})
        assignment = scheduler.assign(
            "T1", "C1", override_tag_match=True, override_reason="External examiner covers networking"
        )
        assert assignment.tag_override
        assert assignment.override_reason == "External examiner covers networking"

    def test_override_on_matching_topic_is_not_recorded(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        assignment = scheduler.assign("T1", "C1", override_tag_match=True, override_reason="unneeded")
        assert not assignment.tag_override
        assert assignment.override_reason is None

    def test_cancelled_before_commit(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            scheduler.assign("T1", "C1", cancel_event=cancel)
        assert active_rows(store) == []
        assert status_of(store, "T1") == TopicStatus.ELIGIBLE_FOR_DEFENSE


class TestAssignTopics:
    def test_places_all_in_free_slots(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        for code in ("T1", "T2", "T3"):
            seed.topic(code, tags={"AI"})

        created = scheduler.assign_topics(
            "C1", [AssignmentRequest("T1"), AssignmentRequest("T2", at(13)), AssignmentRequest("T3")]
        )

        assert [a.scheduled_at for a in created] == [at(7, 30), at(13), at(8, 30)]
        assert all(status_of(store, code) == TopicStatus.SCHEDULED for code in ("T1", "T2", "T3"))

    def test_all_or_nothing(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"}, capacity=1)
        seed.topic("T1", tags={"AI"})
        seed.topic("T2", tags={"AI"})

        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign_topics("C1", [AssignmentRequest("T1"), AssignmentRequest("T2")])
        assert exc.value.failure.kind == FailureKind.NO_CAPACITY
        assert exc.value.details["topic_code"] == "T2"
        assert active_rows(store) == []
        assert status_of(store, "T1") == TopicStatus.ELIGIBLE_FOR_DEFENSE

    def test_requests_in_the_same_slot(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        seed.topic("T2", tags={"AI"})
        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign_topics("C1", [AssignmentRequest("T1", at(9)), AssignmentRequest("T2", at(9, 30))])
        assert exc.value.failure.kind == FailureKind.SLOT_TAKEN

    def test_empty_and_duplicate_requests(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign_topics("C1", [])
        assert exc.value.failure.kind == FailureKind.INVALID_INPUT
        with pytest.raises(ValidationFailedError) as exc:
            scheduler.assign_topics("C1", [AssignmentRequest("T1"), AssignmentRequest("T1")])
        assert exc.value.failure.kind == FailureKind.INVALID_INPUT


class TestChangeAssignment:
    def test_moves_to_another_committee(self, scheduler, seed, store, service):
        seed.committee("C1", tags={"AI"})
        seed.committee("C2", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        original = scheduler.assign("T1", "C1", at(9))

        moved = scheduler.change_assignment("T1", "C2", changed_by="admin")

        assert moved.committee_code == "C2"
        assert moved.scheduled_at == at(7, 30)
        assert [a.code for a in active_rows(store, "T1")] == [moved.code]
        retired = store.get_by_code(DefenseAssignment, original.code)
        assert not retired.active
        assert retired.deactivated_by == "admin"
        assert status_of(store, "T1") == TopicStatus.SCHEDULED
        history = service.views.topic_history("T1")
        assert (history[-1].old_status, history[-1].new_status) == (TopicStatus.SCHEDULED, TopicStatus.SCHEDULED)

    def test_new_slot_on_full_committee(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"}, capacity=1)
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1", at(9))

        moved = scheduler.change_assignment("T1", "C1", at(14))

        assert moved.scheduled_at == at(14)
        assert moved.session == 2
        assert len(active_rows(store)) == 1

    def test_failure_leaves_original_in_place(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.committee("C2", tags={"Networking"})
        seed.topic("T1", tags={"AI"})
        original = scheduler.assign("T1", "C1", at(9))

        with pytest.raises(ValidationFailedError) as exc:
            scheduler.change_assignment("T1", "C2")
        assert exc.value.failure.kind == FailureKind.NO_TAG_MATCH
        assert [a.code for a in active_rows(store, "T1")] == [original.code]

    def test_topic_without_assignment(self, scheduler, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        with pytest.raises(ValidationFailedError) as exc:
            scheduler.change_assignment("T1", "C1")
        assert exc.value.failure.kind == FailureKind.TOPIC_NOT_ASSIGNED


class TestRemoveAssignment:
    def test_remove_reverts_topic(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1")

        removed = scheduler.remove_assignment("T1", removed_by="admin")

        assert not removed.active
        assert removed.deactivated_by == "admin"
        assert active_rows(store) == []
        assert status_of(store, "T1") == TopicStatus.ELIGIBLE_FOR_DEFENSE

    def test_remove_twice_is_a_no_op(self, scheduler, seed, service):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1")
        scheduler.remove_assignment("T1")

        assert scheduler.remove_assignment("T1") is None
        assert len(service.views.topic_history("T1")) == 2

    def test_unknown_topic(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.remove_assignment("NOPE")


class TestDeleteCommittee:
    def test_refused_while_hosting_defenses(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        assignment = scheduler.assign("T1", "C1")

        with pytest.raises(ConflictError) as exc:
            scheduler.delete_committee("C1")
        assert exc.value.details["blocking"] == [assignment.code]
        assert store.find(Committee, "C1") is not None

    def test_force_cascades(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        scheduler.assign("T1", "C1")

        deletion = scheduler.delete_committee("C1", force=True, deleted_by="admin")

        assert deletion.reverted_topics == ["T1"]
        assert [a.topic_code for a in deletion.deactivated] == ["T1"]
        assert store.find(Committee, "C1") is None
        assert store.list(CommitteeMember, lambda m: m.committee_code == "C1") == []
        assert active_rows(store) == []
        assert status_of(store, "T1") == TopicStatus.ELIGIBLE_FOR_DEFENSE

    def test_empty_committee_deletes_without_force(self, scheduler, seed, store):
        seed.committee("C1")
        deletion = scheduler.delete_committee("C1")
        assert deletion.deactivated == []
        assert store.find(Committee, "C1") is None

    def test_unknown_committee(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.delete_committee("NOPE")


class TestConcurrency:
    def test_stale_view_is_rejected_at_commit(self, scheduler, seed, store, monkeypatch):
        seed.committee("C1", tags={"AI"}, capacity=1)
        seed.topic("T1", tags={"AI"})
        seed.topic("T2", tags={"AI"})
        stale = ScheduleView.load(store)
        scheduler.assign("T2", "C1", at(14))

        monkeypatch.setattr(ScheduleView, "load", classmethod(lambda cls, _store: stale.fork()))
        with pytest.raises(ConflictError):
            scheduler.assign("T1", "C1", at(9))
        assert [a.topic_code for a in active_rows(store)] == ["T2"]
        assert status_of(store, "T1") == TopicStatus.ELIGIBLE_FOR_DEFENSE

    def test_parallel_assigns_never_overfill(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"}, capacity=3)
        codes = [f"T{i}" for i in range(8)]
        for code in codes:
            seed.topic(code, tags={"AI"})

        barrier = threading.Barrier(len(codes))
        outcomes = []

        def worker(code):
            barrier.wait()
            try:
                scheduler.assign(code, "C1")
                outcomes.append("ok")
            except (ConflictError, ValidationFailedError):
                outcomes.append("rejected")

        threads = [threading.Thread(target=worker, args=(code,)) for code in codes]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        rows = active_rows(store)
        assert len(outcomes) == len(codes)
        assert len(rows) == outcomes.count("ok") <= 3
        assert len({a.scheduled_at for a in rows}) == len(rows)

    def test_schedule_stays_consistent(self, scheduler, seed, store):
        seed.committee("C1", tags={"AI"}, capacity=2)
        seed.committee("C2", tags={"AI"}, defense_date=DEFENSE_DAY + timedelta(days=1))
        for code in ("T1", "T2", "T3"):
            seed.topic(code, tags={"AI"})
        scheduler.assign("T1", "C1")
        scheduler.assign("T2", "C1")
        scheduler.change_assignment("T2", "C2")
        scheduler.assign("T3", "C1")
        scheduler.remove_assignment("T1")

        rows = active_rows(store)
        for topic in store.list(Topic):
            mine = [a for a in rows if a.topic_code == topic.code]
            assert len(mine) <= 1
            assert (topic.status == TopicStatus.SCHEDULED) == bool(mine)
        for committee in store.list(Committee):
            assert len([a for a in rows if a.committee_code == committee.code]) <= committee.session_capacity

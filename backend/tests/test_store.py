"""
Tests for the entity store: versions, guards, atomic commits and persistence.
"""
from dataclasses import replace
from datetime import date, time

import pytest

from defense_admin.errors import ConflictError, NotFoundError, StoreFailure
from defense_admin.models import Committee, LecturerProfile, Tag
from defense_admin.store import Delete, Guard, InMemoryEntityStore, JsonEntityStore, Put


class TestVersions:
    def test_insert_sets_version_one(self, store):
        saved = store.save([Put(Tag(code="AI", name="Artificial Intelligence"))])
        assert saved[0].version == 1
        assert store.get_by_code(Tag, "AI").version == 1

    def test_update_requires_current_version(self, store):
        tag = store.save([Put(Tag(code="AI", name="AI"))])[0]
        store.save([Put(replace(tag, name="Artificial Intelligence"))])

        with pytest.raises(ConflictError):
            store.save([Put(replace(tag, name="Stale"))])
        assert store.get_by_code(Tag, "AI").name == "Artificial Intelligence"

    def test_insert_of_existing_code_conflicts(self, store):
        store.save([Put(Tag(code="AI"))])
        with pytest.raises(ConflictError):
            store.save([Put(Tag(code="AI"))])

    def test_delete_checks_expected_version(self, store):
        tag = store.save([Put(Tag(code="AI"))])[0]
        with pytest.raises(ConflictError):
            store.save([Delete(Tag, "AI", expected_version=tag.version + 1)])
        store.save([Delete(Tag, "AI", expected_version=tag.version)])
        assert store.find(Tag, "AI") is None

    def test_reads_are_copies(self, store):
        store.save([Put(LecturerProfile(code="L1", tags=frozenset({"AI"})))])
        copy = store.get_by_code(LecturerProfile, "L1")
        copy.full_name = "Changed"
        assert store.get_by_code(LecturerProfile, "L1").full_name == ""

    def test_get_by_code_unknown_raises(self, store):
        with pytest.raises(NotFoundError) as exc:
            store.get_by_code(Committee, "NOPE")
        assert exc.value.code == "COMMITTEE_NOT_FOUND"


class TestTransactions:
    def test_failed_guard_writes_nothing(self, store):
        guard = Guard("always fails", lambda reader: False, ("AI",))
        with pytest.raises(ConflictError) as exc:
            store.save([Put(Tag(code="AI"))], [guard])
        assert exc.value.details["blocking"] == ["AI"]
        assert store.find(Tag, "AI") is None

    def test_guard_sees_committed_rows(self, store):
        store.save([Put(Tag(code="AI"))])
        guard = Guard("AI exists", lambda reader: reader.get(Tag, "AI") is not None)
        store.save([Put(Tag(code="NET"))], [guard])
        assert store.find(Tag, "NET") is not None

    def test_commit_is_all_or_nothing(self, store):
        store.save([Put(Tag(code="AI"))])
        with pytest.raises(ConflictError):
            store.save([Put(Tag(code="NET")), Put(Tag(code="AI"))])
        assert store.find(Tag, "NET") is None

    def test_same_record_twice_in_one_commit_is_rejected(self, store):
        with pytest.raises(ValueError):
            store.save([Put(Tag(code="AI")), Put(Tag(code="AI"))])

    def test_persist_failure_rolls_back(self):
        class BrokenStore(InMemoryEntityStore):
            fail = False

            def _persist(self):
                if self.fail:
                    raise OSError("disk full")

        store = BrokenStore()
        store.save([Put(Tag(code="AI"))])
        store.fail = True
        with pytest.raises(StoreFailure):
            store.save([Put(Tag(code="NET")), Delete(Tag, "AI")])
        assert store.find(Tag, "NET") is None
        assert store.find(Tag, "AI") is not None


class TestQueries:
    def test_query_pages_and_totals(self, store):
        store.save([Put(Tag(code=f"T{i}")) for i in range(5)])
        items, total = store.query(Tag, page=2, page_size=2)
        assert total == 5
        assert [t.code for t in items] == ["T2", "T3"]

    def test_query_filters_with_predicate(self, store):
        store.save([Put(Tag(code="AI", name="x")), Put(Tag(code="NET", name="y"))])
        items, total = store.query(Tag, lambda t: t.name == "y")
        assert total == 1
        assert items[0].code == "NET"

    def test_generate_code_skips_existing_codes(self, store):
        store.save([Put(Tag(code="ASG_00001"))])
        assert store.generate_code("ASG") == "ASG_00002"
        assert store.generate_code("ASG") == "ASG_00003"


class TestJsonStore:
    def test_reload_restores_records(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonEntityStore(path)
        store.save(
            [
                Put(LecturerProfile(code="L1", degree="PhD", tags=frozenset({"AI", "ML"}))),
                Put(
                    Committee(
                        code="C1",
                        defense_date=date(2025, 6, 10),
                        tags=frozenset({"AI"}),
                        start_time=time(8, 0),
                    )
                ),
            ]
        )

        reopened = JsonEntityStore(path)
        lecturer = reopened.get_by_code(LecturerProfile, "L1")
        committee = reopened.get_by_code(Committee, "C1")
        assert lecturer.tags == frozenset({"AI", "ML"})
        assert lecturer.version == 1
        assert committee.defense_date == date(2025, 6, 10)
        assert committee.start_time == time(8, 0)

    def test_missing_file_starts_empty(self, tmp_path):
        store = JsonEntityStore(tmp_path / "nested" / "store.json")
        assert store.list(Tag) == []
        store.save([Put(Tag(code="AI"))])
        assert (tmp_path / "nested" / "store.json").exists()

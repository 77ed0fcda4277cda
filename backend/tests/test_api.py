"""
HTTP API tests.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import FIXED_NOW, Seeder
from defense_admin.config import Settings
from defense_admin.main import create_app
from defense_admin.service import DefenseAdminService
from defense_admin.store import InMemoryEntityStore


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def member_payload(members):
    return [{"lecturer_code": m.lecturer_code, "role": m.role.value, "is_chair": m.is_chair} for m in members]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCommitteeRoutes:
    def test_create_and_read(self, client, seed):
        seed.tag("AI")
        payload = {
            "code": "C1",
            "name": "AI panel",
            "defense_date": "2025-06-10",
            "tags": ["AI"],
            "members": member_payload(seed.roster("R")),
        }
        response = client.post("/api/committees", json=payload)
        assert response.status_code == 201
        assert response.json()["code"] == "C1"
        assert response.json()["tags"] == ["AI"]

        detail = client.get("/api/committees/C1").json()
        assert detail["status"] == "Ready"
        assert len(detail["members"]) == 4
        assert detail["members"][0]["role"] == "Chair"

    def test_invalid_roster_is_400(self, client, seed):
        payload = {"name": "Panel", "members": member_payload(seed.roster("R")[:3])}
        response = client.post("/api/committees", json=payload)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "InvalidComposition"

    def test_unknown_committee_is_404(self, client):
        response = client.get("/api/committees/NOPE")
        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "NotFound"

    def test_list_and_init(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.committee("C2", tags={"Networking"})
        listing = client.get("/api/committees", params={"tag": "AI"}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["committee"]["code"] == "C1"

        init = client.get("/api/committees/init").json()
        assert init["next_code"] == "COM_00003"
        assert init["rooms"] == ["B1-201", "B1-202"]

    def test_update_and_members(self, client, seed):
        seed.committee("C1")
        response = client.put("/api/committees/C1", json={"room": "B2-101"})
        assert response.status_code == 200
        assert response.json()["room"] == "B2-101"

        response = client.put("/api/committees/C1/members", json={"members": member_payload(seed.roster("N"))})
        assert response.status_code == 200
        assert sorted(m["lecturer_code"] for m in response.json()) == ["N_L1", "N_L2", "N_L3", "N_L4"]

    def test_delete_needs_force_while_hosting(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        client.post("/api/assignments", json={"committee_code": "C1", "items": [{"topic_code": "T1"}]})

        blocked = client.delete("/api/committees/C1")
        assert blocked.status_code == 409
        assert len(blocked.json()["detail"]["details"]["blocking"]) == 1

        forced = client.delete("/api/committees/C1", params={"force": "true"})
        assert forced.status_code == 200
        assert forced.json()["reverted_topics"] == ["T1"]


class TestAssignmentRoutes:
    def test_assign_and_duplicate(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        body = {"committee_code": "C1", "items": [{"topic_code": "T1"}]}

        created = client.post("/api/assignments", json=body)
        assert created.status_code == 201
        assert created.json()[0]["scheduled_at"] == "2025-06-10T07:30:00"
        assert created.json()[0]["assigned_by"] == "system"

        duplicate = client.post("/api/assignments", json=body)
        assert duplicate.status_code == 400
        assert duplicate.json()["detail"]["code"] == "TopicAlreadyAssigned"

    def test_empty_items_rejected(self, client):
        response = client.post("/api/assignments", json={"committee_code": "C1", "items": []})
        assert response.status_code == 422

    def test_auto_assign(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        seed.topic("T2", tags={"Networking"})

        result = client.post("/api/assignments/auto", json={"tag_priority_order": ["AI"]}).json()

        assert [a["topic_code"] for a in result["assigned"]] == ["T1"]
        assert result["unassigned"][0]["reason"] == "NoTagMatch"

    def test_auto_assign_rejects_unknown_fields(self, client):
        response = client.post("/api/assignments/auto", json={"priority": ["AI"]})
        assert response.status_code == 422

    def test_change_and_remove(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.committee("C2", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        client.post("/api/assignments", json={"committee_code": "C1", "items": [{"topic_code": "T1"}]})

        moved = client.put("/api/assignments/T1", json={"new_committee_code": "C2"})
        assert moved.status_code == 200
        assert moved.json()["committee_code"] == "C2"

        first = client.delete("/api/assignments/T1").json()
        second = client.delete("/api/assignments/T1").json()
        assert first["removed"] is True
        assert second == {"removed": False, "assignment": None}

        history = client.get("/api/topics/T1/history").json()
        assert [h["new_status"] for h in history] == ["Scheduled", "Scheduled", "EligibleForDefense"]


class TestReadRoutes:
    def test_availability(self, client, seed):
        seed.lecturer("L_AI", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        lecturers = client.get("/api/availability/lecturers", params={"tag": "AI"}).json()
        topics = client.get("/api/availability/topics", params={"tag": "AI"}).json()
        assert [item["lecturer"]["code"] for item in lecturers] == ["L_AI"]
        assert [t["code"] for t in topics] == ["T1"]

    def test_student_and_lecturer(self, client, seed):
        seed.student("S1")
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"}, student="S1")
        client.post("/api/assignments", json={"committee_code": "C1", "items": [{"topic_code": "T1"}]})

        info = client.get("/api/students/S1/defense").json()
        assert info["committee"]["committee_code"] == "C1"
        seats = client.get("/api/lecturers/C1_L1/committees").json()
        assert seats["committees"][0]["is_chair"] is True
        assert client.get("/api/students/NOPE/defense").status_code == 404

    def test_export(self, client, seed):
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        client.post("/api/assignments", json={"committee_code": "C1", "items": [{"topic_code": "T1"}]})

        response = client.get("/api/schedule/export", params={"format": "csv"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "T1" in response.text

        assert client.get("/api/schedule/export", params={"format": "xlsx"}).status_code == 400

    def test_tags(self, client, seed):
        seed.tag("AI", "Artificial Intelligence")
        assert client.get("/api/tags").json() == [
            {"code": "AI", "name": "Artificial Intelligence", "description": None, "version": 1}
        ]


class TestRoleGate:
    @pytest.fixture
    def guarded(self):
        store = InMemoryEntityStore()
        settings = Settings(store_backend="memory", enforce_roles=True)
        service = DefenseAdminService(store, settings, clock=lambda: FIXED_NOW)
        return TestClient(create_app(service)), Seeder(store, service)

    def test_mutations_need_admin_role(self, guarded):
        client, seed = guarded
        seed.committee("C1", tags={"AI"})
        seed.topic("T1", tags={"AI"})
        body = {"committee_code": "C1", "items": [{"topic_code": "T1"}]}

        denied = client.post("/api/assignments", json=body)
        assert denied.status_code == 403
        assert denied.json()["detail"]["kind"] == "AuthorizationDenied"

        allowed = client.post("/api/assignments", json=body, headers={"X-User-Role": "admin"})
        assert allowed.status_code == 201
        assert allowed.json()[0]["assigned_by"] == "admin"

    def test_reads_stay_open(self, guarded):
        client, _ = guarded
        assert client.get("/api/committees").status_code == 200

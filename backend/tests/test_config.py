"""
Tests for settings loading and chair policies.
"""
from datetime import time
from pathlib import Path

import pytest

from defense_admin.config import Settings, load_settings
from defense_admin.models import LecturerProfile
from defense_admin.policies import AnyLecturerPolicy, DegreeChairPolicy, build_chair_policy


@pytest.fixture
def config_file(tmp_path):
    def write(text):
        path = tmp_path / "defense_admin.yml"
        path.write_text(text, encoding="utf-8")
        return path

    return write


class TestLoadSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.slot_minutes == 60
        assert (settings.session_start, settings.session_end) == (time(7, 30), time(17, 0))
        assert settings.default_session_capacity == 8
        assert (settings.min_members, settings.max_members) == (4, 5)
        assert settings.chair_policy == "degree"

    def test_yaml_file(self, config_file):
        path = config_file(
            "store-backend: memory\n"
            "slot-minutes: 45\n"
            'session-start: "07:45"\n'
            "session-end: 16:30\n"
            "rooms: [B1-201, B1-202]\n"
            "require-secretary: false\n"
        )
        settings = load_settings(path)
        assert settings.store_backend == "memory"
        assert settings.slot_minutes == 45
        assert settings.session_start == time(7, 45)
        assert settings.session_end == time(16, 30)
        assert settings.rooms == ["B1-201", "B1-202"]
        assert settings.require_secretary is False

    def test_unknown_keys_are_ignored(self, config_file):
        settings = load_settings(config_file("colour: blue\nslot_minutes: 30\n"))
        assert settings.slot_minutes == 30

    def test_environment_beats_file(self, config_file, monkeypatch):
        path = config_file("default_session_capacity: 6\n")
        monkeypatch.setenv("DEFENSE_ADMIN_DEFAULT_SESSION_CAPACITY", "10")
        monkeypatch.setenv("DEFENSE_ADMIN_ENFORCE_ROLES", "yes")
        monkeypatch.setenv("DEFENSE_ADMIN_ADMIN_ROLES", "admin, registrar")
        settings = load_settings(path)
        assert settings.default_session_capacity == 10
        assert settings.enforce_roles is True
        assert settings.admin_roles == ("admin", "registrar")

    def test_explicit_overrides_win(self, config_file):
        settings = load_settings(config_file("store_backend: json\n"), overrides={"store-path": "/tmp/x.json"})
        assert settings.store_path == Path("/tmp/x.json")

    def test_session_must_end_after_start(self, config_file):
        with pytest.raises(ValueError):
            load_settings(config_file('session_start: "12:00"\nsession_end: "09:00"\n'))

    def test_member_bounds(self, config_file):
        with pytest.raises(ValueError):
            load_settings(config_file("min_members: 6\nmax_members: 5\n"))

    def test_non_mapping_file(self, config_file):
        with pytest.raises(ValueError):
            load_settings(config_file("- just\n- a list\n"))


class TestChairPolicies:
    def test_degree_policy(self):
        policy = DegreeChairPolicy(["PhD", "Professor"])
        assert policy.is_eligible(LecturerProfile(code="L1", degree=" phd "))
        assert not policy.is_eligible(LecturerProfile(code="L2", degree="MSc"))
        assert not policy.is_eligible(LecturerProfile(code="L3"))

    def test_any_policy(self):
        assert AnyLecturerPolicy().is_eligible(LecturerProfile(code="L1"))

    def test_built_from_settings(self):
        assert isinstance(build_chair_policy(Settings(chair_policy="any")), AnyLecturerPolicy)
        assert isinstance(build_chair_policy(Settings()), DegreeChairPolicy)
        with pytest.raises(ValueError):
            build_chair_policy(Settings(chair_policy="seniority"))

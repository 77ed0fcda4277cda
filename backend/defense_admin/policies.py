"""Chair eligibility policies.

Which lecturers may chair a committee is an administrative rule, so the
engine only ever talks to a ``ChairEligibilityPolicy`` handed to it.
"""
from __future__ import annotations

from typing import Iterable

from .config import Settings
from .models import LecturerProfile


class ChairEligibilityPolicy:
    name = "base"

    def is_eligible(self, lecturer: LecturerProfile) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        return self.name


class AnyLecturerPolicy(ChairEligibilityPolicy):
    """Every lecturer may chair."""

    name = "any"

    def is_eligible(self, lecturer: LecturerProfile) -> bool:
        return True


class DegreeChairPolicy(ChairEligibilityPolicy):
    """Only lecturers holding one of the configured degrees may chair."""

    name = "degree"

    def __init__(self, eligible_degrees: Iterable[str]):
        self.eligible_degrees = tuple(d.strip() for d in eligible_degrees if d.strip())
        self._folded = {d.casefold() for d in self.eligible_degrees}

    def is_eligible(self, lecturer: LecturerProfile) -> bool:
        if not lecturer.degree:
            return False
        return lecturer.degree.strip().casefold() in self._folded

    def describe(self) -> str:
        return f"degree in {', '.join(self.eligible_degrees)}"


def build_chair_policy(settings: Settings) -> ChairEligibilityPolicy:
    if settings.chair_policy == AnyLecturerPolicy.name:
        return AnyLecturerPolicy()
    if settings.chair_policy == DegreeChairPolicy.name:
        return DegreeChairPolicy(settings.chair_degrees)
    raise ValueError(f"Unknown chair policy '{settings.chair_policy}'")


__all__ = ["AnyLecturerPolicy", "ChairEligibilityPolicy", "DegreeChairPolicy", "build_chair_policy"]

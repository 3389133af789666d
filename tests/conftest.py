"""Pytest configuration and fixtures for gradelight tests."""

import pytest

from gradelight.config import PlatformConfig
from gradelight.core.entities import GradingSpecification
from gradelight.main import GradelightPlatform

CONCEPTS = [["MA", 10], ["MPA", 7], ["MANA", 4]]
GOALS = [
    ["Requirements", 1],
    ["Configuration Management", 1],
    ["Project Management", 1],
    ["Design", 1],
    ["Tests", 1],
    ["Refactoring", 1],
]

ALICE = "111.111.111-11"
BRUNO = "222.222.222-22"
CARLA = "333.333.333-33"


@pytest.fixture
def specification():
    return GradingSpecification.from_pairs(CONCEPTS, GOALS)


@pytest.fixture
def platform():
    """A fresh platform with a short lock timeout so contention tests stay fast."""
    return GradelightPlatform(PlatformConfig(lock_timeout=2.0))


@pytest.fixture
def service(platform):
    return platform.enrollment_service


@pytest.fixture
def current_class(service, specification):
    return service.create_class("ESS", 2025, 1, specification)


@pytest.fixture
def past_class(service, specification):
    return service.create_class("ESS", 2024, 2, specification)


@pytest.fixture
def students(service, current_class):
    """Three registered students, all enrolled in the current class."""
    registered = []
    for national_id, name in [(ALICE, "Alice Souza"), (BRUNO, "Bruno Lima"), (CARLA, "Carla Dias")]:
        email = f"{name.split()[0].lower()}@example.edu"
        registered.append(service.register_student(national_id, name, email))
        service.enroll(national_id, current_class.id)
    return registered


def grade_all(service, class_id, national_id, concept, goals=None):
    """Record the same concept for every goal (or the given ones)."""
    for goal in goals or [g for g, _ in GOALS]:
        service.record_evaluation(class_id, national_id, goal, concept)

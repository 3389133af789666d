"""
Links a student to earlier offerings of the same topic to flag prior failures.
"""

import logging
from typing import FrozenSet, Iterable

from ..core.entities import ClassSection
from ..persistence.repositories import ClassRepository
from .evaluation_store import EvaluationStore

logger = logging.getLogger(__name__)

DEFAULT_RISK_INDICATOR_GOALS: FrozenSet[str] = frozenset({
    "Requirements",
    "Configuration Management",
    "Project Management",
})
DEFAULT_RISK_MIN_FAILED_GOALS = 2


class HistoryLinker:
    """Answers whether a student failed an earlier offering of a class's topic.

    A prior offering is failed when at least ``min_failed_goals`` of the risk
    indicator goals were graded with that offering's lowest concept level.
    Records are read straight from the Evaluation Store, so they outlive the
    student's current enrollments.
    """

    def __init__(self, evaluation_store: EvaluationStore, class_repository: ClassRepository,
                 risk_indicator_goals: Iterable[str] = DEFAULT_RISK_INDICATOR_GOALS,
                 min_failed_goals: int = DEFAULT_RISK_MIN_FAILED_GOALS):
        self._evaluation_store = evaluation_store
        self._class_repository = class_repository
        self._risk_indicator_goals = frozenset(risk_indicator_goals)
        self._min_failed_goals = min_failed_goals

    def has_failed_prior_related_class(self, student_id: str, current_class: ClassSection) -> bool:
        for prior in self._class_repository.find_by_topic(current_class.topic):
            if prior.term >= current_class.term:
                continue
            if self._failed(student_id, prior):
                logger.debug("Student %s failed prior class %s", student_id, prior.id)
                return True
        return False

    def _failed(self, student_id: str, prior: ClassSection) -> bool:
        evaluations = self._evaluation_store.get_evaluations(prior.id, student_id)
        if not evaluations:
            return False
        lowest = prior.grading_specification.lowest_concepts
        failed_goals = [goal for goal in self._risk_indicator_goals
                        if evaluations.get(goal) in lowest]
        return len(failed_goals) >= self._min_failed_goals

"""
Weighted score of an enrollment's recorded evaluations.
"""

from typing import Mapping

from ..core.entities import Enrollment, GradingSpecification
from ..core.exceptions import EmptyEvaluationSet, ResourceNotFoundError
from ..persistence.repositories import ClassRepository
from .evaluation_store import EvaluationStore


def weighted_score(evaluations: Mapping[str, str], specification: GradingSpecification) -> float:
    """Goal-weighted mean of concept values over the goals graded so far.

    Goals without a recorded grade count in neither the numerator nor the
    denominator, so the score of a partially graded enrollment moves as grading
    progresses. Unknown concept symbols raise ``UnknownConcept``.
    """
    numerator = 0.0
    denominator = 0.0
    for goal, concept in evaluations.items():
        if not specification.has_goal(goal):
            continue
        goal_weight = specification.goal_weights[goal]
        numerator += goal_weight * specification.concept_value(concept)
        denominator += goal_weight

    if denominator == 0:
        raise EmptyEvaluationSet("No goal has been evaluated yet", error_code="not_computable")
    return numerator / denominator


class Aggregator:
    """Computes scores from the Evaluation Store and each class's specification."""

    def __init__(self, evaluation_store: EvaluationStore, class_repository: ClassRepository):
        self._evaluation_store = evaluation_store
        self._class_repository = class_repository

    def compute_score(self, enrollment: Enrollment) -> float:
        class_section = self._class_repository.find_by_id(enrollment.class_id)
        if class_section is None:
            raise ResourceNotFoundError(f"Class {enrollment.class_id} not found")
        evaluations = self._evaluation_store.get_evaluations(enrollment.class_id, enrollment.student_id)
        return weighted_score(evaluations, class_section.grading_specification)

    def score_evaluations(self, evaluations: Mapping[str, str], specification: GradingSpecification) -> float:
        """Score an already-read set of evaluations, keeping the caller on one snapshot."""
        return weighted_score(evaluations, specification)

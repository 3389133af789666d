"""
Status service: derives ComputedStatus for enrollments on demand.
"""

from typing import List

from ..core.entities import ComputedStatus, Enrollment
from ..core.exceptions import EmptyEvaluationSet
from .aggregator import Aggregator
from .enrollment_service import EnrollmentService
from .evaluation_store import EvaluationStore
from .history_linker import HistoryLinker
from .status_classifier import StatusClassifier


class StatusService:
    """Combines Aggregator, HistoryLinker and StatusClassifier; nothing is cached."""

    def __init__(self, enrollment_service: EnrollmentService, evaluation_store: EvaluationStore,
                 aggregator: Aggregator, history_linker: HistoryLinker, classifier: StatusClassifier):
        self._enrollment_service = enrollment_service
        self._evaluation_store = evaluation_store
        self._aggregator = aggregator
        self._history_linker = history_linker
        self._classifier = classifier

    def compute_status(self, enrollment: Enrollment) -> ComputedStatus:
        class_section = self._enrollment_service.get_class(enrollment.class_id)
        evaluations = self._evaluation_store.get_evaluations(enrollment.class_id, enrollment.student_id)
        failed_prior = self._history_linker.has_failed_prior_related_class(enrollment.student_id, class_section)
        try:
            score = self._aggregator.score_evaluations(evaluations, class_section.grading_specification)
        except EmptyEvaluationSet:
            return ComputedStatus(enrollment=enrollment, score=None, color=None,
                                  failed_prior=failed_prior, evaluations=evaluations)

        color = self._classifier.classify(score, failed_prior,
                                          class_section.grading_specification.thresholds)
        return ComputedStatus(enrollment=enrollment, score=score, color=color,
                              failed_prior=failed_prior, evaluations=evaluations)

    def student_status(self, class_id: str, national_id: str) -> ComputedStatus:
        return self.compute_status(self._enrollment_service.get_enrollment(national_id, class_id))

    def class_status(self, class_id: str) -> List[ComputedStatus]:
        return [self.compute_status(enrollment)
                for enrollment in self._enrollment_service.get_enrollments(class_id)]

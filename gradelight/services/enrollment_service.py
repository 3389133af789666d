"""
Enrollment service: class and student registration, enrollment and single
evaluation writes.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..core.entities import ClassSection, Enrollment, Evaluation, GradingSpecification, Student, normalize_national_id
from ..core.exceptions import ResourceNotFoundError, ValidationError
from ..persistence.repositories import ClassRepository, StudentRepository
from .evaluation_store import EvaluationStore

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentResult:
    """Result of an enrollment operation."""
    success: bool
    enrollment: Enrollment
    message: str
    already_enrolled: bool = False


class EnrollmentService:
    """Owns students, classes and the enrollments between them."""

    def __init__(self, student_repository: StudentRepository, class_repository: ClassRepository,
                 evaluation_store: EvaluationStore):
        self._students = student_repository
        self._classes = class_repository
        self._evaluation_store = evaluation_store
        self._enrollments: Dict[str, Set[str]] = {}  # class_id -> {student_id}
        self._lock = threading.RLock()

    # Classes

    def create_class(self, topic: str, year: int, semester: int,
                     grading_specification: GradingSpecification) -> ClassSection:
        """Create a class; a duplicate (topic, year, semester) raises DuplicateEntityError."""
        class_section = ClassSection(topic, year, semester, grading_specification)
        with self._lock:
            self._classes.add(class_section)
            self._enrollments[class_section.id] = set()
        logger.info("Created class %s %d/%d (%s)", class_section.topic, class_section.year,
                    class_section.semester, class_section.id)
        return class_section

    def find_class(self, topic: str, year: int, semester: int) -> Optional[ClassSection]:
        return self._classes.find_by_key(topic, year, semester)

    def get_class(self, class_id: str) -> ClassSection:
        class_section = self._classes.find_by_id(class_id)
        if class_section is None:
            raise ResourceNotFoundError(f"Class {class_id} not found", error_code="class_not_found")
        return class_section

    def list_classes(self) -> List[ClassSection]:
        return self._classes.find_all()

    def delete_class(self, class_id: str) -> None:
        self.get_class(class_id)
        with self._lock:
            self._enrollments.pop(class_id, None)
            self._classes.delete(class_id)
        self._evaluation_store.drop_class(class_id)
        logger.info("Deleted class %s", class_id)

    # Students

    def register_student(self, national_id: str, name: str, email: str) -> Student:
        """Register a student; a second registration of the same ID raises DuplicateEntityError."""
        student = self._students.add(Student(national_id, name, email))
        logger.info("Registered student %s", student.national_id)
        return student

    def get_student(self, national_id: str) -> Student:
        student = self._students.find_by_national_id(national_id)
        if student is None:
            raise ResourceNotFoundError(f"Student {national_id} not found", error_code="student_not_found")
        return student

    def find_student(self, national_id: str) -> Optional[Student]:
        return self._students.find_by_national_id(national_id)

    def list_students(self) -> List[Student]:
        return self._students.find_all()

    def update_student(self, national_id: str, name: str, email: str) -> Student:
        student = self.get_student(national_id)
        student.rename(name, email)
        return self._students.save(student)

    def delete_student(self, national_id: str) -> None:
        """Remove the student and every enrollment.

        Recorded evaluations are kept so earlier offerings still count as history;
        a later enrollment of the same ID in the same class starts from no grades.
        """
        student = self.get_student(national_id)
        with self._lock:
            for students in self._enrollments.values():
                students.discard(student.id)
            self._students.delete(student.id)
        logger.info("Deleted student %s", student.id)

    # Enrollments

    def enroll(self, national_id: str, class_id: str) -> EnrollmentResult:
        """Enroll a student in a class. Enrolling twice is a successful no-op."""
        student = self.get_student(national_id)
        self.get_class(class_id)
        enrollment = Enrollment(student_id=student.id, class_id=class_id)
        with self._lock:
            enrolled = self._enrollments.setdefault(class_id, set())
            if student.id in enrolled:
                return EnrollmentResult(
                    success=True,
                    enrollment=enrollment,
                    message="Student already enrolled",
                    already_enrolled=True
                )
            # Grades left by a deleted enrollment of the same ID belong to that enrollment
            if self._evaluation_store.clear_student(class_id, student.id):
                logger.info("Cleared stale evaluations of %s in class %s", student.id, class_id)
            enrolled.add(student.id)
        logger.debug("Enrolled student %s in class %s", student.id, class_id)
        return EnrollmentResult(success=True, enrollment=enrollment, message="Student enrolled successfully")

    def is_enrolled(self, student_id: str, class_id: str) -> bool:
        with self._lock:
            return student_id in self._enrollments.get(class_id, set())

    def get_enrollment(self, national_id: str, class_id: str) -> Enrollment:
        student_id = normalize_national_id(national_id)
        self.get_class(class_id)
        if not self.is_enrolled(student_id, class_id):
            raise ResourceNotFoundError(
                f"Student {student_id} is not enrolled in class {class_id}",
                error_code="enrollment_not_found"
            )
        return Enrollment(student_id=student_id, class_id=class_id)

    def get_enrollments(self, class_id: str) -> List[Enrollment]:
        self.get_class(class_id)
        with self._lock:
            return [Enrollment(student_id=student_id, class_id=class_id)
                    for student_id in sorted(self._enrollments.get(class_id, set()))]

    # Evaluations

    def record_evaluation(self, class_id: str, national_id: str, goal: str, concept: str) -> Evaluation:
        """Validate and store one evaluation; unknown goals or concepts are never stored."""
        class_section = self.get_class(class_id)
        enrollment = self.get_enrollment(national_id, class_id)
        specification = class_section.grading_specification
        goal = (goal or "").strip()
        concept = (concept or "").strip()
        if not specification.has_goal(goal):
            raise ValidationError(f"Unknown goal '{goal}'", error_code="unknown_goal",
                                  details={'goal': goal, 'known': specification.goals})
        specification.concept_value(concept)

        changed = self._evaluation_store.write(class_id, enrollment.student_id, goal, concept)
        logger.debug("Evaluation %s=%s for %s in %s (%s)", goal, concept, enrollment.student_id,
                     class_id, "stored" if changed else "unchanged")
        return Evaluation(enrollment=enrollment, goal=goal, concept=concept)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_students': self._students.count(),
                'total_classes': self._classes.count(),
                'total_enrollments': sum(len(s) for s in self._enrollments.values()),
            }

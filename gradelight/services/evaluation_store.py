"""
Evaluation store: per-class, copy-on-write snapshots of recorded grades.

Each class owns one immutable snapshot mapping ``student_id -> {goal: concept}``.
Writers build the next snapshot inside an ``EvaluationBatch`` while holding the
class's write lock and publish it with a single reference swap, so readers,
which never lock, see either the whole batch or none of it.
"""

import logging
import threading
from contextlib import contextmanager
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

from .concurrency_manager import ConcurrencyManager

logger = logging.getLogger(__name__)

ClassSnapshot = Mapping[str, Mapping[str, str]]

_EMPTY: ClassSnapshot = MappingProxyType({})


class EvaluationBatch:
    """Working copy of one class's evaluations, committed atomically."""

    def __init__(self, class_id: str, base: ClassSnapshot):
        self._class_id = class_id
        self._base = base
        self._pending: Dict[str, Dict[str, str]] = {}
        self._rolled_back = False

    @property
    def class_id(self) -> str:
        return self._class_id

    @property
    def changed(self) -> bool:
        return bool(self._pending)

    @property
    def rolled_back(self) -> bool:
        return self._rolled_back

    def current(self, student_id: str) -> Dict[str, str]:
        """Grades for a student as they would read after this batch commits."""
        if student_id in self._pending:
            return dict(self._pending[student_id])
        return dict(self._base.get(student_id, {}))

    def stage(self, student_id: str, goal: str, concept: str) -> bool:
        """Stage one write; returns False when it matches what is already there."""
        grades = self.current(student_id)
        if grades.get(goal) == concept:
            return False
        grades[goal] = concept
        self._pending[student_id] = grades
        return True

    def discard(self, student_id: str) -> bool:
        """Stage removal of every grade a student holds in this class."""
        if not self.current(student_id):
            return False
        self._pending[student_id] = {}
        return True

    def rollback(self) -> None:
        self._pending.clear()
        self._rolled_back = True

    def build(self) -> ClassSnapshot:
        merged = dict(self._base)
        for student_id, grades in self._pending.items():
            if grades:
                merged[student_id] = MappingProxyType(dict(grades))
            else:
                merged.pop(student_id, None)
        return MappingProxyType(merged)


class EvaluationStore:
    """Holds the recorded (goal -> concept) entries for every enrollment."""

    def __init__(self, concurrency_manager: ConcurrencyManager):
        self._concurrency_manager = concurrency_manager
        self._snapshots: Dict[str, ClassSnapshot] = {}
        self._lock = threading.Lock()

    @staticmethod
    def resource_id(class_id: str) -> str:
        return f"class_{class_id}"

    def snapshot(self, class_id: str) -> ClassSnapshot:
        """Current committed state of a class. Never partially applied."""
        with self._lock:
            return self._snapshots.get(class_id, _EMPTY)

    def get_evaluations(self, class_id: str, student_id: str) -> Dict[str, str]:
        return dict(self.snapshot(class_id).get(student_id, {}))

    def version(self, class_id: str) -> int:
        return self._concurrency_manager.get_version(self.resource_id(class_id))

    @contextmanager
    def batch(self, class_id: str, timeout: Optional[float] = None) -> Iterator[EvaluationBatch]:
        """Open a write batch under the class's exclusive lock.

        The batch commits when the block exits normally and has staged changes.
        It is discarded if the block raises or calls ``rollback()``.
        """
        with self._concurrency_manager.class_write_lock(class_id, timeout=timeout):
            batch = EvaluationBatch(class_id, self.snapshot(class_id))
            yield batch
            if batch.changed and not batch.rolled_back:
                self._commit(batch)

    def write(self, class_id: str, student_id: str, goal: str, concept: str) -> bool:
        """Record a single evaluation, last write wins. Returns True if anything changed."""
        with self.batch(class_id) as batch:
            return batch.stage(student_id, goal, concept)

    def clear_student(self, class_id: str, student_id: str) -> bool:
        """Remove a student's grades in one class. Returns True if any existed."""
        with self.batch(class_id) as batch:
            return batch.discard(student_id)

    def drop_class(self, class_id: str) -> None:
        with self._concurrency_manager.class_write_lock(class_id):
            with self._lock:
                self._snapshots.pop(class_id, None)
            self._concurrency_manager.forget(self.resource_id(class_id))

    def _commit(self, batch: EvaluationBatch) -> None:
        snapshot = batch.build()
        with self._lock:
            self._snapshots[batch.class_id] = snapshot
        version = self._concurrency_manager.increment_version(self.resource_id(batch.class_id))
        logger.debug("Committed evaluations for class %s at version %d", batch.class_id, version)

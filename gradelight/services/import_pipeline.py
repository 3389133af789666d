"""
Grade import pipeline.

A pipeline moves through ``AWAITING_FILE -> COLUMNS_DETECTED ->
MAPPING_CONFIRMED -> APPLYING -> COMPLETED | FAILED`` (or ``CANCELLED``).
Parsing and student resolution run before the class write lock is taken; the
staged writes are then compared with the stored grades and committed as one
batch, so readers never observe half an import.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.entities import ClassSection, normalize_national_id
from ..core.enums import ColumnBinding, ImportState, RowOutcome
from ..core.exceptions import (
    EmptyFile, ImportStateError, ResourceNotFoundError, UnmappedColumn, ValidationError
)
from ..readers.spreadsheet import OVERFLOW_KEY, ReaderRegistry, default_registry
from .enrollment_service import EnrollmentService
from .evaluation_store import EvaluationStore

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({ImportState.COMPLETED, ImportState.FAILED, ImportState.CANCELLED})
DEFAULT_MAX_FINISHED_IMPORTS = 50
DEFAULT_FINISHED_IMPORT_TTL = 600.0
NATIONAL_ID_DIGITS = 11


@dataclass
class RowFailure:
    """A data row that could not be applied."""
    row_number: int
    student_id: Optional[str]
    reason: str


@dataclass
class RowResult:
    row_number: int
    student_id: Optional[str]
    outcome: RowOutcome
    reason: Optional[str] = None


@dataclass
class ImportReport:
    """Outcome of every data row of one applied import."""
    class_id: str
    rows: List[RowResult] = field(default_factory=list)

    def _count(self, outcome: RowOutcome) -> int:
        return sum(1 for row in self.rows if row.outcome == outcome)

    @property
    def applied(self) -> int:
        return self._count(RowOutcome.APPLIED)

    @property
    def skipped(self) -> int:
        return self._count(RowOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(RowOutcome.FAILED)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def failures(self) -> List[RowFailure]:
        return [RowFailure(row.row_number, row.student_id, row.reason or "")
                for row in self.rows if row.outcome == RowOutcome.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'class_id': self.class_id,
            'total_rows': self.total_rows,
            'applied': self.applied,
            'skipped': self.skipped,
            'failed': self.failed,
            'rows': [
                {'row_number': r.row_number, 'student_id': r.student_id,
                 'outcome': r.outcome.value, 'reason': r.reason}
                for r in self.rows
            ],
        }


@dataclass
class _StagedRow:
    row_number: int
    student_id: str
    grades: Dict[str, str]


class ImportPipeline:
    """Drives one spreadsheet import for one class.

    Row numbers in reports count the lines below the header from 1, so they
    match the file. Blank lines are reported as skipped. A row fails as a
    whole when its student cannot be resolved, any mapped cell holds an
    unknown concept, or it has more cells than the header; blank cells simply
    carry no grade.
    """

    def __init__(self, class_section: ClassSection, enrollment_service: EnrollmentService,
                 evaluation_store: EvaluationStore, reader_registry: Optional[ReaderRegistry] = None,
                 import_id: Optional[str] = None):
        self._import_id = import_id or str(uuid.uuid4())
        self._class_section = class_section
        self._enrollment_service = enrollment_service
        self._evaluation_store = evaluation_store
        self._reader_registry = reader_registry or default_registry()
        self._state = ImportState.AWAITING_FILE
        self._reader = None
        self._content: Optional[bytes] = None
        self._columns: List[str] = []
        self._mapping: Dict[str, str] = {}
        self._report: Optional[ImportReport] = None
        self._error: Optional[str] = None
        self._cancel_requested = threading.Event()
        self._committing = False
        self._finished_at: Optional[float] = None
        self._lock = threading.RLock()

    @property
    def import_id(self) -> str:
        return self._import_id

    @property
    def class_id(self) -> str:
        return self._class_section.id

    @property
    def state(self) -> ImportState:
        return self._state

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    @property
    def mapping(self) -> Dict[str, str]:
        return dict(self._mapping)

    @property
    def report(self) -> Optional[ImportReport]:
        return self._report

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def finished(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def finished_at(self) -> Optional[float]:
        """Monotonic time the pipeline reached a terminal state."""
        return self._finished_at

    def _finish(self, state: ImportState) -> None:
        self._state = state
        self._finished_at = time.monotonic()
        # The uploaded file is not needed once the outcome is known
        self._content = None
        self._reader = None

    def _require(self, *states: ImportState) -> None:
        if self._state not in states:
            raise ImportStateError(
                f"Import {self._import_id} is {self._state.value}",
                error_code="invalid_import_state",
                details={'state': self._state.value, 'expected': [s.value for s in states]}
            )

    def load(self, content: bytes, filename: Optional[str] = None,
             content_type: Optional[str] = None) -> List[str]:
        """Read the header row and move to COLUMNS_DETECTED."""
        with self._lock:
            self._require(ImportState.AWAITING_FILE, ImportState.COLUMNS_DETECTED,
                          ImportState.MAPPING_CONFIRMED)
            reader = self._reader_registry.reader_for(filename, content_type)
            header = reader.parse_header(content)
            if not header:
                raise EmptyFile("The file has no header row", error_code="empty_file",
                                details={'filename': filename})
            blank = [index + 1 for index, name in enumerate(header) if not name]
            if blank:
                raise ValidationError("Header has blank column names", error_code="blank_column",
                                      details={'positions': blank})
            duplicates = sorted({name for name in header if header.count(name) > 1})
            if duplicates:
                raise ValidationError(f"Duplicate columns: {', '.join(duplicates)}",
                                      error_code="duplicate_column", details={'columns': duplicates})

            self._reader = reader
            self._content = content
            self._columns = header
            self._mapping = {}
            self._state = ImportState.COLUMNS_DETECTED
            logger.debug("Import %s detected columns %s", self._import_id, header)
            return list(header)

    def confirm_mapping(self, mapping: Mapping[str, Optional[str]]) -> Dict[str, str]:
        """Bind every column to a goal, the student ID, or ``ignore``."""
        with self._lock:
            self._require(ImportState.COLUMNS_DETECTED, ImportState.MAPPING_CONFIRMED)
            specification = self._class_section.grading_specification

            unknown_columns = sorted(set(mapping) - set(self._columns))
            if unknown_columns:
                raise ValidationError(f"Mapping names columns not in the file: {', '.join(unknown_columns)}",
                                      error_code="unknown_column", details={'columns': unknown_columns})

            resolved: Dict[str, str] = {}
            unmapped: List[str] = []
            for column in self._columns:
                target = (mapping.get(column) or "").strip()
                if not target:
                    unmapped.append(column)
                elif target.lower() in (ColumnBinding.IGNORE, ColumnBinding.STUDENT_ID):
                    resolved[column] = target.lower()
                elif specification.has_goal(target):
                    resolved[column] = target
                else:
                    raise ValidationError(f"Column '{column}' is bound to unknown goal '{target}'",
                                          error_code="unknown_goal",
                                          details={'column': column, 'goal': target, 'known': specification.goals})
            if unmapped:
                raise UnmappedColumn(unmapped)

            id_columns = [c for c, t in resolved.items() if t == ColumnBinding.STUDENT_ID]
            if not id_columns:
                raise UnmappedColumn([], message="No column is bound to the student ID")
            if len(id_columns) > 1:
                raise ValidationError(f"More than one student ID column: {', '.join(id_columns)}",
                                      error_code="ambiguous_student_column")
            goals = [t for t in resolved.values() if specification.has_goal(t)]
            repeated = sorted({g for g in goals if goals.count(g) > 1})
            if repeated:
                raise ValidationError(f"Goals bound to more than one column: {', '.join(repeated)}",
                                      error_code="duplicate_goal_binding", details={'goals': repeated})

            self._mapping = resolved
            self._state = ImportState.MAPPING_CONFIRMED
            return dict(resolved)

    def cancel(self) -> bool:
        """Cancel before the batch commits. Returns False once it is too late."""
        with self._lock:
            if self._state in TERMINAL_STATES:
                return self._state == ImportState.CANCELLED
            if self._committing:
                return False
            self._cancel_requested.set()
            if self._state != ImportState.APPLYING:
                self._finish(ImportState.CANCELLED)
                logger.info("Import %s cancelled before applying", self._import_id)
            return True

    def apply(self) -> ImportReport:
        """Stage every row, then commit the batch under the class write lock."""
        with self._lock:
            self._require(ImportState.MAPPING_CONFIRMED)
            self._state = ImportState.APPLYING

        try:
            report = self._run()
        except ImportStateError:
            raise
        except Exception as e:
            with self._lock:
                self._finish(ImportState.FAILED)
                self._error = str(e)
            logger.error("Import %s for class %s failed: %s", self._import_id, self.class_id, e)
            raise

        with self._lock:
            self._report = report
            self._finish(ImportState.COMPLETED)
        log = logger.warning if report.failed else logger.info
        log("Import %s for class %s: %d applied, %d skipped, %d failed", self._import_id,
            self.class_id, report.applied, report.skipped, report.failed)
        return report

    def _run(self) -> ImportReport:
        results: List[RowResult] = []
        staged: List[_StagedRow] = []
        for row_number, row in enumerate(self._reader.parse_rows(self._content), start=1):
            self._check_cancelled()
            if not row:
                results.append(RowResult(row_number, None, RowOutcome.SKIPPED, "blank row"))
                continue
            outcome = self._stage_row(row_number, row)
            if isinstance(outcome, RowResult):
                results.append(outcome)
            else:
                staged.append(outcome)

        with self._evaluation_store.batch(self.class_id) as batch:
            for row in staged:
                if not row.grades:
                    results.append(RowResult(row.row_number, row.student_id, RowOutcome.SKIPPED,
                                             "no grades in row"))
                    continue
                changed = [batch.stage(row.student_id, goal, concept) for goal, concept in row.grades.items()]
                if any(changed):
                    results.append(RowResult(row.row_number, row.student_id, RowOutcome.APPLIED))
                else:
                    results.append(RowResult(row.row_number, row.student_id, RowOutcome.SKIPPED,
                                             "grades already recorded"))
            with self._lock:
                if self._cancel_requested.is_set():
                    batch.rollback()
                else:
                    self._committing = True

        if batch.rolled_back:
            self._check_cancelled()
        results.sort(key=lambda r: r.row_number)
        return ImportReport(class_id=self.class_id, rows=results)

    def _check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            with self._lock:
                self._finish(ImportState.CANCELLED)
            logger.info("Import %s cancelled while applying; nothing was written", self._import_id)
            raise ImportStateError(f"Import {self._import_id} was cancelled", error_code="import_cancelled")

    def _stage_row(self, row_number: int, row: Mapping[str, str]):
        student_column = next(c for c, t in self._mapping.items() if t == ColumnBinding.STUDENT_ID)
        raw_id = row.get(student_column, "")

        def failed(reason: str, student_id: Optional[str] = None) -> RowResult:
            return RowResult(row_number, student_id or raw_id or None, RowOutcome.FAILED, reason)

        if row.get(OVERFLOW_KEY):
            return failed(f"cells beyond the header: {row[OVERFLOW_KEY]}")
        if not raw_id:
            return failed("missing student ID")
        try:
            student_id = self._resolve_student_id(raw_id)
        except ValidationError:
            return failed(f"invalid student ID '{raw_id}'")
        if not self._enrollment_service.is_enrolled(student_id, self.class_id):
            if self._enrollment_service.find_student(student_id) is None:
                return failed("student not registered", student_id)
            return failed("student not enrolled in this class", student_id)

        concepts = self._class_section.grading_specification.concept_weights
        grades: Dict[str, str] = {}
        unknown: List[str] = []
        for column, goal in self._mapping.items():
            if goal in (ColumnBinding.IGNORE, ColumnBinding.STUDENT_ID):
                continue
            value = (row.get(column) or "").strip()
            if not value:
                continue
            if value in concepts:
                grades[goal] = value
            else:
                unknown.append(f"{column}={value}")
        if unknown:
            return failed(f"unrecognized concept symbol: {', '.join(unknown)}", student_id)
        return _StagedRow(row_number, student_id, grades)

    def _resolve_student_id(self, raw_id: str) -> str:
        student_id = normalize_national_id(raw_id)
        if (student_id.isdigit() and len(student_id) < NATIONAL_ID_DIGITS
                and self._enrollment_service.find_student(student_id) is None):
            # Spreadsheets storing the ID as a number drop its leading zeros
            padded = student_id.zfill(NATIONAL_ID_DIGITS)
            if self._enrollment_service.find_student(padded) is not None:
                return padded
        return student_id


class ImportManager:
    """Keeps pipelines addressable by import ID across requests.

    Finished pipelines stay readable for ``finished_ttl`` seconds, and only
    the newest ``max_finished`` of them are kept.
    """

    def __init__(self, enrollment_service: EnrollmentService, evaluation_store: EvaluationStore,
                 reader_registry: Optional[ReaderRegistry] = None,
                 max_finished: int = DEFAULT_MAX_FINISHED_IMPORTS,
                 finished_ttl: float = DEFAULT_FINISHED_IMPORT_TTL):
        self._enrollment_service = enrollment_service
        self._evaluation_store = evaluation_store
        self._reader_registry = reader_registry or default_registry()
        self._max_finished = max_finished
        self._finished_ttl = finished_ttl
        self._pipelines: Dict[str, ImportPipeline] = {}
        self._lock = threading.RLock()

    def start(self, class_id: str) -> ImportPipeline:
        class_section = self._enrollment_service.get_class(class_id)
        pipeline = ImportPipeline(class_section, self._enrollment_service, self._evaluation_store,
                                  self._reader_registry)
        with self._lock:
            self._evict()
            self._pipelines[pipeline.import_id] = pipeline
        return pipeline

    def get(self, import_id: str) -> ImportPipeline:
        with self._lock:
            self._evict()
            pipeline = self._pipelines.get(import_id)
        if pipeline is None:
            raise ResourceNotFoundError(f"Import {import_id} not found", error_code="import_not_found")
        return pipeline

    def discard(self, import_id: str) -> bool:
        """Cancel the pipeline if still possible and forget it."""
        pipeline = self.get(import_id)
        cancelled = pipeline.cancel()
        with self._lock:
            self._pipelines.pop(import_id, None)
        return cancelled

    def discard_class(self, class_id: str) -> None:
        with self._lock:
            stale = [i for i, p in self._pipelines.items() if p.class_id == class_id]
        for import_id in stale:
            self.discard(import_id)

    def count(self) -> int:
        """Number of pipelines that have not reached a terminal state."""
        with self._lock:
            self._evict()
            return sum(1 for p in self._pipelines.values() if not p.finished)

    def _evict(self) -> None:
        now = time.monotonic()
        finished = sorted((p for p in self._pipelines.values() if p.finished_at is not None),
                          key=lambda p: p.finished_at, reverse=True)
        for index, pipeline in enumerate(finished):
            if index >= self._max_finished or now - pipeline.finished_at >= self._finished_ttl:
                del self._pipelines[pipeline.import_id]
                logger.debug("Evicted finished import %s", pipeline.import_id)

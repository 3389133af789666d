"""Tests for the spreadsheet import pipeline."""

import threading

import pytest

from gradelight.core.enums import ImportState, RowOutcome
from gradelight.core.exceptions import (
    ConcurrencyError, EmptyFile, ImportStateError, ResourceNotFoundError, UnmappedColumn,
    ValidationError
)
from gradelight.readers import CSVReader, ReaderRegistry
from gradelight.services import ImportManager, ImportPipeline

from conftest import ALICE, BRUNO

MAPPING = {
    "CPF": "student_id",
    "Nome": "ignore",
    "Req": "Requirements",
    "GC": "Configuration Management",
    "GP": "Project Management",
}

GRADES_CSV = (
    "CPF,Nome,Req,GC,GP\n"
    "111.111.111-11,Alice Souza,MA,MA,MPA\n"
    "222.222.222-22,Bruno Lima,MANA,,MPA\n"
).encode()


def _pipeline(platform, class_section, registry=None):
    return ImportPipeline(class_section, platform.enrollment_service, platform.evaluation_store, registry)


def _run(platform, class_section, content, mapping=MAPPING, filename="grades.csv"):
    pipeline = _pipeline(platform, class_section)
    pipeline.load(content, filename=filename)
    pipeline.confirm_mapping(mapping)
    return pipeline, pipeline.apply()


class _CancellingReader:
    """CSV reader that cancels its pipeline while rows are being read."""

    def __init__(self, cancel_after):
        self.pipeline = None
        self._csv = CSVReader()
        self._cancel_after = cancel_after

    def parse_header(self, content):
        return self._csv.parse_header(content)

    def parse_rows(self, content):
        for index, row in enumerate(self._csv.parse_rows(content), start=1):
            if index > self._cancel_after:
                self.pipeline.cancel()
            yield row


class TestImportStates:

    def test_happy_path(self, platform, current_class, students):
        pipeline = _pipeline(platform, current_class)
        assert pipeline.state == ImportState.AWAITING_FILE

        columns = pipeline.load(GRADES_CSV, filename="grades.csv")
        assert columns == ["CPF", "Nome", "Req", "GC", "GP"]
        assert pipeline.state == ImportState.COLUMNS_DETECTED

        pipeline.confirm_mapping(MAPPING)
        assert pipeline.state == ImportState.MAPPING_CONFIRMED

        report = pipeline.apply()
        assert pipeline.state == ImportState.COMPLETED
        assert report.applied == 2
        assert report.failed == 0

        store = platform.evaluation_store
        assert store.get_evaluations(current_class.id, students[0].id) == {
            "Requirements": "MA", "Configuration Management": "MA", "Project Management": "MPA"}
        assert store.get_evaluations(current_class.id, students[1].id) == {
            "Requirements": "MANA", "Project Management": "MPA"}

    def test_apply_before_mapping(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(ImportStateError):
            pipeline.apply()

    def test_mapping_before_load(self, platform, current_class):
        with pytest.raises(ImportStateError):
            _pipeline(platform, current_class).confirm_mapping(MAPPING)

    def test_apply_twice(self, platform, current_class, students):
        pipeline, _ = _run(platform, current_class, GRADES_CSV)
        with pytest.raises(ImportStateError):
            pipeline.apply()

    def test_reload_resets_mapping(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        pipeline.confirm_mapping(MAPPING)
        pipeline.load(b"CPF,Design\n1,MA\n")
        assert pipeline.state == ImportState.COLUMNS_DETECTED
        assert pipeline.mapping == {}


class TestLoading:

    def test_empty_file(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        with pytest.raises(EmptyFile):
            pipeline.load(b"")
        assert pipeline.state == ImportState.AWAITING_FILE

    def test_blank_lines_only(self, platform, current_class):
        with pytest.raises(EmptyFile):
            _pipeline(platform, current_class).load(b"\n , ,\n\n")

    def test_duplicate_column(self, platform, current_class):
        with pytest.raises(ValidationError) as exc_info:
            _pipeline(platform, current_class).load(b"CPF,Req,Req\n")
        assert exc_info.value.error_code == "duplicate_column"

    def test_blank_column_name(self, platform, current_class):
        with pytest.raises(ValidationError) as exc_info:
            _pipeline(platform, current_class).load(b"CPF,,Req\n")
        assert exc_info.value.error_code == "blank_column"

    def test_trailing_comma_in_header(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        assert pipeline.load(b"CPF,Req,\n111.111.111-11,MA,\n") == ["CPF", "Req"]

    def test_unsupported_format(self, platform, current_class):
        with pytest.raises(ValidationError) as exc_info:
            _pipeline(platform, current_class).load(b"%PDF", filename="grades.pdf")
        assert exc_info.value.error_code == "unsupported_format"


class TestMapping:

    def test_unmapped_column(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        mapping = dict(MAPPING)
        del mapping["Nome"]
        with pytest.raises(UnmappedColumn) as exc_info:
            pipeline.confirm_mapping(mapping)
        assert exc_info.value.columns == ["Nome"]
        assert pipeline.state == ImportState.COLUMNS_DETECTED

    def test_no_student_column(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(UnmappedColumn):
            pipeline.confirm_mapping(dict(MAPPING, CPF="ignore"))

    def test_two_student_columns(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(ValidationError) as exc_info:
            pipeline.confirm_mapping(dict(MAPPING, Nome="student_id"))
        assert exc_info.value.error_code == "ambiguous_student_column"

    def test_unknown_goal(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(ValidationError) as exc_info:
            pipeline.confirm_mapping(dict(MAPPING, Req="Dancing"))
        assert exc_info.value.error_code == "unknown_goal"

    def test_goal_bound_twice(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(ValidationError) as exc_info:
            pipeline.confirm_mapping(dict(MAPPING, GC="Requirements"))
        assert exc_info.value.error_code == "duplicate_goal_binding"

    def test_column_not_in_file(self, platform, current_class):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        with pytest.raises(ValidationError) as exc_info:
            pipeline.confirm_mapping(dict(MAPPING, Extra="ignore"))
        assert exc_info.value.error_code == "unknown_column"


class TestRows:

    def test_bad_concept_fails_only_that_row(self, platform, current_class, students):
        content = (
            "CPF,Nome,Req,GC,GP\n"
            "111.111.111-11,Alice,MA,B+,MPA\n"
            "222.222.222-22,Bruno,MPA,MPA,MPA\n"
        ).encode()
        _, report = _run(platform, current_class, content)
        assert report.applied == 1
        assert report.failed == 1
        failure = report.failures[0]
        assert failure.row_number == 1
        assert failure.student_id == students[0].id
        assert "B+" in failure.reason
        assert platform.evaluation_store.get_evaluations(current_class.id, students[0].id) == {}

    def test_unregistered_and_unenrolled_students(self, platform, service, current_class, students):
        service.register_student("444.444.444-44", "Davi Reis", "davi@example.edu")
        content = (
            "CPF,Nome,Req,GC,GP\n"
            "999.999.999-99,Nobody,MA,MA,MA\n"
            "444.444.444-44,Davi,MA,MA,MA\n"
            ",Blank,MA,MA,MA\n"
        ).encode()
        _, report = _run(platform, current_class, content)
        reasons = [row.reason for row in report.rows]
        assert reasons == ["student not registered", "student not enrolled in this class", "missing student ID"]
        assert report.failed == 3
        assert platform.evaluation_store.snapshot(current_class.id) == {}

    def test_row_without_grades_is_skipped(self, platform, current_class, students):
        content = "CPF,Nome,Req,GC,GP\n111.111.111-11,Alice,,,\n".encode()
        _, report = _run(platform, current_class, content)
        assert report.rows[0].outcome == RowOutcome.SKIPPED
        assert report.rows[0].reason == "no grades in row"

    def test_blank_rows_keep_file_numbering(self, platform, current_class, students):
        content = b"CPF,Nome,Req,GC,GP\n\n111.111.111-11,Alice,MA,MA,MA\n,,,,\n"
        _, report = _run(platform, current_class, content)
        assert report.total_rows == 2
        assert (report.rows[0].row_number, report.rows[0].outcome) == (1, RowOutcome.SKIPPED)
        assert report.rows[0].reason == "blank row"
        assert (report.rows[1].row_number, report.rows[1].outcome) == (2, RowOutcome.APPLIED)

    def test_failure_after_blank_row_reports_its_file_row(self, platform, current_class, students):
        content = b"CPF,Req\n111.111.111-11,MA\n,\n222.222.222-22,XX\n"
        _, report = _run(platform, current_class, content, {"CPF": "student_id", "Req": "Requirements"})
        assert [(r.row_number, r.outcome) for r in report.rows] == [
            (1, RowOutcome.APPLIED), (2, RowOutcome.SKIPPED), (3, RowOutcome.FAILED)]
        assert report.failures[0].row_number == 3
        assert report.failures[0].student_id == students[1].id

    def test_cells_beyond_the_header_fail_the_row(self, platform, current_class, students):
        content = b"CPF,Req\n111.111.111-11,MA,MPA\n222.222.222-22,MA,\n"
        _, report = _run(platform, current_class, content, {"CPF": "student_id", "Req": "Requirements"})
        assert report.rows[0].outcome == RowOutcome.FAILED
        assert "beyond the header" in report.rows[0].reason
        assert report.rows[1].outcome == RowOutcome.APPLIED
        assert platform.evaluation_store.get_evaluations(current_class.id, students[0].id) == {}

    def test_id_without_leading_zeros(self, platform, service, current_class, students):
        service.register_student("012.345.678-90", "Elisa Melo", "elisa@example.edu")
        service.enroll("012.345.678-90", current_class.id)
        content = b"CPF,Req\n1234567890,MPA\n"
        _, report = _run(platform, current_class, content, {"CPF": "student_id", "Req": "Requirements"})
        assert report.applied == 1
        assert report.rows[0].student_id == "01234567890"
        assert platform.evaluation_store.get_evaluations(current_class.id, "01234567890") == {
            "Requirements": "MPA"}

    def test_reimport_is_idempotent(self, platform, current_class, students):
        _run(platform, current_class, GRADES_CSV)
        version = platform.evaluation_store.version(current_class.id)
        snapshot = dict(platform.evaluation_store.snapshot(current_class.id))

        _, report = _run(platform, current_class, GRADES_CSV)
        assert report.applied == 0
        assert report.skipped == 2
        assert {row.reason for row in report.rows} == {"grades already recorded"}
        assert platform.evaluation_store.version(current_class.id) == version
        assert dict(platform.evaluation_store.snapshot(current_class.id)) == snapshot

    def test_import_overwrites_manual_grade(self, platform, service, current_class, students):
        service.record_evaluation(current_class.id, ALICE, "Requirements", "MANA")
        _run(platform, current_class, GRADES_CSV)
        grades = platform.evaluation_store.get_evaluations(current_class.id, students[0].id)
        assert grades["Requirements"] == "MA"

    def test_report_to_dict(self, platform, current_class, students):
        _, report = _run(platform, current_class, GRADES_CSV)
        data = report.to_dict()
        assert data['total_rows'] == 2
        assert data['rows'][0]['outcome'] == "applied"


class TestCancellation:

    def test_cancel_before_apply(self, platform, current_class, students):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        pipeline.confirm_mapping(MAPPING)
        assert pipeline.cancel()
        assert pipeline.state == ImportState.CANCELLED
        with pytest.raises(ImportStateError):
            pipeline.apply()
        assert platform.evaluation_store.snapshot(current_class.id) == {}

    def test_cancel_while_applying_writes_nothing(self, platform, current_class, students):
        reader = _CancellingReader(cancel_after=1)
        registry = ReaderRegistry()
        registry.register(reader, extensions=[".csv"])
        pipeline = _pipeline(platform, current_class, registry)
        reader.pipeline = pipeline
        pipeline.load(GRADES_CSV, filename="grades.csv")
        pipeline.confirm_mapping(MAPPING)

        with pytest.raises(ImportStateError) as exc_info:
            pipeline.apply()
        assert exc_info.value.error_code == "import_cancelled"
        assert pipeline.state == ImportState.CANCELLED
        assert platform.evaluation_store.snapshot(current_class.id) == {}
        assert platform.evaluation_store.version(current_class.id) == 0

    def test_cancel_after_completion_is_refused(self, platform, current_class, students):
        pipeline, _ = _run(platform, current_class, GRADES_CSV)
        assert not pipeline.cancel()
        assert pipeline.state == ImportState.COMPLETED

    def test_lock_timeout_fails_the_import(self, platform, current_class, students):
        pipeline = _pipeline(platform, current_class)
        pipeline.load(GRADES_CSV)
        pipeline.confirm_mapping(MAPPING)
        holding = threading.Event()
        release = threading.Event()

        def hold_lock():
            with platform.evaluation_store.batch(current_class.id):
                holding.set()
                release.wait(5)

        thread = threading.Thread(target=hold_lock)
        thread.start()
        try:
            assert holding.wait(2)
            with pytest.raises(ConcurrencyError):
                pipeline.apply()
            assert pipeline.state == ImportState.FAILED
            assert pipeline.error
        finally:
            release.set()
            thread.join(5)


class TestConcurrentImports:

    def test_imports_into_one_class_are_serialized(self, platform, current_class, students):
        first = "CPF,Req\n111.111.111-11,MA\n222.222.222-22,MA\n".encode()
        second = "CPF,Req\n111.111.111-11,MPA\n222.222.222-22,MPA\n".encode()
        pipelines = []
        for content in (first, second):
            pipeline = _pipeline(platform, current_class)
            pipeline.load(content)
            pipeline.confirm_mapping({"CPF": "student_id", "Req": "Requirements"})
            pipelines.append(pipeline)

        threads = [threading.Thread(target=p.apply) for p in pipelines]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert all(p.state == ImportState.COMPLETED for p in pipelines)
        snapshot = platform.evaluation_store.snapshot(current_class.id)
        # Either import may land last, but never a mix of the two
        assert len({grades["Requirements"] for grades in snapshot.values()}) == 1

    def test_imports_into_different_classes(self, platform, service, specification, current_class, students):
        other = service.create_class("Compilers", 2025, 1, specification)
        service.enroll(BRUNO, other.id)
        content = "CPF,Req\n222.222.222-22,MPA\n".encode()
        mapping = {"CPF": "student_id", "Req": "Requirements"}
        for class_section in (current_class, other):
            _run(platform, class_section, content, mapping)
        assert platform.evaluation_store.get_evaluations(other.id, students[1].id) == {"Requirements": "MPA"}
        assert platform.evaluation_store.get_evaluations(current_class.id, students[1].id) == {
            "Requirements": "MPA"}


class TestImportManager:

    def test_start_and_get(self, platform, current_class):
        manager = platform.import_manager
        pipeline = manager.start(current_class.id)
        assert manager.get(pipeline.import_id) is pipeline
        assert manager.count() == 1

    def test_unknown_class(self, platform):
        with pytest.raises(ResourceNotFoundError):
            platform.import_manager.start("missing")

    def test_discard(self, platform, current_class):
        manager = platform.import_manager
        pipeline = manager.start(current_class.id)
        assert manager.discard(pipeline.import_id)
        assert pipeline.state == ImportState.CANCELLED
        with pytest.raises(ResourceNotFoundError):
            manager.get(pipeline.import_id)

    def test_discard_class(self, platform, current_class, past_class):
        manager = platform.import_manager
        manager.start(current_class.id)
        kept = manager.start(past_class.id)
        manager.discard_class(current_class.id)
        assert manager.count() == 1
        assert manager.get(kept.import_id) is kept

    def _complete(self, manager, class_id):
        pipeline = manager.start(class_id)
        pipeline.load(GRADES_CSV, filename="grades.csv")
        pipeline.confirm_mapping(MAPPING)
        pipeline.apply()
        return pipeline

    def test_finished_imports_are_not_in_flight(self, platform, current_class, students):
        manager = platform.import_manager
        pipelines = [self._complete(manager, current_class.id) for _ in range(3)]
        assert manager.count() == 0
        assert all(manager.get(p.import_id) is p for p in pipelines)
        assert pipelines[-1].report.skipped == 2

    def test_finished_import_releases_its_file(self, platform, current_class, students):
        pipeline = self._complete(platform.import_manager, current_class.id)
        assert pipeline.finished
        assert pipeline.finished_at is not None
        assert pipeline._content is None
        assert pipeline._reader is None

    def test_finished_imports_expire(self, platform, current_class, students):
        manager = ImportManager(platform.enrollment_service, platform.evaluation_store, finished_ttl=0)
        pipeline = self._complete(manager, current_class.id)
        with pytest.raises(ResourceNotFoundError):
            manager.get(pipeline.import_id)

    def test_only_newest_finished_imports_are_kept(self, platform, current_class, students):
        manager = ImportManager(platform.enrollment_service, platform.evaluation_store, max_finished=1)
        first = self._complete(manager, current_class.id)
        second = self._complete(manager, current_class.id)
        pending = manager.start(current_class.id)
        assert manager.get(second.import_id) is second
        assert manager.get(pending.import_id) is pending
        with pytest.raises(ResourceNotFoundError):
            manager.get(first.import_id)

#!/usr/bin/env python3
"""
Demo scenario for the Gradelight platform.
"""

import logging
import threading

from gradelight.core.entities import GradingSpecification
from gradelight.core.exceptions import GradelightError, ImportStateError, UnmappedColumn
from gradelight.main import DEMO_CONCEPTS, DEMO_GOALS, GradelightPlatform


STUDENTS = [
    ("111.111.111-11", "Alice Souza", "alice@example.edu"),
    ("222.222.222-22", "Bruno Lima", "bruno@example.edu"),
    ("333.333.333-33", "Carla Dias", "carla@example.edu"),
    ("444.444.444-44", "Davi Reis", "davi@example.edu"),
]

GRADES_CSV = b"""CPF,Nome,Req,GC,GP,Design,Tests,Refactoring
111.111.111-11,Alice Souza,MA,MA,MA,MA,MA,MA
222.222.222-22,Bruno Lima,MA,MA,MPA,MPA,MPA,MPA
333.333.333-33,Carla Dias,MA,MA,MA,MA,MA,MA
444.444.444-44,Davi Reis,MANA,MANA,MANA,MANA,MPA,MANA
555.555.555-55,Unknown,MA,MA,MA,MA,MA,MA
"""

MAPPING = {
    "CPF": "student_id",
    "Nome": "ignore",
    "Req": "Requirements",
    "GC": "Configuration Management",
    "GP": "Project Management",
    "Design": "Design",
    "Tests": "Tests",
    "Refactoring": "Refactoring",
}


def run_demo():
    """Run a walkthrough of the Gradelight platform."""
    print("=" * 60)
    print("GRADELIGHT GRADING PLATFORM - DEMO")
    print("=" * 60)

    platform = GradelightPlatform()

    try:
        print("\n1. Creating classes and students...")
        past, current = create_sample_data(platform)

        print("\n2. Importing grades from a spreadsheet...")
        demonstrate_import(platform, current)

        print("\n3. Traffic-light statuses...")
        show_statuses(platform, current)

        print("\n4. Demonstrating cancellation and concurrent imports...")
        demonstrate_concurrency(platform, current)

        print("\n5. Platform statistics...")
        show_statistics(platform)

        print("\n" + "=" * 60)
        print("DEMO COMPLETED SUCCESSFULLY!")
        print("=" * 60)

    except GradelightError as e:
        print(f"\nDemo failed with error: {e.message} ({e.error_code})")
        raise


def create_sample_data(platform):
    """Two offerings of the same topic; Carla failed the earlier one."""
    service = platform.enrollment_service
    specification = GradingSpecification.from_pairs(DEMO_CONCEPTS, DEMO_GOALS)

    past = service.create_class("ESS", 2024, 2, specification)
    current = service.create_class("ESS", 2025, 1, specification)
    print(f"  Classes: {past.topic} {past.year}/{past.semester}, {current.topic} {current.year}/{current.semester}")

    for cpf, name, email in STUDENTS:
        service.register_student(cpf, name, email)
        service.enroll(cpf, current.id)
    print(f"  Registered and enrolled {len(STUDENTS)} students")

    service.enroll("333.333.333-33", past.id)
    for goal in ("Requirements", "Configuration Management"):
        service.record_evaluation(past.id, "333.333.333-33", goal, "MANA")
    print("  Carla Dias was graded MANA on two risk goals last semester")
    return past, current


def demonstrate_import(platform, current):
    pipeline = platform.import_manager.start(current.id)
    columns = pipeline.load(GRADES_CSV, filename="grades.csv")
    print(f"  Detected columns: {', '.join(columns)}")

    try:
        pipeline.confirm_mapping({"CPF": "student_id"})
    except UnmappedColumn as e:
        print(f"  Incomplete mapping rejected, unmapped: {', '.join(e.columns)}")

    pipeline.confirm_mapping(MAPPING)
    report = pipeline.apply()
    print(f"  Applied: {report.applied}, skipped: {report.skipped}, failed: {report.failed}")
    for failure in report.failures:
        print(f"    row {failure.row_number} ({failure.student_id}): {failure.reason}")

    again = platform.import_manager.start(current.id)
    again.load(GRADES_CSV, filename="grades.csv")
    again.confirm_mapping(MAPPING)
    report = again.apply()
    print(f"  Re-import of the same file: {report.applied} applied, {report.skipped} skipped")


def show_statuses(platform, current):
    for status in platform.status_service.class_status(current.id):
        student = platform.enrollment_service.find_student(status.enrollment.student_id)
        if not status.computable:
            print(f"    {student.name:12} | not computable")
            continue
        prior = " (failed a prior offering)" if status.failed_prior else ""
        print(f"    {student.name:12} | {status.score:5.2f} | {status.color.value}{prior}")


def demonstrate_concurrency(platform, current):
    cancelled = platform.import_manager.start(current.id)
    cancelled.load(b"CPF,Req\n222.222.222-22,MANA\n")
    cancelled.confirm_mapping({"CPF": "student_id", "Req": "Requirements"})
    cancelled.cancel()
    try:
        cancelled.apply()
    except ImportStateError as e:
        print(f"  Cancelled import refused to apply: {e.message}")
    print(f"  Bruno's Requirements grade is still "
          f"{platform.evaluation_store.get_evaluations(current.id, '22222222222')['Requirements']}")

    pipelines = []
    for concept in ("MPA", "MA"):
        pipeline = platform.import_manager.start(current.id)
        pipeline.load(f"CPF,Tests\n222.222.222-22,{concept}\n444.444.444-44,{concept}\n".encode())
        pipeline.confirm_mapping({"CPF": "student_id", "Tests": "Tests"})
        pipelines.append(pipeline)

    threads = [threading.Thread(target=p.apply) for p in pipelines]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = platform.evaluation_store.snapshot(current.id)
    tests = {snapshot[s]['Tests'] for s in ('22222222222', '44444444444')}
    print(f"  Two concurrent imports finished; both students read Tests={tests.pop()}")
    print(f"  Class write version: {platform.evaluation_store.version(current.id)}")


def show_statistics(platform):
    statistics = platform.enrollment_service.get_statistics()
    print(f"    Students: {statistics['total_students']}")
    print(f"    Classes: {statistics['total_classes']}")
    print(f"    Enrollments: {statistics['total_enrollments']}")
    print(f"    Imports tracked: {platform.import_manager.count()}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    run_demo()

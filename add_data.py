"""
Script to add sample data to a running Gradelight server via the REST API.
Make sure the server is running before executing this script.

Usage:
    python add_data.py
"""

import json
import os
import sys

import requests


def _console_supports_utf8() -> bool:
    enc = getattr(sys.stdout, "encoding", None)
    return enc is not None and "utf" in enc.lower()


_OK_CHAR = "✓" if _console_supports_utf8() else "[OK]"
_FAIL_CHAR = "✗" if _console_supports_utf8() else "[FAIL]"
_WARN_CHAR = "⚠" if _console_supports_utf8() else "[WARN]"

BASE_URL = os.environ.get("GRADELIGHT_BASE_URL", "http://127.0.0.1:8000")

SPECIFICATION = {
    "pesosDosConceitos": [["MA", 10], ["MPA", 7], ["MANA", 4]],
    "pesosDasMetas": [["Requirements", 1], ["Configuration Management", 1], ["Project Management", 1],
                      ["Design", 1], ["Tests", 1], ["Refactoring", 1]],
}

STUDENTS = [
    ("111.111.111-11", "Alice Souza", "alice@example.edu"),
    ("222.222.222-22", "Bruno Lima", "bruno@example.edu"),
    ("333.333.333-33", "Carla Dias", "carla@example.edu"),
    ("444.444.444-44", "Davi Reis", "davi@example.edu"),
]

CURRENT_GRADES_CSV = """CPF,Nome,Requisitos,Gerencia de Configuracao,Gerencia de Projeto,Projeto,Testes,Refatoracao
111.111.111-11,Alice Souza,MA,MA,MA,MA,MA,MA
222.222.222-22,Bruno Lima,MA,MA,MPA,MPA,MPA,MPA
333.333.333-33,Carla Dias,MA,MA,MA,MA,MA,MA
444.444.444-44,Davi Reis,MANA,MANA,MPA,MANA,MANA,MANA
"""

COLUMN_MAPPING = {
    "CPF": "student_id",
    "Nome": "ignore",
    "Requisitos": "Requirements",
    "Gerencia de Configuracao": "Configuration Management",
    "Gerencia de Projeto": "Project Management",
    "Projeto": "Design",
    "Testes": "Tests",
    "Refatoracao": "Refactoring",
}


def check_server():
    """Check if the server is running."""
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=2)
        if response.status_code == 200:
            print(f"{_OK_CHAR} Server is running at {BASE_URL}")
            return True
    except requests.exceptions.RequestException:
        pass
    print(f"{_FAIL_CHAR} Server is not running!")
    print("\nPlease start the server first:")
    print("  gradelight --port 8000")
    return False


def _report_failure(action, response):
    print(f"{_FAIL_CHAR} Failed to {action}: {response.status_code} {response.text}")


def create_student(cpf, name, email):
    """Register a student."""
    response = requests.post(f"{BASE_URL}/api/students", json={"cpf": cpf, "name": name, "email": email})
    if response.status_code == 201:
        print(f"{_OK_CHAR} Created student: {name} ({response.json()['cpf']})")
        return response.json()
    if response.status_code == 409:
        print(f"{_WARN_CHAR} Student {cpf} already registered")
        return requests.get(f"{BASE_URL}/api/students/{cpf}").json()
    _report_failure("create student", response)
    return None


def create_class(topic, year, semester):
    """Create a class offering with the sample grading specification."""
    data = {"topic": topic, "year": year, "semester": semester,
            "especificacaoDoCalculoDaMedia": SPECIFICATION}
    response = requests.post(f"{BASE_URL}/api/classes", json=data)
    if response.status_code == 201:
        print(f"{_OK_CHAR} Created class: {topic} {year}/{semester}")
        return response.json()
    if response.status_code == 409:
        existing_id = response.json()["detail"]["details"]["existing_id"]
        print(f"{_WARN_CHAR} Class {topic} {year}/{semester} already exists")
        return requests.get(f"{BASE_URL}/api/classes/{existing_id}").json()
    _report_failure("create class", response)
    return None


def enroll_student(cpf, class_id):
    response = requests.post(f"{BASE_URL}/api/classes/{class_id}/enroll", json={"studentCPF": cpf})
    if response.status_code == 200:
        print(f"{_OK_CHAR} {cpf}: {response.json()['message']}")
        return response.json()
    _report_failure("enroll student", response)
    return None


def record_evaluation(class_id, cpf, goal, grade):
    response = requests.put(f"{BASE_URL}/api/classes/{class_id}/enrollments/{cpf}/evaluation",
                            json={"goal": goal, "grade": grade})
    if response.status_code != 200:
        _report_failure(f"record {goal}={grade} for {cpf}", response)
    return response.status_code == 200


def import_grades(class_id, content, mapping):
    """Upload a CSV, confirm its column mapping and apply it."""
    response = requests.post(f"{BASE_URL}/api/classes/{class_id}/imports",
                             files={"file": ("grades.csv", content.encode("utf-8"), "text/csv")})
    if response.status_code != 201:
        _report_failure("upload grades", response)
        return None
    import_id = response.json()["import_id"]
    print(f"{_OK_CHAR} Detected columns: {', '.join(response.json()['columns'])}")

    response = requests.post(f"{BASE_URL}/api/imports/{import_id}/mapping", json={"mapping": mapping})
    if response.status_code != 200:
        _report_failure("confirm mapping", response)
        return None

    response = requests.post(f"{BASE_URL}/api/imports/{import_id}/apply")
    if response.status_code != 200:
        _report_failure("apply import", response)
        return None
    report = response.json()["report"]
    print(f"{_OK_CHAR} Import applied: {report['applied']} applied, "
          f"{report['skipped']} skipped, {report['failed']} failed")
    return report


def list_statuses(class_id):
    """Print the traffic-light status of every enrollment."""
    response = requests.get(f"{BASE_URL}/api/classes/{class_id}/enrollments")
    if response.status_code != 200:
        _report_failure("list enrollments", response)
        return []
    statuses = response.json()
    print(f"\n{'='*60}")
    print(f"Enrollments ({len(statuses)})")
    print(f"{'='*60}")
    for status in statuses:
        score = f"{status['score']:.2f}" if status['score'] is not None else "-"
        prior = "prior failure" if status['failed_prior'] else ""
        print(f"  {status['cpf']:12} | {status['name'] or '':15} | {score:>5} | {status['color'] or 'n/a':6} | {prior}")
    return statuses


def get_statistics():
    response = requests.get(f"{BASE_URL}/api/statistics")
    if response.status_code == 200:
        print(f"\n{'='*60}")
        print("System Statistics")
        print(f"{'='*60}")
        print(json.dumps(response.json()['statistics'], indent=2))
        return response.json()
    _report_failure("get statistics", response)
    return None


def main():
    """Main execution."""
    print("="*60)
    print("Gradelight - Data Addition Script")
    print("="*60)
    print()

    if not check_server():
        sys.exit(1)

    print("\nCreating students...")
    for cpf, name, email in STUDENTS:
        create_student(cpf, name, email)

    print("\nCreating classes...")
    past = create_class("ESS", 2024, 2)
    current = create_class("ESS", 2025, 1)
    if not past or not current:
        sys.exit(1)

    print("\nEnrolling students...")
    for cpf, _, _ in STUDENTS:
        enroll_student(cpf, current['id'])
    enroll_student("333.333.333-33", past['id'])

    print("\nRecording last semester's grades...")
    for goal in ("Requirements", "Configuration Management", "Project Management"):
        record_evaluation(past['id'], "333.333.333-33", goal, "MANA")

    print("\nImporting this semester's grades...")
    import_grades(current['id'], CURRENT_GRADES_CSV, COLUMN_MAPPING)

    list_statuses(current['id'])
    get_statistics()

    print("\n" + "="*60)
    print(f"{_OK_CHAR} Sample data added successfully!")
    print("="*60)
    print("\nYou can now:")
    print(f"  - View API docs: {BASE_URL}/docs")
    print(f"  - List statuses: curl {BASE_URL}/api/classes/{current['id']}/enrollments")
    print(f"  - Get statistics: curl {BASE_URL}/api/statistics")
    print()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print(f"\n\n{_FAIL_CHAR} Interrupted by user")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"\n{_FAIL_CHAR} Request failed: {e}")
        sys.exit(1)

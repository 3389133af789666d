"""
Main entry point for the Gradelight platform.
"""

import logging
import threading
import time
from typing import Optional

from .config import PlatformConfig, load_config
from .core.entities import GradingSpecification
from .persistence import ClassRepository, StudentRepository
from .readers import default_registry
from .services import (
    Aggregator, ConcurrencyManager, EnrollmentService, EvaluationStore,
    HistoryLinker, ImportManager, StatusClassifier, StatusService
)
from .api.rest_api import GradelightRestAPI

logger = logging.getLogger(__name__)

DEMO_CONCEPTS = [["MA", 10], ["MPA", 7], ["MANA", 4]]
DEMO_GOALS = [["Requirements", 1], ["Configuration Management", 1], ["Project Management", 1],
              ["Design", 1], ["Tests", 1], ["Refactoring", 1]]


class GradelightPlatform:
    """Wires repositories, services and the REST API together."""

    def __init__(self, config: Optional[PlatformConfig] = None):
        self._config = config or PlatformConfig()
        self._rest_thread = None
        self._running = False

        self._initialize_platform()

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        logger.info("Initializing Gradelight platform...")

        self._concurrency_manager = ConcurrencyManager(lock_timeout=self._config.lock_timeout)
        self._student_repository = StudentRepository()
        self._class_repository = ClassRepository()
        self._evaluation_store = EvaluationStore(self._concurrency_manager)

        self._enrollment_service = EnrollmentService(
            self._student_repository, self._class_repository, self._evaluation_store)
        self._aggregator = Aggregator(self._evaluation_store, self._class_repository)
        self._history_linker = HistoryLinker(
            self._evaluation_store,
            self._class_repository,
            risk_indicator_goals=self._config.risk_indicator_goals,
            min_failed_goals=self._config.risk_min_failed_goals
        )
        self._classifier = StatusClassifier(self._config.thresholds)
        self._status_service = StatusService(
            self._enrollment_service, self._evaluation_store, self._aggregator,
            self._history_linker, self._classifier
        )
        self._import_manager = ImportManager(
            self._enrollment_service, self._evaluation_store, default_registry(),
            max_finished=self._config.max_finished_imports,
            finished_ttl=self._config.finished_import_ttl)

        self._rest_api = GradelightRestAPI(
            self._enrollment_service,
            self._status_service,
            self._import_manager,
            default_thresholds=self._config.thresholds,
            cors_origins=self._config.cors_origins
        )
        logger.info("Gradelight platform initialized (pass=%.2f, safe=%.2f)",
                    self._config.pass_threshold, self._config.safe_threshold)

    @property
    def config(self) -> PlatformConfig:
        return self._config

    @property
    def app(self):
        return self._rest_api.app

    @property
    def enrollment_service(self) -> EnrollmentService:
        return self._enrollment_service

    @property
    def status_service(self) -> StatusService:
        return self._status_service

    @property
    def import_manager(self) -> ImportManager:
        return self._import_manager

    @property
    def aggregator(self) -> Aggregator:
        return self._aggregator

    @property
    def history_linker(self) -> HistoryLinker:
        return self._history_linker

    @property
    def evaluation_store(self) -> EvaluationStore:
        return self._evaluation_store

    def start_rest_server(self):
        """Start the REST server in a daemon thread."""
        if self._running:
            logger.warning("REST server already running")
            return

        import uvicorn

        def run_server():
            uvicorn.run(
                self._rest_api.app,
                host=self._config.host,
                port=self._config.port,
                log_level=self._config.log_level.lower()
            )

        self._rest_thread = threading.Thread(target=run_server, daemon=True)
        self._rest_thread.start()
        self._running = True
        logger.info("REST server started on %s:%d", self._config.host, self._config.port)

    def create_sample_data(self):
        """Create one class per semester of a topic and a few students."""
        specification = GradingSpecification.from_pairs(DEMO_CONCEPTS, DEMO_GOALS)
        service = self._enrollment_service
        past = service.create_class("ESS", 2024, 2, specification)
        current = service.create_class("ESS", 2025, 1, specification)
        for cpf, name in [("111.111.111-11", "Alice Souza"), ("222.222.222-22", "Bruno Lima"),
                          ("333.333.333-33", "Carla Dias")]:
            service.register_student(cpf, name, f"{name.split()[0].lower()}@example.edu")
            service.enroll(cpf, current.id)
        service.enroll("333.333.333-33", past.id)
        for goal in ("Requirements", "Project Management"):
            service.record_evaluation(past.id, "333.333.333-33", goal, "MANA")
        logger.info("Sample data created: classes %s (past) and %s (current)", past.id, current.id)
        return current


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Gradelight grading and risk status server")
    parser.add_argument("--host", type=str, help="REST server host")
    parser.add_argument("--port", type=int, help="REST server port")
    parser.add_argument("--config", type=str, help="Configuration file path (JSON)")
    parser.add_argument("--sample-data", action="store_true", help="Seed the store with sample classes")

    args = parser.parse_args()

    config = load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    platform = GradelightPlatform(config)
    if args.sample_data:
        platform.create_sample_data()

    try:
        platform.start_rest_server()
        print(f"Gradelight is running on http://{config.host}:{config.port} (docs at /docs). Press Ctrl+C to stop.")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()

"""
Services module: evaluation storage, scoring, classification and import.
"""

from .concurrency_manager import ConcurrencyManager
from .evaluation_store import EvaluationStore, EvaluationBatch
from .enrollment_service import EnrollmentService, EnrollmentResult
from .aggregator import Aggregator, weighted_score
from .history_linker import HistoryLinker
from .status_classifier import StatusClassifier
from .status_service import StatusService
from .import_pipeline import ImportPipeline, ImportManager, ImportReport, RowFailure, RowResult

__all__ = [
    "ConcurrencyManager",
    "EvaluationStore",
    "EvaluationBatch",
    "EnrollmentService",
    "EnrollmentResult",
    "Aggregator",
    "weighted_score",
    "HistoryLinker",
    "StatusClassifier",
    "StatusService",
    "ImportPipeline",
    "ImportManager",
    "ImportReport",
    "RowFailure",
    "RowResult",
]

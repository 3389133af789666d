"""
Core module containing the object model, error taxonomy and interfaces.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *

__all__ = [
    # Entities
    "AbstractEntity",
    "Student",
    "ClassSection",
    "GradingSpecification",
    "StatusThresholds",
    "Enrollment",
    "Evaluation",
    "ComputedStatus",
    "normalize_national_id",
    "DEFAULT_PASS_THRESHOLD",
    "DEFAULT_SAFE_THRESHOLD",

    # Interfaces
    "Repository",
    "SpreadsheetReader",

    # Enums
    "StatusColor",
    "ImportState",
    "RowOutcome",
    "ColumnBinding",

    # Exceptions
    "GradelightError",
    "ValidationError",
    "ConfigurationError",
    "UnknownConcept",
    "EmptyEvaluationSet",
    "UnmappedColumn",
    "EmptyFile",
    "ImportStateError",
    "ConcurrencyError",
    "ResourceNotFoundError",
    "DuplicateEntityError",
]

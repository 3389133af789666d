"""
Custom exceptions for the Gradelight platform.
"""

from typing import Optional, Any, Dict


class GradelightError(Exception):
    """Base exception for all Gradelight-related errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(GradelightError):
    """Raised when data validation fails."""
    pass


class ConfigurationError(GradelightError):
    """Raised when a grading specification or platform setting is invalid."""
    pass


class UnknownConcept(ValidationError):
    """Raised when a concept symbol is not part of the class's concept weights."""

    def __init__(self, concept: str, known: Optional[list] = None):
        super().__init__(
            f"Unknown concept '{concept}'",
            error_code="unknown_concept",
            details={'concept': concept, 'known': sorted(known or [])}
        )
        self.concept = concept


class EmptyEvaluationSet(GradelightError):
    """Raised when a score is requested before any goal has been evaluated."""
    pass


class UnmappedColumn(GradelightError):
    """Raised when import columns are neither bound to a goal nor ignored."""

    def __init__(self, columns: list, message: Optional[str] = None):
        super().__init__(
            message or f"Unmapped columns: {', '.join(columns)}",
            error_code="unmapped_column",
            details={'columns': list(columns)}
        )
        self.columns = list(columns)


class EmptyFile(GradelightError):
    """Raised when an import source has no header row."""
    pass


class ImportStateError(GradelightError):
    """Raised when an import operation is invalid for the pipeline's state."""
    pass


class ConcurrencyError(GradelightError):
    """Raised when concurrency control fails."""
    pass


class ResourceNotFoundError(GradelightError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateEntityError(GradelightError):
    """Raised when attempting to create a duplicate entity."""
    pass

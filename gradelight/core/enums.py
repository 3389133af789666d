"""
Enumerations and constants for the Gradelight platform.
"""

from enum import Enum


class StatusColor(Enum):
    """Traffic-light risk status of an enrollment."""
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class ImportState(Enum):
    """States of a grade import pipeline."""
    AWAITING_FILE = "awaiting_file"
    COLUMNS_DETECTED = "columns_detected"
    MAPPING_CONFIRMED = "mapping_confirmed"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RowOutcome(Enum):
    """Outcome of a single imported row."""
    APPLIED = "applied"
    SKIPPED = "skipped"  # Every grade already stored, or nothing to write
    FAILED = "failed"


class ColumnBinding:
    """Reserved mapping targets for import columns that are not goals."""
    IGNORE = "ignore"
    STUDENT_ID = "student_id"

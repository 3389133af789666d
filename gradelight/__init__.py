"""
Gradelight: competency-based grading with traffic-light risk status.

Records per-goal concept grades for students enrolled in class offerings,
imports them in bulk from spreadsheets, and derives a weighted score and a
red/yellow/green status for every enrollment.
"""

__version__ = "1.0.0"
__author__ = "Gradelight Development Team"
__description__ = "Competency grading with weighted scores and traffic-light risk status"

"""
Persistence module: in-process storage for students and classes.
"""

from .repositories import BaseRepository, StudentRepository, ClassRepository

__all__ = [
    "BaseRepository",
    "StudentRepository",
    "ClassRepository",
]

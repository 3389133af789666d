"""
API module for the REST implementation.
"""

from .rest_api import GradelightRestAPI

__all__ = [
    "GradelightRestAPI",
]

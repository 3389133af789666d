"""
Readers for tabular grade sources.
"""

from .spreadsheet import CSVReader, XLSXReader, ReaderRegistry, default_registry

__all__ = [
    "CSVReader",
    "XLSXReader",
    "ReaderRegistry",
    "default_registry",
]

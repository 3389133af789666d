"""
Core interfaces and abstract base classes for the Gradelight platform.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Protocol, TypeVar, Generic, runtime_checkable


T = TypeVar('T')


class Repository(ABC, Generic[T]):
    """Abstract base class for repositories."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Save an entity."""
        pass

    @abstractmethod
    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        pass

    @abstractmethod
    def find_all(self) -> List[T]:
        """Find all entities."""
        pass

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Delete an entity by ID."""
        pass


@runtime_checkable
class SpreadsheetReader(Protocol):
    """Capability interface for tabular grade sources.

    Implementations take the raw uploaded content. ``parse_header`` returns the
    first row's column names (an empty list when there is no header row) and
    ``parse_rows`` yields one ``{column: cell}`` dict per line below the header up
    to the last non-blank one, cells as stripped strings. A blank line yields an
    empty dict so callers can keep file row numbers.
    """

    def parse_header(self, content: bytes) -> List[str]:
        ...

    def parse_rows(self, content: bytes) -> Iterator[Dict[str, str]]:
        ...

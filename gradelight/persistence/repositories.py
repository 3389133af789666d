"""
In-memory repository implementations for students and classes.
"""

import threading
from typing import Dict, List, Optional, Tuple, TypeVar, Generic

from ..core.entities import AbstractEntity, ClassSection, Student, normalize_national_id
from ..core.interfaces import Repository
from ..core.exceptions import DuplicateEntityError

T = TypeVar('T', bound=AbstractEntity)


class BaseRepository(Repository[T], Generic[T]):
    """Base repository keeping entities in a dict guarded by a re-entrant lock."""

    def __init__(self, entity_type: str):
        self._entity_type = entity_type
        self._entities: Dict[str, T] = {}
        self._lock = threading.RLock()

    def add(self, entity: T) -> T:
        """Insert a new entity; fails if the ID is already taken."""
        with self._lock:
            if entity.id in self._entities:
                raise DuplicateEntityError(f"{self._entity_type} {entity.id} already exists",
                                           error_code=f"duplicate_{self._entity_type}")
            self._entities[entity.id] = entity
            return entity

    def save(self, entity: T) -> T:
        """Insert or replace an entity."""
        with self._lock:
            self._entities[entity.id] = entity
            return entity

    def find_by_id(self, entity_id: str) -> Optional[T]:
        with self._lock:
            return self._entities.get(entity_id)

    def find_all(self) -> List[T]:
        with self._lock:
            return sorted(self._entities.values(), key=lambda e: e.created_at)

    def delete(self, entity_id: str) -> bool:
        with self._lock:
            return self._entities.pop(entity_id, None) is not None

    def count(self) -> int:
        with self._lock:
            return len(self._entities)


class StudentRepository(BaseRepository[Student]):
    """Repository for Student entities, keyed by normalized national ID."""

    def __init__(self):
        super().__init__("student")

    def find_by_national_id(self, national_id: str) -> Optional[Student]:
        return self.find_by_id(normalize_national_id(national_id))


class ClassRepository(BaseRepository[ClassSection]):
    """Repository for classes with an index on (topic, year, semester)."""

    def __init__(self):
        super().__init__("class")
        self._by_key: Dict[Tuple[str, int, int], str] = {}

    def add(self, entity: ClassSection) -> ClassSection:
        with self._lock:
            if entity.key in self._by_key:
                topic, year, semester = entity.key
                raise DuplicateEntityError(
                    f"Class {topic} {year}/{semester} already exists",
                    error_code="duplicate_class",
                    details={'existing_id': self._by_key[entity.key]}
                )
            super().add(entity)
            self._by_key[entity.key] = entity.id
            return entity

    def save(self, entity: ClassSection) -> ClassSection:
        with self._lock:
            existing = self._by_key.get(entity.key)
            if existing is not None and existing != entity.id:
                raise DuplicateEntityError(f"Class {entity.key} already exists", error_code="duplicate_class")
            super().save(entity)
            self._by_key[entity.key] = entity.id
            return entity

    def delete(self, entity_id: str) -> bool:
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                return False
            self._by_key.pop(entity.key, None)
            return super().delete(entity_id)

    def find_by_key(self, topic: str, year: int, semester: int) -> Optional[ClassSection]:
        with self._lock:
            class_id = self._by_key.get((topic.strip(), int(year), int(semester)))
            return self._entities.get(class_id) if class_id else None

    def find_by_topic(self, topic: str) -> List[ClassSection]:
        with self._lock:
            return sorted((c for c in self._entities.values() if c.topic == topic.strip()),
                          key=lambda c: c.term)

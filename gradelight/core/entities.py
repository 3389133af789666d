"""
Core entities for the Gradelight platform.
"""

import re
import uuid
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .enums import ColumnBinding, StatusColor
from .exceptions import ConfigurationError, UnknownConcept, ValidationError


# 5.0 rather than 4.0: at 4.0 an all-MANA enrollment (score 4.0) would land in
# YELLOW instead of RED. Either mark leaves 8.0 (two MANA, four MA) in YELLOW.
DEFAULT_PASS_THRESHOLD = 5.0
DEFAULT_SAFE_THRESHOLD = 9.0

_NON_ALPHANUMERIC = re.compile(r"[\W_]+")
_RESERVED_GOALS = {ColumnBinding.IGNORE, ColumnBinding.STUDENT_ID}


def normalize_national_id(value: str) -> str:
    """Strip punctuation and whitespace from a national ID (``123.456.789-00`` -> ``12345678900``)."""
    normalized = _NON_ALPHANUMERIC.sub("", str(value or ""))
    if not normalized:
        raise ValidationError("National ID must contain at least one letter or digit",
                              error_code="invalid_national_id", details={'value': value})
    return normalized


class AbstractEntity(ABC):
    """Base abstract entity with universal ID, lifecycle, and versioning."""

    def __init__(self, entity_id: Optional[str] = None):
        self._id = entity_id or str(uuid.uuid4())
        self._created_at = datetime.now(timezone.utc)
        self._updated_at = self._created_at
        self._version = 1

    @property
    def id(self) -> str:
        return self._id

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def version(self) -> int:
        return self._version

    def update(self, **kwargs) -> None:
        """Update entity with new data."""
        for key, value in kwargs.items():
            if hasattr(self, f"_{key}"):
                setattr(self, f"_{key}", value)
        self._updated_at = datetime.now(timezone.utc)
        self._version += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self._id,
            'created_at': self._created_at.isoformat(),
            'updated_at': self._updated_at.isoformat(),
            'version': self._version,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id})"


class Student(AbstractEntity):
    """Student identified by a normalized national ID."""

    def __init__(self, national_id: str, name: str, email: str, **kwargs):
        normalized = normalize_national_id(national_id)
        super().__init__(entity_id=normalized, **kwargs)
        self._check_contact(name, email)
        self._national_id = normalized
        self._name = name.strip()
        self._email = email.strip()

    @property
    def national_id(self) -> str:
        return self._national_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def email(self) -> str:
        return self._email

    def rename(self, name: str, email: str) -> None:
        """Update the student's contact details; the national ID never changes."""
        self._check_contact(name, email)
        self.update(name=name.strip(), email=email.strip())

    @staticmethod
    def _check_contact(name: str, email: str) -> None:
        if not name or not name.strip():
            raise ValidationError("Student name is required")
        if not email or "@" not in email:
            raise ValidationError("Student email is invalid", details={'email': email})

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'national_id': self._national_id,
            'name': self._name,
            'email': self._email,
        })
        return base_dict


@dataclass(frozen=True)
class StatusThresholds:
    """Score bands: below ``pass_threshold`` is red, at or above ``safe_threshold`` is green."""
    pass_threshold: float = DEFAULT_PASS_THRESHOLD
    safe_threshold: float = DEFAULT_SAFE_THRESHOLD

    def __post_init__(self):
        for name in ('pass_threshold', 'safe_threshold'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, Real) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number", details={name: value})
        if self.pass_threshold >= self.safe_threshold:
            raise ConfigurationError(
                "pass_threshold must be lower than safe_threshold",
                details={'pass_threshold': self.pass_threshold, 'safe_threshold': self.safe_threshold}
            )


def _check_weights(kind: str, pairs: Iterable[Tuple[str, Any]]) -> Dict[str, float]:
    weights: Dict[str, float] = {}
    for name, weight in pairs:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"{kind} names must be non-empty strings", details={'name': name})
        name = name.strip()
        if name in weights:
            raise ConfigurationError(f"Duplicate {kind} '{name}'", error_code=f"duplicate_{kind}")
        if isinstance(weight, bool) or not isinstance(weight, Real) or weight <= 0:
            raise ConfigurationError(f"{kind} '{name}' must have a positive weight",
                                     details={'name': name, 'weight': weight})
        weights[name] = float(weight)
    if not weights:
        raise ConfigurationError(f"At least one {kind} weight is required")
    return weights


@dataclass(frozen=True)
class GradingSpecification:
    """Per-class weighting of concept symbols and goals. Immutable once built."""
    concept_weights: Mapping[str, float]
    goal_weights: Mapping[str, float]
    thresholds: Optional[StatusThresholds] = None

    def __post_init__(self):
        concepts = _check_weights("concept", dict(self.concept_weights).items())
        goals = _check_weights("goal", dict(self.goal_weights).items())
        reserved = _RESERVED_GOALS.intersection(goals)
        if reserved:
            raise ConfigurationError(f"Goal names {sorted(reserved)} are reserved for import mapping")
        object.__setattr__(self, 'concept_weights', MappingProxyType(concepts))
        object.__setattr__(self, 'goal_weights', MappingProxyType(goals))

    @classmethod
    def from_pairs(cls, concept_pairs: Sequence[Sequence[Any]], goal_pairs: Sequence[Sequence[Any]],
                   thresholds: Optional[StatusThresholds] = None) -> 'GradingSpecification':
        """Build from ordered ``[name, weight]`` pairs, rejecting duplicate names."""
        try:
            concepts = _check_weights("concept", [(name, weight) for name, weight in concept_pairs])
            goals = _check_weights("goal", [(name, weight) for name, weight in goal_pairs])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Weights must be [name, weight] pairs: {e}")
        return cls(concept_weights=concepts, goal_weights=goals, thresholds=thresholds)

    @property
    def concepts(self) -> List[str]:
        """Concept symbols ordered from lowest to highest weight."""
        return sorted(self.concept_weights, key=self.concept_weights.__getitem__)

    @property
    def goals(self) -> List[str]:
        return list(self.goal_weights)

    @property
    def lowest_concepts(self) -> FrozenSet[str]:
        lowest = min(self.concept_weights.values())
        return frozenset(c for c, w in self.concept_weights.items() if w == lowest)

    def concept_value(self, concept: str) -> float:
        try:
            return self.concept_weights[concept]
        except KeyError:
            raise UnknownConcept(concept, list(self.concept_weights))

    def has_goal(self, goal: str) -> bool:
        return goal in self.goal_weights

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'concept_weights': [[c, w] for c, w in self.concept_weights.items()],
            'goal_weights': [[g, w] for g, w in self.goal_weights.items()],
        }
        if self.thresholds is not None:
            data['thresholds'] = {
                'pass_threshold': self.thresholds.pass_threshold,
                'safe_threshold': self.thresholds.safe_threshold,
            }
        return data


class ClassSection(AbstractEntity):
    """A class offering, unique by (topic, year, semester)."""

    def __init__(self, topic: str, year: int, semester: int,
                 grading_specification: GradingSpecification, **kwargs):
        super().__init__(**kwargs)
        if not topic or not topic.strip():
            raise ValidationError("Class topic is required")
        if semester not in (1, 2):
            raise ValidationError("Semester must be 1 or 2", details={'semester': semester})
        self._topic = topic.strip()
        self._year = int(year)
        self._semester = int(semester)
        self._grading_specification = grading_specification

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def year(self) -> int:
        return self._year

    @property
    def semester(self) -> int:
        return self._semester

    @property
    def term(self) -> Tuple[int, int]:
        return (self._year, self._semester)

    @property
    def key(self) -> Tuple[str, int, int]:
        return (self._topic, self._year, self._semester)

    @property
    def grading_specification(self) -> GradingSpecification:
        return self._grading_specification

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'topic': self._topic,
            'year': self._year,
            'semester': self._semester,
            'grading_specification': self._grading_specification.to_dict(),
        })
        return base_dict


@dataclass(frozen=True)
class Enrollment:
    """A student's membership in one class offering."""
    student_id: str
    class_id: str


@dataclass(frozen=True)
class Evaluation:
    enrollment: Enrollment
    goal: str
    concept: str


@dataclass
class ComputedStatus:
    """Score and color derived on demand for one enrollment."""
    enrollment: Enrollment
    score: Optional[float]
    color: Optional[StatusColor]
    failed_prior: bool = False
    evaluations: Dict[str, str] = field(default_factory=dict)

    @property
    def computable(self) -> bool:
        return self.score is not None

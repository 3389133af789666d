"""
Platform configuration loaded from a JSON file and ``GRADELIGHT_*`` environment variables.
"""

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from .core.entities import DEFAULT_PASS_THRESHOLD, DEFAULT_SAFE_THRESHOLD, StatusThresholds
from .core.exceptions import ConfigurationError
from .services.concurrency_manager import DEFAULT_LOCK_TIMEOUT
from .services.history_linker import DEFAULT_RISK_INDICATOR_GOALS, DEFAULT_RISK_MIN_FAILED_GOALS
from .services.import_pipeline import DEFAULT_FINISHED_IMPORT_TTL, DEFAULT_MAX_FINISHED_IMPORTS

ENV_PREFIX = "GRADELIGHT_"
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass
class PlatformConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    max_finished_imports: int = DEFAULT_MAX_FINISHED_IMPORTS
    finished_import_ttl: float = DEFAULT_FINISHED_IMPORT_TTL
    pass_threshold: float = DEFAULT_PASS_THRESHOLD
    safe_threshold: float = DEFAULT_SAFE_THRESHOLD
    risk_indicator_goals: List[str] = field(default_factory=lambda: sorted(DEFAULT_RISK_INDICATOR_GOALS))
    risk_min_failed_goals: int = DEFAULT_RISK_MIN_FAILED_GOALS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level {self.log_level}")
        if not 0 < int(self.port) < 65536:
            raise ConfigurationError(f"Port out of range: {self.port}")
        if self.lock_timeout <= 0:
            raise ConfigurationError("lock_timeout must be positive")
        if self.max_finished_imports < 0 or self.finished_import_ttl < 0:
            raise ConfigurationError("Import retention settings must not be negative")
        if self.risk_min_failed_goals < 1:
            raise ConfigurationError("risk_min_failed_goals must be at least 1")
        StatusThresholds(pass_threshold=self.pass_threshold, safe_threshold=self.safe_threshold)

    @property
    def thresholds(self) -> StatusThresholds:
        return StatusThresholds(pass_threshold=self.pass_threshold, safe_threshold=self.safe_threshold)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PlatformConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(data))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_ENV_CASTS = {
    'host': str,
    'port': int,
    'log_level': str,
    'lock_timeout': float,
    'max_finished_imports': int,
    'finished_import_ttl': float,
    'pass_threshold': float,
    'safe_threshold': float,
}


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> PlatformConfig:
    """Read the JSON file at ``path`` (if any), then apply environment overrides."""
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if path:
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a JSON object")

    for key, cast in _ENV_CASTS.items():
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            data[key] = cast(raw)
        except ValueError:
            raise ConfigurationError(f"Invalid value for {ENV_PREFIX + key.upper()}: {raw!r}")

    return PlatformConfig.from_dict(data)

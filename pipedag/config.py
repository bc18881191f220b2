# pipedag/config.py
"""
Engine configuration.

Values come from keyword arguments, a dict, a YAML file, or the file named
by the PIPEDAG_CONFIG environment variable:

    cache:
      enabled: true
      max_size: 1000
    logs:
      max_entries: 1000
    retry:
      max_retries: 2
      backoff_base_ms: 1000
      backoff_max_ms: 30000
    timeout_ms: 300000
    circuit:
      failure_threshold: 5
      retry_after: 30
    draft:
      size_reduction: 0.5
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .draft import DraftOptions
from .errors import ConfigError

CONFIG_ENV_VAR = "PIPEDAG_CONFIG"

_SECTIONS = {"cache", "logs", "retry", "timeout_ms", "circuit", "draft"}


@dataclass
class EngineConfig:
    """Tunables for planning and execution."""
    cache_enabled: bool = True
    max_cache_size: int = 1000
    max_log_entries: int = 1000
    default_max_retries: int = 2
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 30000
    default_timeout_ms: Optional[int] = 300000
    circuit_failure_threshold: int = 5
    circuit_retry_after: float = 30.0
    draft: DraftOptions = field(default_factory=DraftOptions)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError on out-of-range values."""
        if self.max_cache_size < 1:
            raise ConfigError(f"cache.max_size must be >= 1, got {self.max_cache_size}")
        if self.max_log_entries < 1:
            raise ConfigError(f"logs.max_entries must be >= 1, got {self.max_log_entries}")
        if self.default_max_retries < 0:
            raise ConfigError(f"retry.max_retries must be >= 0, got {self.default_max_retries}")
        if self.backoff_base_ms < 0 or self.backoff_max_ms < self.backoff_base_ms:
            raise ConfigError(
                f"Invalid backoff window: base={self.backoff_base_ms} max={self.backoff_max_ms}"
            )
        if self.default_timeout_ms is not None and self.default_timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be positive, got {self.default_timeout_ms}")
        if self.circuit_failure_threshold < 1:
            raise ConfigError("circuit.failure_threshold must be >= 1")

    def backoff_delay_ms(self, attempt: int) -> int:
        """Exponential backoff: base * 2^attempt, capped."""
        return min(self.backoff_base_ms * (2 ** attempt), self.backoff_max_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache": {"enabled": self.cache_enabled, "max_size": self.max_cache_size},
            "logs": {"max_entries": self.max_log_entries},
            "retry": {
                "max_retries": self.default_max_retries,
                "backoff_base_ms": self.backoff_base_ms,
                "backoff_max_ms": self.backoff_max_ms,
            },
            "timeout_ms": self.default_timeout_ms,
            "circuit": {
                "failure_threshold": self.circuit_failure_threshold,
                "retry_after": self.circuit_retry_after,
            },
            "draft": self.draft.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build config from the nested dict layout shown in the module docstring."""
        unknown = set(data) - _SECTIONS
        if unknown:
            raise ConfigError(f"Unknown config sections: {sorted(unknown)}")

        cache = data.get("cache", {})
        logs = data.get("logs", {})
        retry = data.get("retry", {})
        circuit = data.get("circuit", {})
        defaults = cls()

        try:
            draft = DraftOptions.from_dict(data.get("draft", {}))
            return cls(
                cache_enabled=bool(cache.get("enabled", defaults.cache_enabled)),
                max_cache_size=int(cache.get("max_size", defaults.max_cache_size)),
                max_log_entries=int(logs.get("max_entries", defaults.max_log_entries)),
                default_max_retries=int(retry.get("max_retries", defaults.default_max_retries)),
                backoff_base_ms=int(retry.get("backoff_base_ms", defaults.backoff_base_ms)),
                backoff_max_ms=int(retry.get("backoff_max_ms", defaults.backoff_max_ms)),
                default_timeout_ms=data.get("timeout_ms", defaults.default_timeout_ms),
                circuit_failure_threshold=int(
                    circuit.get("failure_threshold", defaults.circuit_failure_threshold)
                ),
                circuit_retry_after=float(circuit.get("retry_after", defaults.circuit_retry_after)),
                draft=draft,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e

    @classmethod
    def from_file(cls, path: Path | str) -> "EngineConfig":
        """Load config from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {path}")
        return cls.from_dict(data)


def load_config(path: Optional[Path | str] = None) -> EngineConfig:
    """
    Load engine config.

    Uses the explicit path if given, otherwise $PIPEDAG_CONFIG, otherwise
    built-in defaults.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if path:
        return EngineConfig.from_file(path)
    return EngineConfig()

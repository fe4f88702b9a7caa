"""
Configuration management and loading.

Loads engine settings from YAML with strict validation: unknown keys and
non-positive values are rejected rather than silently defaulted.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from catalog_optimizer.core.catalog import OptimizationType
from catalog_optimizer.core.permissions import DEFAULT_WRITE_SCOPE
from catalog_optimizer.core.suggestions import DEFAULT_MAX_LENGTHS


@dataclass(frozen=True)
class EngineConfig:
    """Orchestration settings."""
    credit_cost: int = 1
    max_workers: int = 4
    write_scope: str = DEFAULT_WRITE_SCOPE

    def __post_init__(self):
        if self.credit_cost <= 0:
            raise ValueError("credit_cost must be > 0")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if not self.write_scope:
            raise ValueError("write_scope cannot be empty")


@dataclass(frozen=True)
class TimeoutConfig:
    """Bounds for remote calls, in seconds."""
    suggestion_seconds: float = 15.0
    catalog_seconds: float = 15.0

    def __post_init__(self):
        if self.suggestion_seconds <= 0:
            raise ValueError("suggestion_seconds must be > 0")
        if self.catalog_seconds <= 0:
            raise ValueError("catalog_seconds must be > 0")


@dataclass(frozen=True)
class CreditsConfig:
    opening_balance: int = 25

    def __post_init__(self):
        if self.opening_balance < 0:
            raise ValueError("opening_balance must be >= 0")


@dataclass(frozen=True)
class ProviderConfig:
    model: str = "gpt-4o-mini"
    temperature: float = 0.7

    def __post_init__(self):
        if not self.model:
            raise ValueError("model cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")


@dataclass(frozen=True)
class EngineSettings:
    """Complete engine configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    limits: Dict[OptimizationType, int] = field(
        default_factory=lambda: dict(DEFAULT_MAX_LENGTHS)
    )
    credits: CreditsConfig = field(default_factory=CreditsConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)

    @classmethod
    def default(cls) -> "EngineSettings":
        return cls()


_SECTION_TYPES = {
    'engine': EngineConfig,
    'timeouts': TimeoutConfig,
    'credits': CreditsConfig,
    'provider': ProviderConfig,
}

_NUMERIC_FIELDS = {
    'credit_cost': int,
    'max_workers': int,
    'opening_balance': int,
    'suggestion_seconds': float,
    'catalog_seconds': float,
    'temperature': float,
}


def load_engine_config(path: Optional[str] = None) -> EngineSettings:
    """Load and validate engine configuration from a YAML file.

    Every section is optional; omitted sections and keys take their defaults.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated EngineSettings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return EngineSettings.default()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engine config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = set(_SECTION_TYPES) | {'limits'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(raw_config[name], name, section_type)
        for name, section_type in _SECTION_TYPES.items()
        if name in raw_config
    }

    limits = dict(DEFAULT_MAX_LENGTHS)
    if 'limits' in raw_config:
        limits.update(_parse_limits(raw_config['limits']))

    return EngineSettings(limits=limits, **sections)


def _parse_section(data: Any, name: str, section_type):
    """Parse one flat configuration section into its dataclass.

    Raises:
        ValueError: If the section is not a mapping, has unknown keys or
            holds values of the wrong type
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    allowed_keys = set(section_type.__dataclass_fields__)
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        expected = _NUMERIC_FIELDS.get(key)
        if expected is None:
            if not isinstance(value, str):
                raise ValueError(f"'{key}' in {name} must be a string")
            values[key] = value
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {name} must be a number")
        if expected is int and not float(value).is_integer():
            raise ValueError(f"'{key}' in {name} must be a whole number")
        values[key] = expected(value)

    try:
        return section_type(**values)
    except ValueError as e:
        raise ValueError(f"Invalid {name} configuration: {e}")


def _parse_limits(data: Any) -> Dict[OptimizationType, int]:
    if not isinstance(data, dict):
        raise ValueError("'limits' must be a dictionary")

    limits = {}
    for key, value in data.items():
        try:
            optimization_type = OptimizationType(key)
        except ValueError:
            valid = [t.value for t in OptimizationType]
            raise ValueError(f"Unknown limit '{key}', must be one of: {valid}")
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"limit for '{key}' must be a positive integer")
        limits[optimization_type] = value
    return limits

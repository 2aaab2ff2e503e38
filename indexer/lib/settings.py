"""Configuration models and loading for indexing runs.

Settings come from, in increasing precedence: defaults, environment
variables (``INDEXER_`` prefix, ``__`` for nested fields, ``.env`` supported),
an optional YAML file, and explicit overrides such as CLI flags.

Example YAML (indexer.yaml):
    chunk_size: 10
    batch_size: 18
    start_at: 0
    source:
      globally_available: 81
      acceptance_threshold: 40
      seed: ${INDEXER_SEED}
    logging:
      level: INFO
      format: json

Usage:
    settings = load_settings("indexer.yaml", batch_size=25)
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from indexer.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "IndexingSettings",
    "LoggingConfig",
    "SourceConfig",
    "load_settings",
]

# ${VAR_NAME} inside YAML string values
_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class LoggingConfig(BaseModel):
    """Logging configuration.

    ``format`` is ``json`` for log aggregation or ``console`` for people.
    """

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="console", description="Output format: 'json' or 'console'")
    file: Optional[str] = Field(default=None, description="Optional log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"format must be one of: {valid_formats}")
        return v.lower()

    @property
    def json_format(self) -> bool:
        return self.format == "json"


class SourceConfig(BaseModel):
    """Settings for the simulated random data source."""

    globally_available: int = Field(default=81, ge=0, description="Total timestamps the source serves")
    acceptance_threshold: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Draws in 1..100 at or below this value are filtered out",
    )
    seed: Optional[int] = Field(default=None, description="Random seed for reproducible runs")


class IndexingSettings(BaseSettings):
    """Environment-based indexer settings using pydantic-settings.

    Example:
        >>> # INDEXER_BATCH_SIZE=25
        >>> # INDEXER_SOURCE__SEED=7
        >>> settings = IndexingSettings()
        >>> settings.batch_size
        25
    """

    chunk_size: int = Field(default=10, ge=1, description="Items requested per fetch")
    batch_size: int = Field(default=18, ge=1, description="Item or chunk-equivalent threshold per commit")
    start_at: int = Field(default=0, ge=0, description="Starting watermark")
    source: SourceConfig = Field(default_factory=SourceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="INDEXER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _substitute(value: str, key: str) -> str:
    def _lookup(match: re.Match) -> str:
        name = match.group(1)
        if name not in os.environ:
            raise ConfigurationError(
                f"Environment variable {name} referenced by '{key}' is not set",
                field=key,
                value=value,
                suggestion=f"Set {name} or remove the reference",
            )
        return os.environ[name]

    return _REFERENCE.sub(_lookup, value)


def _expand_references(node: Any, key: str = "") -> Any:
    """Replace ``${VAR}`` in every string leaf of a parsed YAML document."""
    if isinstance(node, str):
        return _substitute(node, key or "config")
    if isinstance(node, dict):
        return {k: _expand_references(v, f"{key}.{k}" if key else str(k)) for k, v in node.items()}
    if isinstance(node, list):
        return [_expand_references(v, f"{key}[{i}]") for i, v in enumerate(node)]
    return node


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Config file not found: {path}",
            field="config",
            value=path,
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Invalid YAML in {path}: {exc}",
            field="config",
            value=path,
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping, got {type(data).__name__}",
            field="config",
            value=path,
        )

    unknown = sorted(set(data) - set(IndexingSettings.model_fields))
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in {path}: {', '.join(unknown)}",
            field="config",
            suggestion=f"Valid keys are: {', '.join(IndexingSettings.model_fields)}",
        )

    return _expand_references(data)


def _format_issues(exc: ValidationError) -> List[str]:
    issues = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "settings"
        issues.append(f"{location}: {err['msg']}")
    return issues


def load_settings(
    path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> IndexingSettings:
    """Load settings from the environment, an optional YAML file and overrides.

    Overrides whose value is ``None`` are ignored so CLI flags can be passed
    through unconditionally.

    Raises:
        ConfigurationError: If the file or the resulting settings are invalid
    """
    data: Dict[str, Any] = {}
    if path is not None:
        data = _read_yaml(Path(path))
        logger.debug("Loaded indexer config from %s", path)

    cleaned = {k: v for k, v in overrides.items() if v is not None}
    for key in ("source", "logging"):
        if isinstance(cleaned.get(key), dict):
            cleaned[key] = {k: v for k, v in cleaned[key].items() if v is not None}
            if not cleaned[key]:
                del cleaned[key]
    data = _merge(data, cleaned)

    try:
        return IndexingSettings(**data)
    except ValidationError as exc:
        issues = _format_issues(exc)
        raise ConfigurationError(
            "Invalid indexer settings",
            details={"issues": "; ".join(issues)},
            suggestion="Check chunk_size/batch_size are positive and source.acceptance_threshold is within 0..100.",
        ) from exc

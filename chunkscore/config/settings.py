from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from chunkscore.config.params import (
    ChunkParams,
    DestinationSettings,
    LoggingSettings,
    ModelSettings,
    SourceSettings,
    StagingSettings,
)
from chunkscore.pipeline.types import InvalidConfiguration

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHUNKSCORE_"


class Settings(BaseSettings):
    """Root configuration.

    Environment overrides use the CHUNKSCORE_ prefix with ``__`` between
    nested keys, e.g. ``CHUNKSCORE_CHUNKS__TOTAL_CHUNKS=10000``.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
        protected_namespaces=(),
    )

    chunks: ChunkParams = Field(default_factory=ChunkParams)
    source: SourceSettings = Field(default_factory=SourceSettings)
    destination: DestinationSettings = Field(default_factory=DestinationSettings)
    staging: StagingSettings = Field(default_factory=StagingSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise InvalidConfiguration(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"Config file {path} must hold a mapping")
    return data


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(yaml_path: Optional[str] = None, **overrides: Any) -> Settings:
    """Build settings from YAML, then environment, then explicit overrides.

    Explicit ``overrides`` win over YAML. Environment variables fill anything
    neither sets.

    Raises:
        InvalidConfiguration: if the file is unreadable or any value fails
            validation.
    """
    data: Dict[str, Any] = {}
    if yaml_path:
        data = _load_yaml(Path(yaml_path))
        logger.debug(f"Loaded config overrides from {yaml_path}")
    data = _merge(data, overrides)
    try:
        return Settings(**data)
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid configuration: {e}") from e


__all__ = ["ENV_PREFIX", "Settings", "load_settings"]

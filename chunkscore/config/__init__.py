from .params import (
    ChunkParams,
    DestinationSettings,
    LoggingSettings,
    ModelSettings,
    SourceSettings,
    StagingSettings,
)
from .settings import ENV_PREFIX, Settings, load_settings

__all__ = [
    "ChunkParams",
    "SourceSettings",
    "DestinationSettings",
    "StagingSettings",
    "ModelSettings",
    "LoggingSettings",
    "Settings",
    "ENV_PREFIX",
    "load_settings",
]

"""Pipeline parameters.

``total_chunks`` bounds per-chunk memory: with ``concurrency`` workers each
holding one chunk, peak scoring memory is roughly
``concurrency * (dataset size / total_chunks)``. Keep it small for demos and
large (thousands) for production datasets.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ChunkParams(BaseModel):
    """Partitioning and parallelism."""

    total_chunks: int = Field(
        default=3,
        ge=1,
        description="Number of disjoint chunks the source is split into.",
    )
    concurrency: int = Field(
        default=4,
        ge=1,
        description="Worker threads scoring chunks at the same time.",
    )
    score_column: str = Field(
        default="score",
        min_length=1,
        description="Name of the column appended by the scorer.",
    )


class SourceSettings(BaseModel):
    """Where records are read from."""

    url: str = "sqlite:///data/source.db"
    table: str = Field(default="records", min_length=1)
    ordinal_column: str = Field(
        default="seq",
        min_length=1,
        description="Stable non-negative integer column used to partition records.",
    )


class DestinationSettings(BaseModel):
    """Where scored records are written."""

    url: str = "sqlite:///data/scores.db"
    table: str = Field(default="scores", min_length=1)
    if_exists: Literal["fail", "replace"] = Field(
        default="fail",
        description="What the create step does when the table already exists.",
    )


class StagingSettings(BaseModel):
    """Intermediate file store."""

    directory: str = "tmp"


class ModelSettings(BaseModel):
    """Serialized predictor."""

    path: str = "model/model.joblib"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    directory: Optional[str] = None
    retention_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)


__all__ = [
    "ChunkParams",
    "SourceSettings",
    "DestinationSettings",
    "StagingSettings",
    "ModelSettings",
    "LoggingSettings",
]

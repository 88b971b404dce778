"""Model loading and per-chunk scoring.

The model is loaded once, before the worker pool starts, and shared by
reference across all workers. ``score`` never mutates the model or its
input frame, so concurrent calls on different chunks are safe.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import joblib
import numpy as np
import pandas as pd

from chunkscore.pipeline.hashing import compute_frame_hash
from chunkscore.pipeline.types import (
    ChunkDescriptor,
    ModelLoadError,
    Role,
    ScoringError,
)
from chunkscore.pipeline.stage import StageStore

logger = logging.getLogger(__name__)

DEFAULT_SCORE_COLUMN = "score"


def load_model(path: str | os.PathLike[str]) -> Any:
    """Load a joblib-serialized predictor.

    Accepts a bare estimator or a dict wrapping one under ``model`` or
    ``pipeline``.

    Raises:
        ModelLoadError: if the file is missing, cannot be deserialized, or
            does not hold an object with a ``predict`` method.
    """
    model_path = Path(path)
    if not model_path.is_file():
        raise ModelLoadError(f"Model artifact not found at {model_path}")
    try:
        artifact = joblib.load(model_path)
    except Exception as e:
        raise ModelLoadError(f"Failed to load model from {model_path}: {e}") from e

    if isinstance(artifact, dict):
        artifact = artifact.get("model", artifact.get("pipeline"))
    if artifact is None or not callable(getattr(artifact, "predict", None)):
        raise ModelLoadError(
            f"Artifact at {model_path} is not a predictor (no predict method)"
        )
    logger.info(f"Loaded model {type(artifact).__name__} from {model_path}")
    return artifact


def _model_features(model: Any) -> Optional[List[str]]:
    names = getattr(model, "feature_names_in_", None)
    if names is None:
        return None
    return [str(n) for n in names]


def score(
    model: Any,
    records: pd.DataFrame,
    score_column: str = DEFAULT_SCORE_COLUMN,
) -> pd.DataFrame:
    """Return a copy of ``records`` with ``score_column`` appended.

    Input columns and row order are preserved. When the model was fitted on
    named columns, only those are passed to ``predict``.

    Raises:
        ScoringError: if a predictor column is missing, the score column
            already exists, prediction fails, or predictions are not one
            finite value per row.
    """
    if score_column in records.columns:
        raise ScoringError(f"Input already has a '{score_column}' column")

    features = _model_features(model)
    if features is not None:
        missing = [c for c in features if c not in records.columns]
        if missing:
            raise ScoringError(f"Missing predictor columns: {missing}")
        inputs = records.loc[:, features]
    else:
        inputs = records

    out = records.copy()
    if len(records) == 0:
        out[score_column] = pd.Series(dtype=np.float64)
        return out

    try:
        predictions = model.predict(inputs)
    except Exception as e:
        raise ScoringError(f"Model prediction failed: {e}") from e

    try:
        values = np.asarray(predictions, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as e:
        raise ScoringError(f"Predictions are not numeric: {e}") from e
    if values.shape[0] != len(records):
        raise ScoringError(
            f"Model returned {values.shape[0]} predictions for {len(records)} records"
        )
    if not np.all(np.isfinite(values)):
        raise ScoringError(f"Model returned {int(np.sum(~np.isfinite(values)))} non-finite scores")

    out[score_column] = values
    return out


@dataclass
class ChunkOutcome:
    """What a successful chunk task produced."""
    rows: int
    digest: str
    elapsed_sec: float


class ChunkScorer:
    """Per-chunk task: ingress artifact -> score -> egress artifact.

    One instance is shared by all workers. It holds only read-only state:
    the loaded model, the store and the score column name.
    """

    def __init__(
        self,
        model: Any,
        store: StageStore,
        score_column: str = DEFAULT_SCORE_COLUMN,
    ):
        self.model = model
        self.store = store
        self.score_column = score_column

    def __call__(self, descriptor: ChunkDescriptor) -> ChunkOutcome:
        started = time.monotonic()
        records = self.store.read(Role.INGRESS, descriptor)
        try:
            scored = score(self.model, records, self.score_column)
        except ScoringError as e:
            # Attach the chunk so the report can name it.
            e.index = descriptor.index
            raise
        self.store.write(Role.EGRESS, descriptor, scored)
        elapsed = time.monotonic() - started
        return ChunkOutcome(
            rows=len(scored),
            digest=compute_frame_hash(scored),
            elapsed_sec=elapsed,
        )


__all__ = [
    "DEFAULT_SCORE_COLUMN",
    "load_model",
    "score",
    "ChunkOutcome",
    "ChunkScorer",
]

"""Shared fixtures: a small labeled dataset, a fitted model and SQLite stores."""

from __future__ import annotations

from pathlib import Path

import joblib
import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LinearRegression
from sqlalchemy import create_engine, inspect

from chunkscore.config import Settings
from chunkscore.pipeline.stage import StageStore

FEATURES = ["cyl", "disp", "hp", "wt"]
TARGET = "mpg"
N_ROWS = 32


def make_cars(n_rows: int = N_ROWS, seed: int = 7) -> pd.DataFrame:
    """Synthetic cars table with a 1-based ``seq`` ordinal."""
    rng = np.random.default_rng(seed)
    cyl = rng.choice([4, 6, 8], size=n_rows)
    disp = np.round(cyl * 30.0 + rng.normal(0, 15, n_rows), 1)
    hp = np.round(cyl * 20.0 + rng.normal(0, 10, n_rows), 0)
    wt = np.round(1.5 + cyl * 0.25 + rng.normal(0, 0.2, n_rows), 3)
    mpg = np.round(40.0 - 1.2 * cyl - 0.02 * disp - 0.01 * hp - 2.5 * wt + rng.normal(0, 0.5, n_rows), 2)
    return pd.DataFrame({
        "seq": np.arange(1, n_rows + 1, dtype=np.int64),
        "mpg": mpg,
        "cyl": cyl.astype(np.int64),
        "disp": disp,
        "hp": hp,
        "wt": wt,
    })


@pytest.fixture
def cars() -> pd.DataFrame:
    return make_cars()


@pytest.fixture
def fitted_model(cars):
    model = LinearRegression()
    model.fit(cars[FEATURES], cars[TARGET])
    return model


@pytest.fixture
def model_path(tmp_path: Path, fitted_model) -> Path:
    path = tmp_path / "model" / "model.joblib"
    path.parent.mkdir(parents=True)
    joblib.dump(fitted_model, path)
    return path


@pytest.fixture
def source_url(tmp_path: Path, cars) -> str:
    url = f"sqlite:///{tmp_path / 'source.db'}"
    engine = create_engine(url)
    try:
        with engine.begin() as conn:
            cars.to_sql("mtcars", conn, index=False)
    finally:
        engine.dispose()
    return url


@pytest.fixture
def destination_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'scores.db'}"


@pytest.fixture
def store(tmp_path: Path) -> StageStore:
    return StageStore(tmp_path / "stage")


@pytest.fixture
def settings(tmp_path: Path, model_path: Path, source_url: str, destination_url: str) -> Settings:
    return Settings(
        chunks={"total_chunks": 4, "concurrency": 2},
        source={"url": source_url, "table": "mtcars", "ordinal_column": "seq"},
        destination={"url": destination_url, "table": "mtcars_scores"},
        staging={"directory": str(tmp_path / "stage")},
        model={"path": str(model_path)},
    )


def _read_table(url: str, table: str) -> pd.DataFrame:
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            return pd.read_sql_table(table, conn)
    finally:
        engine.dispose()


def _table_exists(url: str, table: str) -> bool:
    engine = create_engine(url)
    try:
        return inspect(engine).has_table(table)
    finally:
        engine.dispose()


@pytest.fixture
def read_table():
    """Callable reading a whole table back as a frame."""
    return _read_table


@pytest.fixture
def table_exists():
    return _table_exists

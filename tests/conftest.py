"""Pytest configuration and shared fixtures."""

import logging

import numpy as np
import pandas as pd
import pytest

from metaforecast.data.structs import TimeSeries
from metaforecast.features.extraction import FEATURE_NAMES, FeatureExtractor, FeatureVector
from metaforecast.models.candidates import CandidateModel
from metaforecast.models.examples import TrainingExample

# Candidates cheap enough to fit many times per test.
CHEAP_MODELS = [
    CandidateModel.NAIVE,
    CandidateModel.SNAIVE,
    CandidateModel.RW_DRIFT,
    CandidateModel.THETA,
]

SMALL_FOREST = {"n_estimators": 50}
SMALL_BOOSTER = {"n_estimators": 30, "max_depth": 3, "learning_rate": 0.3}


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def cheap_models():
    return list(CHEAP_MODELS)


@pytest.fixture
def forest_params():
    return dict(SMALL_FOREST)


@pytest.fixture
def booster_params():
    return dict(SMALL_BOOSTER)


@pytest.fixture
def linear_trend_series():
    """Exact linear trend, n = 48, monthly period."""
    t = np.arange(48, dtype=float)
    return TimeSeries(values=10.0 + 0.5 * t, period=12, series_id="linear")


@pytest.fixture
def seasonal_series(rng):
    """Noisy monthly seasonal series with a 12-step test segment."""
    t = np.arange(96)
    values = 100 + 10 * np.sin(2 * np.pi * t / 12) + rng.normal(0, 1, 96)
    return TimeSeries(values=values, period=12, horizon=12, series_id="seasonal")


@pytest.fixture
def make_corpus():
    """Factory for a mixed corpus of trending, seasonal and random-walk series."""
    def _make(n_trend=6, n_seasonal=6, n_walk=4, length=72, period=12, horizon=6, seed=0):
        rng = np.random.default_rng(seed)
        t = np.arange(length)
        corpus = []
        for i in range(n_trend):
            values = 50 + rng.uniform(0.5, 2.0) * t + rng.normal(0, 1, length)
            corpus.append(TimeSeries(values, period=period, horizon=horizon, series_id=f"trend_{i}"))
        for i in range(n_seasonal):
            phase = rng.uniform(0, 2 * np.pi)
            values = 100 + 20 * np.sin(2 * np.pi * t / period + phase) + rng.normal(0, 1, length)
            corpus.append(TimeSeries(values, period=period, horizon=horizon, series_id=f"seasonal_{i}"))
        for i in range(n_walk):
            values = 100 + np.cumsum(rng.normal(0, 1, length))
            corpus.append(TimeSeries(values, period=period, horizon=horizon, series_id=f"walk_{i}"))
        return corpus
    return _make


@pytest.fixture
def make_vector():
    """Factory for full-schema FeatureVectors from raw values."""
    signature = FeatureExtractor().signature

    def _make(values, series_id=None):
        return FeatureVector(
            feature_names=FEATURE_NAMES,
            feature_values=tuple(float(v) for v in values),
            signature=signature,
            series_id=series_id,
        )
    return _make


@pytest.fixture
def synthetic_examples(make_vector, rng):
    """
    40 examples over NAIVE, SNAIVE and RW_DRIFT.

    RW_DRIFT has the lowest loss when the 'trend' feature is positive,
    SNAIVE otherwise; the best model's loss is well below the others.
    """
    trend_idx = FEATURE_NAMES.index("trend")
    models = [CandidateModel.NAIVE, CandidateModel.SNAIVE, CandidateModel.RW_DRIFT]
    examples = []
    for i in range(40):
        values = rng.normal(0, 1, len(FEATURE_NAMES))
        values[trend_idx] = 1.5 if i % 2 == 0 else -1.5
        best = CandidateModel.RW_DRIFT if values[trend_idx] > 0 else CandidateModel.SNAIVE
        losses = {m: float(rng.uniform(2.0, 3.0)) for m in models}
        losses[best] = float(rng.uniform(0.1, 0.5))
        examples.append(TrainingExample(features=make_vector(values, f"s{i}"), losses=losses))
    return examples


@pytest.fixture
def restore_logging():
    """Restore root logger handlers and level after a test reconfigures logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def small_run():
    """Config overrides for a fast pipeline run over the cheap candidates."""
    return {
        "candidates": [m.value for m in CHEAP_MODELS],
        "selector": {"hyperparameters": dict(SMALL_FOREST)},
        "weighter": {"hyperparameters": dict(SMALL_BOOSTER)},
        "batch": {"n_workers": 1},
        "logging": {"log_dir": None},
    }


@pytest.fixture
def long_frame():
    """Converts a corpus to the long table read by SeriesLoader."""
    def _frame(corpus, with_horizon=True):
        rows = []
        for series in corpus:
            for value in series.values:
                row = {"series_id": series.series_id, "value": value, "period": series.period}
                if with_horizon:
                    row["horizon"] = series.horizon
                rows.append(row)
        return pd.DataFrame(rows)
    return _frame

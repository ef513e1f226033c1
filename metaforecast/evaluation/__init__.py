"""Forecast accuracy measures, corpus labelling and strategy comparison."""

from metaforecast.evaluation.metrics import (
    LOSS_FUNCTIONS,
    MetricsCalculator,
    MetricsResult,
    mase,
    naive2_forecast,
    owa,
    smape,
)
from metaforecast.evaluation.labelling import build_training_examples, label_series
from metaforecast.evaluation.comparison import ModelComparator, compare_class_weighting

__all__ = [
    "LOSS_FUNCTIONS",
    "MetricsCalculator",
    "MetricsResult",
    "mase",
    "naive2_forecast",
    "owa",
    "smape",
    "build_training_examples",
    "label_series",
    "ModelComparator",
    "compare_class_weighting",
]

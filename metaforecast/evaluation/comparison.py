"""Comparison of meta-learner configurations and forecasting strategies."""

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from metaforecast.data.structs import TimeSeries
from metaforecast.evaluation.metrics import MetricsCalculator
from metaforecast.models.candidates import CandidateModel
from metaforecast.models.examples import TrainingExample
from metaforecast.models.selector import ModelSelector
from metaforecast.models.weighter import ModelWeighter

logger = logging.getLogger(__name__)

CLASS_WEIGHTINGS = {"balanced": "balanced", "unweighted": None}


def compare_class_weighting(
    examples: Sequence[TrainingExample],
    test_size: float = 0.3,
    random_state: int = 0,
    hyperparameters: Optional[Dict[str, Any]] = None,
) -> pd.DataFrame:
    """
    Train the selector with balanced and with raw class priors on the same
    split and report held-out classification metrics for each.

    Returns:
        DataFrame indexed by 'balanced'/'unweighted' with accuracy,
        precision, recall and f1 (macro-averaged)
    """
    labels = [example.label.value for example in examples]
    counts = pd.Series(labels).value_counts()
    # Stratify only when every class can appear on both sides of the split.
    stratify = labels if counts.min() >= 2 else None
    train, test = train_test_split(
        list(examples), test_size=test_size, random_state=random_state, stratify=stratify
    )

    calc = MetricsCalculator()
    y_true = [example.label.value for example in test]
    rows = {}
    for name, class_weight in CLASS_WEIGHTINGS.items():
        selector = ModelSelector(
            class_weight=class_weight,
            hyperparameters=hyperparameters,
            random_state=random_state,
        ).fit(train)
        y_pred = [model.value for model in selector.predict_many([e.features for e in test])]
        rows[name] = calc.calculate_classification_metrics(y_true, y_pred)
        logger.info(f"Selector ({name}) held-out metrics: {rows[name]}")

    return pd.DataFrame.from_dict(rows, orient="index")


class ModelComparator:
    """
    Scores forecasting strategies on the test segments of a corpus.

    Strategies are the fitted selector, the fitted weighter and each single
    candidate model; each is scored with sMAPE, MASE and OWA.
    """

    def __init__(
        self,
        selector: Optional[ModelSelector] = None,
        weighter: Optional[ModelWeighter] = None,
        models: Optional[Iterable[CandidateModel]] = None,
    ):
        self.selector = selector
        self.weighter = weighter
        self.models = tuple(models) if models is not None else ()
        self.calc = MetricsCalculator()

    def evaluate_series(self, series: TimeSeries) -> pd.DataFrame:
        """Metrics per strategy for one series (rows are strategies)."""
        if series.horizon is None:
            raise ValueError(f"Series '{series.series_id}' has no held-out test segment")

        forecasts = {}
        if self.selector is not None:
            _, forecast = self.selector.select_and_forecast(series, series.horizon)
            forecasts["fforms"] = forecast.mean
        if self.weighter is not None:
            forecast, _ = self.weighter.forecast(series, series.horizon)
            forecasts["fforma"] = forecast.mean
        for model in self.models:
            forecasts[model.value] = model.fit_and_forecast(series, series.horizon).mean

        rows = {
            name: self.calc.calculate_forecast_metrics(series.test, mean, series.train, series.period)
            for name, mean in forecasts.items()
        }
        return pd.DataFrame.from_dict(rows, orient="index")

    def evaluate(self, corpus: Iterable[TimeSeries]) -> pd.DataFrame:
        """
        Mean metrics per strategy across a corpus.

        Series on which any strategy fails are skipped and logged.
        """
        frames = []
        for series in corpus:
            try:
                frames.append(self.evaluate_series(series))
            except Exception as e:
                logger.warning(f"Skipping '{series.series_id}' in comparison: {e}")
        if not frames:
            return pd.DataFrame(columns=["smape", "mase", "owa"])

        stacked = pd.concat(frames)
        summary = stacked.groupby(level=0).agg(lambda col: float(np.nanmean(col)))
        summary["n_series"] = stacked.groupby(level=0).size()
        return summary.sort_values("owa")

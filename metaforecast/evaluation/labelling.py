"""
Labelling of a forecasting corpus for meta-learning.

Each series with a held-out test segment is featurised on its training
segment, forecast by every candidate, and scored against the test segment.
The resulting per-candidate losses (and their argmin as the best-model
label) form one TrainingExample.
"""

import logging
from functools import partial
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from metaforecast.data.structs import TimeSeries
from metaforecast.evaluation.metrics import LOSS_FUNCTIONS, naive2_forecast
from metaforecast.features.extraction import FeatureExtractor
from metaforecast.models.candidates import CandidateModel, fit_and_forecast_all
from metaforecast.models.examples import TrainingExample
from metaforecast.utils.error_handling import RecoveryContext
from metaforecast.utils.parallel import BatchProcessor

logger = logging.getLogger(__name__)


def label_series(
    series: TimeSeries,
    extractor: FeatureExtractor,
    models: Sequence[CandidateModel],
    loss: str = "owa",
    level: float = 95.0,
) -> TrainingExample:
    """
    Build one TrainingExample from a series with a test segment.

    Raises:
        ValueError: If the series has no test segment, a candidate fails, or
            the loss is undefined for this series
        InsufficientDataError: If features cannot be extracted
    """
    if series.horizon is None:
        raise ValueError(f"Series '{series.series_id}' has no held-out test segment")

    features = extractor.extract(series)
    forecasts, failures = fit_and_forecast_all(series, series.horizon, models=models, level=level)
    if failures:
        raise ValueError(
            f"Candidates {[m.value for m in failures]} failed on '{series.series_id}'"
        )

    loss_func = LOSS_FUNCTIONS[loss]
    benchmark = naive2_forecast(series.train, series.period, series.horizon)
    losses = {
        model: loss_func(series.test, forecast.mean, series.train, series.period, benchmark=benchmark)
        for model, forecast in forecasts.items()
    }
    return TrainingExample(features=features, losses=losses)


def build_training_examples(
    corpus: Iterable[TimeSeries],
    extractor: Optional[FeatureExtractor] = None,
    models: Optional[Iterable[CandidateModel]] = None,
    loss: str = "owa",
    level: float = 95.0,
    n_workers: Optional[int] = 1,
) -> Tuple[List[TrainingExample], Dict[str, RecoveryContext]]:
    """
    Label every series of a corpus.

    Args:
        corpus: Series with ``horizon`` set
        extractor: Feature extractor (default: all features)
        models: Candidate pool (default: every CandidateModel)
        loss: 'owa', 'mase' or 'smape'
        level: Prediction interval level passed to the candidates
        n_workers: Worker processes (1 runs in-process, None uses all cores but one)

    Returns:
        (examples in corpus order, failures by series_id)
    """
    if loss not in LOSS_FUNCTIONS:
        raise ValueError(f"Unknown loss '{loss}'; available: {sorted(LOSS_FUNCTIONS)}")
    extractor = extractor or FeatureExtractor()
    models = tuple(models) if models is not None else tuple(CandidateModel)

    worker = partial(label_series, extractor=extractor, models=models, loss=loss, level=level)
    result = BatchProcessor(n_workers=n_workers).map(worker, corpus)

    examples = list(result.successes.values())
    if examples:
        counts: Dict[str, int] = {}
        for example in examples:
            counts[example.label.value] = counts.get(example.label.value, 0) + 1
        logger.info(f"Labelled {len(examples)} series ({loss}); best-model counts {counts}")
    return examples, result.failures

"""
End-to-end tests: label a synthetic corpus, train both meta-learners,
persist them, and forecast new series from the saved artifacts.
"""

import numpy as np
import pytest

from metaforecast.data.simulation import SeriesSimulator
from metaforecast.data.structs import TimeSeries
from metaforecast.evaluation.comparison import ModelComparator
from metaforecast.features.extraction import FeatureExtractor
from metaforecast.models.candidates import CandidateModel
from metaforecast.models.examples import TrainingExample, load_training_examples
from metaforecast.models.selector import ModelSelector
from metaforecast.models.weighter import ModelWeighter
from metaforecast.pipeline import MetaForecastPipeline
from metaforecast.utils.serialization import load_json


@pytest.fixture
def pipeline(small_run):
    return MetaForecastPipeline.from_config(overrides=small_run)


def test_linear_trend_features_and_selection(linear_trend_series, make_corpus, forest_params):
    """A selector trained on trend and seasonal series picks a trend method for an exact line."""
    extractor = FeatureExtractor()
    vector = extractor.extract(linear_trend_series)
    assert vector["trend"] == pytest.approx(1.0, abs=1e-3)
    assert vector["seasonality"] == pytest.approx(0.0, abs=1e-3)

    corpus = make_corpus(n_trend=10, n_seasonal=10, n_walk=0, seed=3)
    frame, failures = extractor.extract_many(corpus)
    assert not failures

    examples = []
    for series in corpus:
        label = CandidateModel.RW_DRIFT if series.series_id.startswith("trend") else CandidateModel.SNAIVE
        examples.append(TrainingExample(features=extractor.extract(series), best_model=label))

    selector = ModelSelector(hyperparameters=forest_params, extractor=extractor).fit(examples)
    assert selector.predict(vector) in (CandidateModel.RW_DRIFT, CandidateModel.THETA)

    model, forecast = selector.select_and_forecast(linear_trend_series, 6)
    if model == CandidateModel.RW_DRIFT:
        np.testing.assert_allclose(forecast.mean, 10.0 + 0.5 * np.arange(48, 54), atol=1e-8)


def test_pipeline_run_save_and_reload(tmp_path, pipeline, make_corpus):
    corpus = make_corpus(n_trend=5, n_seasonal=5, n_walk=2)
    corpus.append(TimeSeries(values=[1.0, 2.0, 3.0, 4.0], period=1, horizon=1, series_id="tiny"))

    result = pipeline.run(corpus)

    assert len(result.examples) == 12
    assert set(result.failures) == {"tiny"}
    assert result.selector.is_fitted and result.weighter.is_fitted
    assert result.weighter.models == pipeline.models

    result.save(tmp_path / "run")
    assert load_json(tmp_path / "run" / "failures.json")["tiny"]["exception_type"] == "InsufficientDataError"
    assert len(load_training_examples(tmp_path / "run" / "examples")) == 12

    weighter = ModelWeighter.load(tmp_path / "run" / "weighter")
    selector = ModelSelector.load(tmp_path / "run" / "selector")

    new_series = make_corpus(n_trend=1, n_seasonal=1, n_walk=0, seed=99)
    for series in new_series:
        unlabelled = TimeSeries(values=series.values, period=series.period, series_id=series.series_id)
        combined, weights = weighter.forecast(unlabelled, 6)
        assert combined.horizon == 6
        assert np.all(np.isfinite(combined.mean))
        assert sum(weights.values()) == pytest.approx(1.0)

        model, forecast = selector.select_and_forecast(unlabelled, 6)
        assert model in pipeline.models
        assert forecast.horizon == 6


def test_pipeline_with_augmentation(make_corpus, small_run):
    overrides = dict(small_run, simulation={"n_per_series": 1, "random_state": 0})
    pipeline = MetaForecastPipeline.from_config(overrides=overrides)
    corpus = make_corpus(n_trend=3, n_seasonal=3, n_walk=0)

    augmented, failures = pipeline.augment(corpus)
    assert not failures
    assert len(augmented) == 3 * len(corpus)
    assert all(s.metadata.get("source") for s in augmented[len(corpus):])


def test_simulation_failures_are_reported(make_corpus, small_run, monkeypatch):
    def failing_simulate(self, series, n, length=None, kinds=("ets", "arima")):
        if series.series_id == "trend_0":
            raise np.linalg.LinAlgError("singular matrix")
        return []

    monkeypatch.setattr(SeriesSimulator, "simulate", failing_simulate)
    overrides = dict(small_run, simulation={"n_per_series": 1, "random_state": 0})
    result = MetaForecastPipeline.from_config(overrides=overrides).run(
        make_corpus(n_trend=4, n_seasonal=4, n_walk=0)
    )

    assert len(result.examples) == 8
    assert set(result.failures) == {"trend_0@simulation"}
    assert result.failures["trend_0@simulation"].exception_type == "LinAlgError"


@pytest.mark.filterwarnings("ignore")
def test_pipeline_with_default_candidates(make_corpus, small_run):
    overrides = {key: value for key, value in small_run.items() if key != "candidates"}
    pipeline = MetaForecastPipeline.from_config(overrides=overrides)
    assert pipeline.models == tuple(CandidateModel)

    examples, failures = pipeline.label(make_corpus(n_trend=3, n_seasonal=3, n_walk=0))
    assert not failures
    assert len(examples) == 6
    assert all(set(e.losses) == set(CandidateModel) for e in examples)

    weighter = pipeline.train_weighter(examples)
    assert weighter.models == tuple(CandidateModel)


def test_pipeline_without_labellable_series(pipeline):
    corpus = [TimeSeries(values=np.arange(1.0, 30.0), period=1, series_id="no_horizon")]
    with pytest.raises(ValueError, match="No series could be labelled"):
        pipeline.run(corpus)


def test_load_corpus_from_csv(tmp_path, pipeline, make_corpus, long_frame):
    corpus = make_corpus(n_trend=2, n_seasonal=2, n_walk=0)
    path = tmp_path / "series.csv"
    long_frame(corpus).to_csv(path, index=False)

    loaded = pipeline.load_corpus(path)
    assert [s.series_id for s in loaded] == [s.series_id for s in corpus]
    assert loaded[0].period == 12 and loaded[0].horizon == 6
    np.testing.assert_allclose(loaded[-1].values, corpus[-1].values)


def test_comparator_reports_meta_learners_and_candidates(pipeline, make_corpus):
    result = pipeline.run(make_corpus(n_trend=5, n_seasonal=5, n_walk=2))
    comparator = ModelComparator(result.selector, result.weighter, pipeline.models)

    report = comparator.evaluate(make_corpus(n_trend=2, n_seasonal=2, n_walk=1, seed=7))
    assert {"fforms", "fforma"} <= set(report.index)
    assert {m.value for m in pipeline.models} <= set(report.index)
    assert {"smape", "mase", "owa"} <= set(report.columns)

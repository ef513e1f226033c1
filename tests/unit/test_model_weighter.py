"""Tests for the FFORMA model weighter."""

import numpy as np
import pandas as pd
import pytest

from metaforecast.data.structs import TimeSeries
from metaforecast.features.extraction import FEATURE_NAMES
from metaforecast.models.candidates import CandidateModel
from metaforecast.models.examples import TrainingExample
from metaforecast.models.weighter import ModelWeighter
from metaforecast.models.weighting import ModelWeights
from metaforecast.models.xgboost_model import XGBoostModel
from metaforecast.utils.error_handling import (
    FeatureDimensionMismatchError,
    MismatchedModelSetError,
    TrainingConvergenceError,
)

TREND = FEATURE_NAMES.index("trend")
MODELS = (CandidateModel.NAIVE, CandidateModel.SNAIVE, CandidateModel.RW_DRIFT)


def _query(make_vector, trend):
    values = np.zeros(len(FEATURE_NAMES))
    values[TREND] = trend
    return make_vector(values, "query")


@pytest.fixture
def fitted(synthetic_examples, booster_params):
    return ModelWeighter(hyperparameters=booster_params, random_state=0).fit(synthetic_examples)


def test_fit_one_regressor_per_candidate(fitted):
    assert fitted.is_fitted
    assert fitted.models == MODELS


def test_predict_scores_track_training_losses(fitted, make_vector):
    scores = fitted.predict_scores(_query(make_vector, 1.5))
    assert set(scores) == set(MODELS)
    assert scores[CandidateModel.RW_DRIFT] < scores[CandidateModel.SNAIVE]
    assert scores[CandidateModel.RW_DRIFT] < scores[CandidateModel.NAIVE]


def test_predict_weights(fitted, make_vector):
    weights = fitted.predict_weights(_query(make_vector, -1.5))
    assert isinstance(weights, ModelWeights)
    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights.best == CandidateModel.SNAIVE
    assert weights[CandidateModel.SNAIVE] > 0.99


@pytest.mark.parametrize("policy", ["softmax", "inverse", "best"])
def test_policies_rank_the_same_model_first(synthetic_examples, make_vector, booster_params, policy):
    weighter = ModelWeighter(policy=policy, hyperparameters=booster_params).fit(synthetic_examples)
    weights = weighter.predict_weights(_query(make_vector, 1.5))
    assert weights.best == CandidateModel.RW_DRIFT


def test_invalid_configuration():
    with pytest.raises(ValueError, match="Unknown weighting policy"):
        ModelWeighter(policy="median")
    with pytest.raises(ValueError):
        ModelWeighter(temperature=0)
    with pytest.raises(ValueError, match="Invalid parameters"):
        ModelWeighter(policy="inverse", policy_params={"temperature": 0.5})


def test_policy_params_reach_the_policy(synthetic_examples, make_vector, booster_params):
    mild = ModelWeighter(policy="inverse", hyperparameters=booster_params).fit(synthetic_examples)
    sharp = ModelWeighter(
        policy="inverse", policy_params={"power": 4.0}, hyperparameters=booster_params
    ).fit(synthetic_examples)

    vector = _query(make_vector, 1.5)
    assert sharp.predict_scores(vector) == pytest.approx(mild.predict_scores(vector))
    assert sharp.predict_weights(vector).best == CandidateModel.RW_DRIFT
    assert sharp.predict_weights(vector)[CandidateModel.RW_DRIFT] > mild.predict_weights(vector)[CandidateModel.RW_DRIFT]


def test_mismatched_candidate_sets(make_vector, rng):
    examples = [
        TrainingExample(features=make_vector(rng.normal(size=22)), losses={"naive": 1.0, "snaive": 2.0}),
        TrainingExample(features=make_vector(rng.normal(size=22)), losses={"naive": 1.0, "ets": 2.0}),
    ]
    with pytest.raises(MismatchedModelSetError):
        ModelWeighter().fit(examples)


def test_backend_failure_leaves_no_partial_model(synthetic_examples, booster_params, monkeypatch):
    original_fit = XGBoostModel.fit
    calls = []

    def flaky_fit(self, X, y, **kwargs):
        calls.append(y.name)
        if len(calls) == 2:
            raise RuntimeError("booster diverged")
        return original_fit(self, X, y, **kwargs)

    monkeypatch.setattr(XGBoostModel, "fit", flaky_fit)
    weighter = ModelWeighter(hyperparameters=booster_params)
    with pytest.raises(TrainingConvergenceError, match="snaive"):
        weighter.fit(synthetic_examples)
    assert not weighter.is_fitted


def test_non_finite_predictions_are_training_error(synthetic_examples, booster_params, monkeypatch):
    monkeypatch.setattr(XGBoostModel, "predict", lambda self, X: np.full(len(X), np.nan))
    weighter = ModelWeighter(hyperparameters=booster_params)
    with pytest.raises(TrainingConvergenceError, match="non-finite"):
        weighter.fit(synthetic_examples)
    assert not weighter.is_fitted


def test_rejects_other_schema(fitted):
    from metaforecast.features.extraction import FeatureExtractor, FeatureVector

    other = FeatureExtractor(features=["trend"])
    with pytest.raises(FeatureDimensionMismatchError):
        fitted.predict_weights(FeatureVector(("trend",), (1.0,), other.signature))


def test_forecast_combines_candidates(fitted, seasonal_series):
    combined, weights = fitted.forecast(seasonal_series, 6)
    assert combined.horizon == 6
    assert combined.model == "combination"
    assert set(weights.models) == set(MODELS)
    assert np.all(np.isfinite(combined.mean))
    assert combined.has_intervals


def test_forecast_renormalises_over_surviving_candidates(fitted, monkeypatch):
    import metaforecast.models.weighter as weighter_module

    real = weighter_module.fit_and_forecast_all

    def drop_naive(series, horizon, models=None, level=95.0):
        forecasts, failures = real(series, horizon, models=models, level=level)
        failures[CandidateModel.NAIVE] = forecasts.pop(CandidateModel.NAIVE)
        return forecasts, failures

    monkeypatch.setattr(weighter_module, "fit_and_forecast_all", drop_naive)
    series = TimeSeries(values=50 + np.arange(40.0) + np.sin(np.arange(40)), period=4, series_id="t")
    combined, weights = fitted.forecast(series, 4)

    assert set(weights.models) == {CandidateModel.SNAIVE, CandidateModel.RW_DRIFT}
    assert sum(weights.values()) == pytest.approx(1.0)
    assert combined.horizon == 4


def test_explain_returns_contributions(fitted, make_vector):
    contributions = fitted.explain(_query(make_vector, 1.5))
    assert isinstance(contributions, pd.DataFrame)
    assert list(contributions.index) == [m.value for m in MODELS]
    assert list(contributions.columns) == list(FEATURE_NAMES)
    assert np.all(np.isfinite(contributions.to_numpy()))


def test_feature_importance_per_candidate(fitted):
    importance = fitted.get_feature_importance("total_gain")
    assert list(importance.index) == [m.value for m in MODELS]
    assert importance.loc["rw_drift"].idxmax() == "trend"


def test_save_and_load(tmp_path, fitted, make_vector):
    fitted.save(tmp_path / "weighter")
    loaded = ModelWeighter.load(tmp_path / "weighter")

    query = _query(make_vector, 1.5)
    assert loaded.models == fitted.models
    assert loaded.predict_scores(query) == pytest.approx(fitted.predict_scores(query))


def test_save_and_load_keeps_policy(tmp_path, synthetic_examples, booster_params):
    weighter = ModelWeighter(
        policy="inverse", policy_params={"power": 2.0}, hyperparameters=booster_params
    ).fit(synthetic_examples)
    weighter.save(tmp_path / "weighter")

    loaded = ModelWeighter.load(tmp_path / "weighter")
    assert loaded.policy == "inverse"
    assert loaded.policy_params == {"power": 2.0}

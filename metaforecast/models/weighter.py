"""
FFORMA: feature-based forecast model averaging.

One gradient-boosted regressor per candidate predicts that candidate's
forecast loss from series features. A weighting policy turns the predicted
losses into combination weights, and the candidates' forecasts are averaged
with those weights.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from metaforecast.data.structs import TimeSeries
from metaforecast.features.extraction import FeatureExtractor, FeatureVector
from metaforecast.models.candidates import CandidateModel, ModelForecast, fit_and_forecast_all
from metaforecast.models.combiner import ForecastCombiner
from metaforecast.models.examples import TrainingExample, feature_matrix, feature_schema, loss_matrix
from metaforecast.models.weighting import WEIGHTING_POLICIES, ModelWeights
from metaforecast.models.xgboost_model import XGBoostModel
from metaforecast.utils.error_handling import (
    FeatureDimensionMismatchError,
    MismatchedModelSetError,
    TrainingConvergenceError,
)
from metaforecast.utils.serialization import load_json, save_json

logger = logging.getLogger(__name__)


def _policy_kwargs(policy: str, temperature: float, policy_params: Dict[str, Any]) -> Dict[str, Any]:
    kwargs = dict(policy_params)
    if policy == "softmax":
        kwargs.setdefault("temperature", temperature)
    return kwargs


class ModelWeighter:
    """
    Learns per-series combination weights over the candidate pool.

    Example:
        >>> weighter = ModelWeighter(policy="softmax", temperature=0.1).fit(examples)
        >>> combined, weights = weighter.forecast(series, horizon=6)
    """

    def __init__(
        self,
        policy: str = "softmax",
        temperature: float = 0.1,
        policy_params: Optional[Dict[str, Any]] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
        optimize: bool = False,
        optimization_params: Optional[Dict[str, Any]] = None,
        random_state: int = 0,
        extractor: Optional[FeatureExtractor] = None,
    ):
        """
        Args:
            policy: Name of a registered weighting policy
            temperature: Softmax temperature (only used by the 'softmax' policy)
            policy_params: Further keyword arguments for the policy, e.g.
                ``{"power": 2.0}`` for 'inverse'
            hyperparameters: XGBRegressor keyword arguments shared by all regressors
            optimize: Run an Optuna search per regressor before fitting
            optimization_params: Optuna settings (n_trials, n_splits)
            random_state: Seed for the boosters and the search
            extractor: Extractor applied to new series; defaults to one
                matching the training examples' feature set
        """
        if policy not in WEIGHTING_POLICIES:
            raise ValueError(
                f"Unknown weighting policy '{policy}'; available: {sorted(WEIGHTING_POLICIES)}"
            )
        if temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")
        policy_params = dict(policy_params or {})
        try:
            WEIGHTING_POLICIES[policy](np.array([1.0, 2.0]), **_policy_kwargs(policy, temperature, policy_params))
        except TypeError as e:
            raise ValueError(f"Invalid parameters {policy_params} for policy '{policy}': {e}") from e
        self.policy = policy
        self.temperature = temperature
        self.policy_params = policy_params
        self.hyperparameters = dict(hyperparameters or {})
        self.optimize = optimize
        self.optimization_params = dict(optimization_params or {})
        self.random_state = random_state
        self.extractor = extractor
        self.combiner = ForecastCombiner()

        self.feature_names: Tuple[str, ...] = ()
        self.signature: Optional[str] = None
        self._regressors: Dict[CandidateModel, XGBoostModel] = {}

    @property
    def is_fitted(self) -> bool:
        return bool(self._regressors)

    @property
    def models(self) -> Tuple[CandidateModel, ...]:
        self._check_fitted()
        return tuple(self._regressors)

    def fit(self, examples: Sequence[TrainingExample]) -> "ModelWeighter":
        """
        Train one loss regressor per candidate.

        Raises:
            FeatureDimensionMismatchError: If examples disagree on their feature schema
            MismatchedModelSetError: If examples carry losses for different candidate sets
            TrainingConvergenceError: If any regressor fails or predicts
                non-finite losses; the weighter keeps its previous state
        """
        names, signature = feature_schema(examples)
        if self.extractor is not None and self.extractor.signature != signature:
            raise FeatureDimensionMismatchError(
                f"Examples carry signature {signature}, extractor is {self.extractor.signature}"
            )

        X = feature_matrix(examples)
        losses = loss_matrix(examples)

        regressors: Dict[CandidateModel, XGBoostModel] = {}
        for column in losses.columns:
            model = CandidateModel(column)
            regressor = XGBoostModel(
                model_id=f"fforma_{model.value}",
                hyperparameters=self.hyperparameters,
                random_state=self.random_state,
            )
            try:
                regressor.fit(
                    X,
                    losses[column],
                    optimize=self.optimize,
                    optimization_params=self.optimization_params,
                )
                fitted = regressor.predict(X)
            except Exception as e:
                raise TrainingConvergenceError(
                    f"Loss regressor for {model.value} failed: {e}"
                ) from e
            if not np.all(np.isfinite(fitted)):
                raise TrainingConvergenceError(
                    f"Loss regressor for {model.value} produced non-finite predictions"
                )
            regressors[model] = regressor
            logger.debug(f"Fitted loss regressor for {model.value}: {regressor.training_metrics}")

        self._regressors = regressors
        self.feature_names = names
        self.signature = signature
        if self.extractor is None:
            self.extractor = FeatureExtractor(features=names)

        logger.info(f"Trained weighter on {len(X)} examples over {len(regressors)} candidates")
        return self

    def predict_scores(self, features: FeatureVector) -> Dict[CandidateModel, float]:
        """Predicted loss per candidate (lower is better)."""
        X = self._frame(features)
        return {model: float(reg.predict(X)[0]) for model, reg in self._regressors.items()}

    def predict_weights(self, features: FeatureVector) -> ModelWeights:
        """Combination weights for one feature vector."""
        kwargs = _policy_kwargs(self.policy, self.temperature, self.policy_params)
        return ModelWeights.from_losses(self.predict_scores(features), policy=self.policy, **kwargs)

    def forecast(
        self,
        series: TimeSeries,
        horizon: int,
        level: float = 95.0,
    ) -> Tuple[ModelForecast, ModelWeights]:
        """
        Weight the candidates for ``series``, forecast with each and combine.

        Candidates that fail on this series are dropped and the remaining
        weights renormalised.

        Returns:
            (combined forecast, weights actually applied)

        Raises:
            InsufficientDataError: If features cannot be extracted
            MismatchedModelSetError: If every weighted candidate fails
        """
        weights = self.predict_weights(self.extractor.extract(series))
        forecasts, failures = fit_and_forecast_all(series, horizon, models=weights.models, level=level)
        if not forecasts:
            raise MismatchedModelSetError(
                f"No candidate produced a forecast for '{series.series_id}'"
            )
        if failures:
            logger.warning(
                f"Dropping failed candidates {[m.value for m in failures]} for '{series.series_id}'"
            )
            try:
                weights = weights.restricted_to(forecasts)
            except ValueError as e:
                raise MismatchedModelSetError(str(e)) from e

        return self.combiner.combine(weights, forecasts), weights

    def explain(self, features: FeatureVector) -> pd.DataFrame:
        """
        SHAP contributions of each feature to each candidate's predicted loss.

        Returns:
            DataFrame indexed by candidate, one column per feature
        """
        X = self._frame(features)
        rows = {
            model.value: np.asarray(reg.get_shap_values(X)).reshape(-1)[: len(self.feature_names)]
            for model, reg in self._regressors.items()
        }
        return pd.DataFrame.from_dict(rows, orient="index", columns=list(self.feature_names))

    def get_feature_importance(self, importance_type: str = "gain") -> pd.DataFrame:
        """Booster importance, one row per candidate."""
        self._check_fitted()
        return pd.DataFrame(
            {model.value: reg.get_feature_importance(importance_type) for model, reg in self._regressors.items()}
        ).T

    def save(self, path: Union[str, Path]) -> None:
        """Save every regressor and the weighter configuration to a directory."""
        self._check_fitted()
        save_dir = Path(path)
        for model, regressor in self._regressors.items():
            regressor.save_model(str(save_dir / model.value))
        save_json(
            {
                "models": [m.value for m in self._regressors],
                "feature_names": list(self.feature_names),
                "signature": self.signature,
                "min_observations": self.extractor.min_observations,
                "policy": self.policy,
                "temperature": self.temperature,
                "policy_params": self.policy_params,
                "hyperparameters": self.hyperparameters,
                "random_state": self.random_state,
            },
            save_dir / "weighter.json",
        )
        logger.info(f"Weighter saved to {save_dir}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ModelWeighter":
        load_dir = Path(path)
        state = load_json(load_dir / "weighter.json")
        weighter = cls(
            policy=state["policy"],
            temperature=state["temperature"],
            policy_params=state.get("policy_params"),
            hyperparameters=state["hyperparameters"],
            random_state=state["random_state"],
            extractor=FeatureExtractor(
                features=state["feature_names"],
                min_observations=state["min_observations"],
            ),
        )
        weighter._regressors = {
            CandidateModel(name): XGBoostModel().load_model(str(load_dir / name))
            for name in state["models"]
        }
        weighter.feature_names = tuple(state["feature_names"])
        weighter.signature = state["signature"]
        return weighter

    def _check_fitted(self) -> None:
        if not self._regressors:
            raise ValueError("Weighter not fitted")

    def _frame(self, features: FeatureVector) -> pd.DataFrame:
        self._check_fitted()
        if features.signature != self.signature or features.feature_names != self.feature_names:
            raise FeatureDimensionMismatchError(
                f"Vector for '{features.series_id}' has signature {features.signature}; "
                f"weighter was trained on {self.signature}"
            )
        return pd.DataFrame([features.feature_values], columns=list(self.feature_names))

"""Weighted combination of candidate forecasts."""

import logging
from typing import Mapping

import numpy as np

from metaforecast.models.candidates import CandidateModel, ModelForecast
from metaforecast.models.weighting import ModelWeights
from metaforecast.utils.error_handling import MismatchedModelSetError

logger = logging.getLogger(__name__)

COMBINATION_ID = "combination"


class ForecastCombiner:
    """
    Combines candidate forecasts by weighted averaging at each horizon step.

    Prediction intervals are averaged with the same weights when every
    forecast carries them at the same level; otherwise the combination has
    no interval.
    """

    def combine(
        self,
        weights: ModelWeights,
        forecasts: Mapping[CandidateModel, ModelForecast],
    ) -> ModelForecast:
        """
        Args:
            weights: Weight per candidate model
            forecasts: Forecast per candidate model

        Returns:
            Combined ModelForecast

        Raises:
            MismatchedModelSetError: If weights and forecasts cover different models
            ValueError: If forecasts have different horizons
        """
        weighted = set(weights.models)
        forecast_models = {CandidateModel(m) for m in forecasts}
        if weighted != forecast_models:
            raise MismatchedModelSetError(
                f"Weights cover {sorted(m.value for m in weighted)} but forecasts cover "
                f"{sorted(m.value for m in forecast_models)}"
            )

        models = list(weights.models)
        members = [forecasts[m] for m in models]
        horizons = {f.horizon for f in members}
        if len(horizons) != 1:
            raise ValueError(f"Forecasts have different horizons: {sorted(horizons)}")

        w = np.array([weights[m] for m in models])
        mean = w @ np.vstack([f.mean for f in members])

        lower = upper = level = None
        levels = {f.level for f in members}
        if all(f.has_intervals for f in members) and len(levels) == 1:
            lower = w @ np.vstack([f.lower for f in members])
            upper = w @ np.vstack([f.upper for f in members])
            level = levels.pop()
        elif any(f.has_intervals for f in members):
            logger.debug("Dropping intervals: not every member forecast has them at one level")

        return ModelForecast(model=COMBINATION_ID, mean=mean, lower=lower, upper=upper, level=level)

"""Candidate forecasting models and the meta-learners that select or combine them."""

from metaforecast.models.base_model import BaseModel, ModelArtifact
from metaforecast.models.candidates import CandidateModel, ModelForecast, fit_and_forecast_all
from metaforecast.models.combiner import ForecastCombiner
from metaforecast.models.examples import (
    TrainingExample,
    load_training_examples,
    save_training_examples,
)
from metaforecast.models.selector import ModelSelector
from metaforecast.models.weighter import ModelWeighter
from metaforecast.models.weighting import WEIGHTING_POLICIES, ModelWeights, register_policy

__all__ = [
    "BaseModel",
    "ModelArtifact",
    "CandidateModel",
    "ModelForecast",
    "fit_and_forecast_all",
    "ForecastCombiner",
    "TrainingExample",
    "load_training_examples",
    "save_training_examples",
    "ModelSelector",
    "ModelWeighter",
    "WEIGHTING_POLICIES",
    "ModelWeights",
    "register_policy",
]

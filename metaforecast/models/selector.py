"""
FFORMS: feature-based forecast model selection.

A random forest maps series features to the candidate that forecast best on
the training corpus; at prediction time the chosen candidate is refitted to
the new series and used alone.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from metaforecast.data.structs import TimeSeries
from metaforecast.features.extraction import FeatureExtractor, FeatureVector
from metaforecast.models.candidates import CandidateModel, ModelForecast
from metaforecast.models.examples import TrainingExample, feature_matrix, feature_schema, label_vector
from metaforecast.models.random_forest import RandomForestModel
from metaforecast.utils.error_handling import (
    FeatureDimensionMismatchError,
    TrainingConvergenceError,
)
from metaforecast.utils.serialization import load_json, save_json

logger = logging.getLogger(__name__)


class ModelSelector:
    """
    Random-forest classifier over series features predicting the best candidate.

    Example:
        >>> selector = ModelSelector(class_weight="balanced").fit(examples)
        >>> model, forecast = selector.select_and_forecast(series, horizon=6)
    """

    def __init__(
        self,
        class_weight: Optional[str] = "balanced",
        hyperparameters: Optional[Dict[str, Any]] = None,
        random_state: int = 0,
        extractor: Optional[FeatureExtractor] = None,
    ):
        """
        Args:
            class_weight: 'balanced' or None
            hyperparameters: RandomForestClassifier keyword arguments
            random_state: Seed for the forest
            extractor: Extractor applied to new series; defaults to one
                matching the training examples' feature set
        """
        if class_weight not in ("balanced", None):
            raise ValueError(f"class_weight must be 'balanced' or None, got {class_weight!r}")
        self.class_weight = class_weight
        self.hyperparameters = dict(hyperparameters or {})
        self.random_state = random_state
        self.extractor = extractor
        self.feature_names: Tuple[str, ...] = ()
        self.signature: Optional[str] = None
        self._model: Optional[RandomForestModel] = None

    @property
    def is_fitted(self) -> bool:
        return self._model is not None

    @property
    def classes(self) -> Tuple[CandidateModel, ...]:
        self._check_fitted()
        return tuple(CandidateModel(c) for c in self._model.classes_)

    def fit(self, examples: Sequence[TrainingExample]) -> "ModelSelector":
        """
        Train the classifier on labelled examples.

        Raises:
            FeatureDimensionMismatchError: If examples disagree on their feature
                schema, or disagree with the configured extractor
            ValueError: If fewer than two distinct labels are present
            TrainingConvergenceError: If the forest cannot be fitted; the
                selector keeps its previous state
        """
        names, signature = feature_schema(examples)
        if self.extractor is not None and self.extractor.signature != signature:
            raise FeatureDimensionMismatchError(
                f"Examples carry signature {signature}, extractor is {self.extractor.signature}"
            )

        X = feature_matrix(examples)
        y = label_vector(examples)
        if y.nunique() < 2:
            raise ValueError(
                f"Need at least two distinct best-model labels to train, got {sorted(y.unique())}"
            )

        model = RandomForestModel(
            model_id="fforms_selector",
            hyperparameters=self.hyperparameters,
            class_weight=self.class_weight,
            random_state=self.random_state,
        )
        try:
            model.fit(X, y)
        except Exception as e:
            raise TrainingConvergenceError(f"Random forest training failed: {e}") from e

        self._model = model
        self.feature_names = names
        self.signature = signature
        if self.extractor is None:
            self.extractor = FeatureExtractor(features=names)

        logger.info(
            f"Trained selector on {len(X)} examples, label counts {y.value_counts().to_dict()}"
        )
        return self

    def predict(self, features: FeatureVector) -> CandidateModel:
        """Most probable best candidate for one feature vector."""
        return self.predict_many([features])[0]

    def predict_many(self, vectors: Sequence[FeatureVector]) -> List[CandidateModel]:
        labels = self._model_predict(vectors, proba=False)
        return [CandidateModel(label) for label in labels]

    def predict_proba(self, features: FeatureVector) -> Dict[CandidateModel, float]:
        """Class probabilities for one feature vector, summing to one."""
        proba = self._model_predict([features], proba=True)[0]
        return {model: float(p) for model, p in zip(self.classes, proba)}

    def select_and_forecast(
        self,
        series: TimeSeries,
        horizon: int,
        level: float = 95.0,
    ) -> Tuple[CandidateModel, ModelForecast]:
        """
        Extract features from ``series``, pick a candidate and forecast with it.

        Raises:
            InsufficientDataError: If features cannot be extracted
        """
        self._check_fitted()
        choice = self.predict(self.extractor.extract(series))
        logger.debug(f"Selected {choice.value} for '{series.series_id}'")
        return choice, choice.fit_and_forecast(series, horizon, level=level)

    @staticmethod
    def compare_class_weighting(
        examples: Sequence[TrainingExample],
        test_size: float = 0.3,
        random_state: int = 0,
        hyperparameters: Optional[Dict[str, Any]] = None,
    ) -> pd.DataFrame:
        """Held-out metrics of balanced versus unweighted class priors."""
        from metaforecast.evaluation.comparison import compare_class_weighting
        return compare_class_weighting(
            examples, test_size=test_size, random_state=random_state, hyperparameters=hyperparameters
        )

    def get_feature_importance(self) -> pd.Series:
        """Mean decrease in impurity per feature, sorted descending."""
        self._check_fitted()
        importance = pd.Series(self._model.get_feature_importance(), name="importance")
        return importance.sort_values(ascending=False)

    def save(self, path: Union[str, Path]) -> None:
        """Save the forest and the feature schema to a directory."""
        self._check_fitted()
        save_dir = Path(path)
        self._model.save_model(str(save_dir / "forest"))
        save_json(
            {
                "feature_names": list(self.feature_names),
                "signature": self.signature,
                "min_observations": self.extractor.min_observations,
                "class_weight": self.class_weight,
                "random_state": self.random_state,
                "hyperparameters": self.hyperparameters,
            },
            save_dir / "selector.json",
        )
        logger.info(f"Selector saved to {save_dir}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ModelSelector":
        load_dir = Path(path)
        state = load_json(load_dir / "selector.json")
        selector = cls(
            class_weight=state["class_weight"],
            hyperparameters=state["hyperparameters"],
            random_state=state["random_state"],
            extractor=FeatureExtractor(
                features=state["feature_names"],
                min_observations=state["min_observations"],
            ),
        )
        model = RandomForestModel(class_weight=state["class_weight"])
        selector._model = model.load_model(str(load_dir / "forest"))
        selector.feature_names = tuple(state["feature_names"])
        selector.signature = state["signature"]
        return selector

    def _check_fitted(self) -> None:
        if self._model is None:
            raise ValueError("Selector not fitted")

    def _model_predict(self, vectors: Sequence[FeatureVector], proba: bool) -> np.ndarray:
        self._check_fitted()
        for vector in vectors:
            if vector.signature != self.signature or vector.feature_names != self.feature_names:
                raise FeatureDimensionMismatchError(
                    f"Vector for '{vector.series_id}' has signature {vector.signature}; "
                    f"selector was trained on {self.signature}"
                )
        X = pd.DataFrame([v.feature_values for v in vectors], columns=list(self.feature_names))
        return self._model.predict_proba(X) if proba else self._model.predict(X)

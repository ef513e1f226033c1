"""
Random forest classifier wrapper used by the FFORMS selector.
"""

import time
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier

from metaforecast.models.base_model import BaseModel

DEFAULT_HYPERPARAMETERS = {
    "n_estimators": 500,
    "min_samples_leaf": 1,
}


class RandomForestModel(BaseModel):
    """
    Random forest classifier with optional balanced class priors.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
        class_weight: Optional[str] = "balanced",
        random_state: int = 0,
    ):
        """
        Args:
            model_id: Unique identifier
            hyperparameters: RandomForestClassifier keyword arguments
            class_weight: 'balanced' to reweight classes inversely to their
                frequency, None to use raw frequencies
            random_state: Seed for bootstrap sampling and feature subsampling
        """
        super().__init__(model_id, hyperparameters)
        for key, value in DEFAULT_HYPERPARAMETERS.items():
            self.hyperparameters.setdefault(key, value)
        self.class_weight = class_weight
        self.random_state = random_state
        self.metadata["class_weight"] = class_weight

    @property
    def model_type(self) -> str:
        return "random_forest"

    @property
    def task(self) -> str:
        return "classification"

    @property
    def classes_(self) -> np.ndarray:
        self._check_fitted()
        return self.model_object.classes_

    def fit(self, X: pd.DataFrame, y: pd.Series, **kwargs) -> "RandomForestModel":
        """
        Fit the classifier.

        Args:
            X: Feature DataFrame
            y: Class labels
            **kwargs: Passed to RandomForestClassifier.fit
        """
        self._start_fit(X)
        start = time.time()

        self.model_object = RandomForestClassifier(
            class_weight=self.class_weight,
            random_state=self.random_state,
            **self.hyperparameters
        )
        self.model_object.fit(X, y, **kwargs)
        self.is_fitted = True
        self.training_time = time.time() - start

        if getattr(self.model_object, "oob_score", False):
            self.training_metrics["oob_accuracy"] = float(self.model_object.oob_score_)
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        X = self._aligned(X)
        return self.model_object.predict(X)

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        """Class probabilities, columns ordered as ``classes_``."""
        X = self._aligned(X)
        return self.model_object.predict_proba(X)

    def get_feature_importance(self) -> Dict[str, float]:
        """Mean decrease in impurity per feature."""
        if not self.is_fitted:
            return {}
        return {
            name: float(score)
            for name, score in zip(self.feature_names, self.model_object.feature_importances_)
        }

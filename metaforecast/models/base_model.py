"""Common interface for the estimators wrapped by the FFORMS selector and FFORMA weighter."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from metaforecast.utils.serialization import load_json, load_pickle, save_json, save_pickle

logger = logging.getLogger(__name__)

ESTIMATOR_FILE = "estimator.pkl"
ESTIMATOR_META_FILE = "estimator.json"


@dataclass
class ModelArtifact:
    """Description of a fitted estimator as written next to its pickle."""
    model_id: str
    model_type: str
    task: str
    hyperparameters: Dict[str, Any]
    feature_names: List[str]
    n_training_rows: int = 0
    training_metrics: Dict[str, float] = field(default_factory=dict)
    training_time: float = 0.0
    created_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "model_type": self.model_type,
            "task": self.task,
            "hyperparameters": self.hyperparameters,
            "feature_names": self.feature_names,
            "n_training_rows": self.n_training_rows,
            "training_metrics": self.training_metrics,
            "training_time": self.training_time,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelArtifact":
        fields = dict(data)
        fields["created_at"] = datetime.fromisoformat(fields["created_at"])
        return cls(**fields)


class BaseModel(ABC):
    """
    Feature-table estimator used as a meta-learner back-end.

    Subclasses wrap one library estimator, fit it on a DataFrame whose
    columns are series features, and keep the column order so prediction
    frames can be realigned.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
    ):
        self.hyperparameters = dict(hyperparameters or {})
        self.model_id = model_id or f"{self.model_type}_{datetime.now():%Y%m%d_%H%M%S}"
        self.model_object: Any = None
        self.is_fitted: bool = False
        self.feature_names: List[str] = []
        self.n_training_rows: int = 0
        self.training_metrics: Dict[str, float] = {}
        self.training_time: float = 0.0
        self.metadata: Dict[str, Any] = {}
        self._created_at = datetime.now()

    @property
    @abstractmethod
    def model_type(self) -> str:
        """Back-end identifier stored with saved estimators."""

    @property
    @abstractmethod
    def task(self) -> str:
        """'classification' or 'regression'."""

    @abstractmethod
    def fit(self, X: pd.DataFrame, y: pd.Series, **kwargs) -> "BaseModel":
        """Fit the estimator and return self."""

    @abstractmethod
    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """Predict targets for the rows of X."""

    @abstractmethod
    def get_feature_importance(self) -> Dict[str, float]:
        """Feature name -> importance score."""

    def save_model(self, path: str) -> None:
        """
        Write the fitted estimator and its ModelArtifact description to ``path``.

        Raises:
            ValueError: If the model is not fitted
        """
        if not self.is_fitted:
            raise ValueError("Cannot save unfitted model")

        save_dir = Path(path)
        save_pickle(self.model_object, save_dir / ESTIMATOR_FILE)
        save_json(self.get_artifact().to_dict(), save_dir / ESTIMATOR_META_FILE)
        logger.info(f"Saved {self.model_type} estimator '{self.model_id}' to {save_dir}")

    def load_model(self, path: str) -> "BaseModel":
        """
        Restore an estimator written by save_model.

        Raises:
            FileNotFoundError: If the directory holds no saved estimator
            ValueError: If the saved estimator is of another back-end type
        """
        load_dir = Path(path)
        if not (load_dir / ESTIMATOR_META_FILE).exists():
            raise FileNotFoundError(f"No saved estimator in {load_dir}")

        artifact = ModelArtifact.from_dict(load_json(load_dir / ESTIMATOR_META_FILE))
        if artifact.model_type != self.model_type:
            raise ValueError(
                f"Saved estimator is '{artifact.model_type}', cannot load into {self.model_type}"
            )

        self.model_object = load_pickle(load_dir / ESTIMATOR_FILE)
        self.model_id = artifact.model_id
        self.hyperparameters = artifact.hyperparameters
        self.feature_names = artifact.feature_names
        self.n_training_rows = artifact.n_training_rows
        self.training_metrics = artifact.training_metrics
        self.training_time = artifact.training_time
        self.metadata = artifact.metadata
        self._created_at = artifact.created_at
        self.is_fitted = True
        return self

    def get_artifact(self) -> ModelArtifact:
        return ModelArtifact(
            model_id=self.model_id,
            model_type=self.model_type,
            task=self.task,
            hyperparameters=self.hyperparameters,
            feature_names=list(self.feature_names),
            n_training_rows=self.n_training_rows,
            training_metrics=self.training_metrics,
            training_time=self.training_time,
            created_at=self._created_at,
            metadata=self.metadata,
        )

    def _start_fit(self, X: pd.DataFrame) -> None:
        """Validate a training frame and record its schema."""
        self._validate_input(X)
        self.feature_names = X.columns.tolist()
        self.n_training_rows = len(X)

    def _check_fitted(self) -> None:
        if not self.is_fitted:
            raise ValueError(f"{self.model_type} model not fitted")

    def _validate_input(self, X: pd.DataFrame) -> None:
        """Reject empty or non-finite feature frames."""
        if not isinstance(X, pd.DataFrame):
            raise TypeError("X must be a pandas DataFrame")
        if X.empty:
            raise ValueError("X cannot be empty")
        if not np.all(np.isfinite(X.to_numpy(dtype=float))):
            raise ValueError("X contains NaN or infinite values")

    def _aligned(self, X: pd.DataFrame) -> pd.DataFrame:
        """Validate a prediction frame and select the training columns in training order."""
        self._check_fitted()
        self._validate_input(X)
        missing = set(self.feature_names) - set(X.columns)
        if missing:
            raise ValueError(f"Missing features: {sorted(missing)}")
        return X[self.feature_names]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model_id='{self.model_id}', is_fitted={self.is_fitted})"

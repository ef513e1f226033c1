"""
XGBoost regressor with Optuna hyperparameter search and SHAP explanations.

Used by the FFORMA weighter to predict each candidate's forecast loss
from series features.
"""

import time
from typing import Any, Dict, Optional

import numpy as np
import optuna
import pandas as pd
import shap
import xgboost as xgb
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import KFold

from metaforecast.models.base_model import BaseModel, logger

DEFAULT_HYPERPARAMETERS = {
    "n_estimators": 200,
    "max_depth": 6,
    "learning_rate": 0.1,
}


class XGBoostModel(BaseModel):
    """
    XGBoost regression wrapper with optional hyperparameter optimization.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
        objective: str = "reg:squarederror",
        random_state: int = 0,
    ):
        """
        Args:
            model_id: Unique identifier
            hyperparameters: Initial hyperparameters (updated by optimization)
            objective: XGBoost regression objective
            random_state: Seed for the booster and the search
        """
        super().__init__(model_id, hyperparameters)
        self.objective = objective
        self.random_state = random_state
        self.model_object: Optional[xgb.XGBRegressor] = None
        self._explainer: Optional[shap.TreeExplainer] = None

        for key, value in DEFAULT_HYPERPARAMETERS.items():
            self.hyperparameters.setdefault(key, value)

    @property
    def model_type(self) -> str:
        return "xgboost"

    @property
    def task(self) -> str:
        return "regression"

    def fit(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        optimize: bool = False,
        optimization_params: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> "XGBoostModel":
        """
        Fit the regressor.

        Args:
            X: Feature DataFrame
            y: Target Series
            optimize: Whether to run hyperparameter optimization before the final fit
            optimization_params: Optuna settings (n_trials, n_splits)
            **kwargs: Passed to XGBRegressor.fit
        """
        self._start_fit(X)
        start = time.time()

        if optimize:
            logger.info("Starting hyperparameter optimization...")
            best_params = self.optimize_hyperparameters(X, y, params=optimization_params or {})
            logger.info(f"Optimization complete. Best params: {best_params}")
            self.hyperparameters.update(best_params)

        self.model_object = xgb.XGBRegressor(
            objective=self.objective,
            random_state=self.random_state,
            **self.hyperparameters
        )
        self.model_object.fit(X, y, verbose=False, **kwargs)
        self.is_fitted = True
        self.training_time = time.time() - start

        train_pred = self.model_object.predict(X)
        self.training_metrics = {"rmse": float(np.sqrt(mean_squared_error(y, train_pred)))}

        self._explainer = None
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        X = self._aligned(X)
        return self.model_object.predict(X)

    def get_feature_importance(self, importance_type: str = "gain") -> Dict[str, float]:
        """
        Args:
            importance_type: 'weight', 'gain', 'cover', 'total_gain', 'total_cover'
        """
        if not self.is_fitted:
            return {}
        scores = self.model_object.get_booster().get_score(importance_type=importance_type)
        # Features never used in a split are absent from get_score.
        return {feat: float(scores.get(feat, 0.0)) for feat in self.feature_names}

    def get_shap_values(self, X: pd.DataFrame) -> np.ndarray:
        """SHAP values of the predictions for the rows of X."""
        X = self._aligned(X)
        if self._explainer is None:
            self._explainer = shap.TreeExplainer(self.model_object)
        return np.asarray(self._explainer.shap_values(X))

    def optimize_hyperparameters(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Run an Optuna search minimising cross-validated RMSE.

        Args:
            X, y: Training data
            params: n_trials (default 20), n_splits (default 3)

        Returns:
            Best hyperparameters
        """
        n_trials = params.get("n_trials", 20)
        n_splits = params.get("n_splits", 3)
        folds = KFold(n_splits=n_splits, shuffle=True, random_state=self.random_state)

        def objective(trial):
            param = {
                "max_depth": trial.suggest_int("max_depth", 2, 10),
                "learning_rate": trial.suggest_float("learning_rate", 1e-3, 0.3, log=True),
                "n_estimators": trial.suggest_int("n_estimators", 50, 500),
                "subsample": trial.suggest_float("subsample", 0.5, 1.0),
                "colsample_bytree": trial.suggest_float("colsample_bytree", 0.5, 1.0),
                "min_child_weight": trial.suggest_int("min_child_weight", 1, 10),
            }

            scores = []
            for train_idx, val_idx in folds.split(X):
                model = xgb.XGBRegressor(
                    objective=self.objective,
                    random_state=self.random_state,
                    n_jobs=1,
                    **param
                )
                model.fit(X.iloc[train_idx], y.iloc[train_idx], verbose=False)
                preds = model.predict(X.iloc[val_idx])
                scores.append(np.sqrt(mean_squared_error(y.iloc[val_idx], preds)))
            return float(np.mean(scores))

        sampler = optuna.samplers.TPESampler(seed=self.random_state)
        study = optuna.create_study(direction="minimize", sampler=sampler)
        study.optimize(objective, n_trials=n_trials)
        return study.best_params

"""Tests for the random forest and XGBoost estimator wrappers."""

import numpy as np
import pandas as pd
import pytest

from metaforecast.models.random_forest import RandomForestModel
from metaforecast.models.xgboost_model import XGBoostModel


@pytest.fixture
def table(rng):
    X = pd.DataFrame(rng.normal(size=(60, 3)), columns=["trend", "seasonality", "entropy"])
    y_class = pd.Series(np.where(X["trend"] > 0, "rw_drift", "snaive"), name="label")
    y_reg = pd.Series(2.0 * X["trend"] + rng.normal(0, 0.1, 60), name="loss")
    return X, y_class, y_reg


def test_forest_fit_predict_and_artifact(table, forest_params):
    X, y, _ = table
    model = RandomForestModel(model_id="forest", hyperparameters=forest_params).fit(X, y)

    assert model.task == "classification"
    assert set(model.classes_) == {"rw_drift", "snaive"}
    assert model.predict_proba(X[::-1].iloc[:, ::-1]).shape == (60, 2)

    artifact = model.get_artifact()
    assert artifact.n_training_rows == 60
    assert artifact.feature_names == ["trend", "seasonality", "entropy"]
    assert artifact.metadata["class_weight"] == "balanced"


def test_booster_save_load_roundtrip(tmp_path, table, booster_params):
    X, _, y = table
    model = XGBoostModel(model_id="fforma_naive", hyperparameters=booster_params).fit(X, y)
    model.save_model(str(tmp_path / "naive"))

    loaded = XGBoostModel().load_model(str(tmp_path / "naive"))
    assert loaded.model_id == "fforma_naive"
    assert loaded.task == "regression"
    np.testing.assert_allclose(loaded.predict(X), model.predict(X))
    assert loaded.get_shap_values(X.iloc[:2]).shape == (2, 3)


def test_load_rejects_other_backend(tmp_path, table, forest_params):
    X, y, _ = table
    RandomForestModel(hyperparameters=forest_params).fit(X, y).save_model(str(tmp_path / "forest"))

    with pytest.raises(ValueError, match="random_forest"):
        XGBoostModel().load_model(str(tmp_path / "forest"))
    with pytest.raises(FileNotFoundError):
        XGBoostModel().load_model(str(tmp_path / "missing"))


def test_unfitted_and_invalid_input(table):
    X, _, y = table
    model = XGBoostModel()
    with pytest.raises(ValueError, match="not fitted"):
        model.predict(X)
    with pytest.raises(ValueError, match="not fitted"):
        model.get_shap_values(X)
    with pytest.raises(ValueError, match="Cannot save"):
        model.save_model("unused")

    forest = RandomForestModel()
    with pytest.raises(ValueError, match="not fitted"):
        forest.predict(X)
    with pytest.raises(ValueError, match="not fitted"):
        forest.predict_proba(X)

    bad = X.copy()
    bad.iloc[0, 0] = np.nan
    with pytest.raises(ValueError, match="NaN"):
        model.fit(bad, y)


def test_booster_hyperparameter_search(table):
    X, _, y = table
    model = XGBoostModel(random_state=3).fit(X, y, optimize=True, optimization_params={"n_trials": 3, "n_splits": 2})

    assert model.is_fitted
    assert {"max_depth", "learning_rate", "n_estimators"} <= set(model.hyperparameters)
    assert "rmse" in model.training_metrics

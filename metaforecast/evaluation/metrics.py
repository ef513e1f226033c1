"""Forecast accuracy measures and classification/regression summaries."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    f1_score,
    mean_absolute_error,
    mean_squared_error,
    precision_score,
    r2_score,
    recall_score,
)
from statsmodels.tsa.seasonal import seasonal_decompose
from statsmodels.tsa.stattools import acf

logger = logging.getLogger(__name__)

# 90% one-sided critical value used by the M4 seasonality test.
_SEASONALITY_Z = 1.645


def smape(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Symmetric MAPE in percent (0-200).

    Steps where both actual and forecast are zero contribute zero.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.shape != y_pred.shape or y_true.size == 0:
        raise ValueError(f"Shape mismatch: {y_true.shape} vs {y_pred.shape}")
    denom = np.abs(y_true) + np.abs(y_pred)
    ratio = np.divide(
        2.0 * np.abs(y_true - y_pred),
        denom,
        out=np.zeros_like(denom),
        where=denom > 0,
    )
    return float(100.0 * np.mean(ratio))


def mase_scale(insample: np.ndarray, period: int = 1) -> float:
    """
    Mean absolute in-sample seasonal-naive error.

    Falls back to the lag-1 scale when the seasonal one is zero or the series
    is too short for it.

    Raises:
        ValueError: If the in-sample series has no variation to scale by
    """
    x = np.asarray(insample, dtype=float)
    lag = period if 1 < period < len(x) else 1
    scale = float(np.mean(np.abs(x[lag:] - x[:-lag]))) if len(x) > lag else 0.0
    if scale == 0.0 and lag > 1:
        scale = float(np.mean(np.abs(np.diff(x))))
    if not scale > 0:
        raise ValueError("MASE is undefined for an in-sample series without variation")
    return scale


def mase(y_true: np.ndarray, y_pred: np.ndarray, insample: np.ndarray, period: int = 1) -> float:
    """Mean absolute scaled error relative to the in-sample seasonal naive."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.shape != y_pred.shape or y_true.size == 0:
        raise ValueError(f"Shape mismatch: {y_true.shape} vs {y_pred.shape}")
    return float(np.mean(np.abs(y_true - y_pred)) / mase_scale(insample, period))


def is_seasonal(insample: np.ndarray, period: int) -> bool:
    """M4 seasonality test: autocorrelation at the seasonal lag exceeds its 90% limit."""
    x = np.asarray(insample, dtype=float)
    if period <= 1 or len(x) < 3 * period:
        return False
    r = acf(x, nlags=period, fft=False)
    limit = _SEASONALITY_Z * np.sqrt((1 + 2 * np.sum(r[1:period] ** 2)) / len(x))
    return bool(abs(r[period]) > limit)


def naive2_forecast(insample: np.ndarray, period: int, horizon: int) -> np.ndarray:
    """
    Naive forecast of the seasonally adjusted series, reseasonalised.

    Uses classical multiplicative decomposition (additive when the series is
    not strictly positive) when the seasonality test passes; plain naive
    otherwise.
    """
    x = np.asarray(insample, dtype=float)
    if not is_seasonal(x, period):
        return np.repeat(x[-1], horizon)

    multiplicative = bool(np.all(x > 0))
    decomposition = seasonal_decompose(
        x, model="multiplicative" if multiplicative else "additive", period=period
    )
    seasonal = np.asarray(decomposition.seasonal)
    # The seasonal component repeats with the period; continue it forward.
    future = seasonal[len(x) - period + (np.arange(horizon) % period)]
    if multiplicative:
        return (x[-1] / seasonal[-1]) * future
    return (x[-1] - seasonal[-1]) + future


def owa(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    insample: np.ndarray,
    period: int = 1,
    benchmark: Optional[np.ndarray] = None,
) -> float:
    """
    Overall weighted average of sMAPE and MASE relative to Naive2.

    Args:
        y_true: Held-out actuals
        y_pred: Forecast
        insample: Training segment
        period: Seasonal period
        benchmark: Precomputed Naive2 forecast (computed when omitted)

    Raises:
        ValueError: If Naive2 forecasts the test segment exactly
    """
    y_true = np.asarray(y_true, dtype=float)
    if benchmark is None:
        benchmark = naive2_forecast(insample, period, len(y_true))
    smape_ref = smape(y_true, benchmark)
    mase_ref = mase(y_true, benchmark, insample, period)
    if smape_ref == 0 or mase_ref == 0:
        raise ValueError("OWA is undefined when the Naive2 benchmark is exact")
    return 0.5 * (
        smape(y_true, y_pred) / smape_ref + mase(y_true, y_pred, insample, period) / mase_ref
    )


def _smape_loss(y_true, y_pred, insample, period, benchmark=None):
    return smape(y_true, y_pred)


def _mase_loss(y_true, y_pred, insample, period, benchmark=None):
    return mase(y_true, y_pred, insample, period)


LOSS_FUNCTIONS: Dict[str, Callable[..., float]] = {
    "owa": owa,
    "smape": _smape_loss,
    "mase": _mase_loss,
}


@dataclass
class MetricsResult:
    """Container for evaluation metrics."""
    metrics: Dict[str, float]
    metric_type: str
    metadata: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "metrics": self.metrics,
            "metric_type": self.metric_type,
            "metadata": self.metadata,
        }


class MetricsCalculator:
    """Calculate evaluation metrics for selectors, weighters and forecasts."""

    def calculate_classification_metrics(
        self,
        y_true: np.ndarray,
        y_pred: np.ndarray,
        average: str = "macro",
    ) -> Dict[str, float]:
        """
        Calculate classification metrics for best-model labels.

        Args:
            y_true: True labels
            y_pred: Predicted labels
            average: Averaging method across classes ('micro', 'macro', 'weighted')

        Returns:
            Dictionary of metric names to values
        """
        y_true = np.asarray(y_true)
        y_pred = np.asarray(y_pred)

        return {
            "accuracy": float(accuracy_score(y_true, y_pred)),
            "precision": float(precision_score(y_true, y_pred, average=average, zero_division=0)),
            "recall": float(recall_score(y_true, y_pred, average=average, zero_division=0)),
            "f1": float(f1_score(y_true, y_pred, average=average, zero_division=0)),
        }

    def calculate_regression_metrics(
        self,
        y_true: np.ndarray,
        y_pred: np.ndarray,
    ) -> Dict[str, float]:
        """
        Calculate regression metrics, e.g. for predicted versus realised losses.

        Args:
            y_true: True values
            y_pred: Predicted values

        Returns:
            Dictionary of metric names to values
        """
        y_true = np.asarray(y_true, dtype=float)
        y_pred = np.asarray(y_pred, dtype=float)

        metrics: Dict[str, float] = {}
        metrics["mse"] = float(mean_squared_error(y_true, y_pred))
        metrics["rmse"] = float(np.sqrt(metrics["mse"]))
        metrics["mae"] = float(mean_absolute_error(y_true, y_pred))
        metrics["r2"] = float(r2_score(y_true, y_pred)) if len(y_true) > 1 else np.nan
        return metrics

    def calculate_forecast_metrics(
        self,
        y_true: np.ndarray,
        y_pred: np.ndarray,
        insample: np.ndarray,
        period: int = 1,
    ) -> Dict[str, float]:
        """
        Calculate sMAPE, MASE and OWA for one forecast.

        OWA is NaN when the Naive2 benchmark is exact.
        """
        metrics = {
            "smape": smape(y_true, y_pred),
            "mase": mase(y_true, y_pred, insample, period),
        }
        try:
            metrics["owa"] = owa(y_true, y_pred, insample, period)
        except ValueError as e:
            logger.debug(f"OWA unavailable: {e}")
            metrics["owa"] = np.nan
        return metrics

    def get_all_metrics(
        self,
        y_true: np.ndarray,
        y_pred: np.ndarray,
        task_type: str = "classification",
        **kwargs
    ) -> MetricsResult:
        """
        Calculate all relevant metrics for a given task type.

        Args:
            y_true: True values/labels
            y_pred: Predicted values/labels
            task_type: 'classification', 'regression' or 'forecast'
            **kwargs: ``insample`` and ``period`` for forecasts

        Returns:
            MetricsResult containing all calculated metrics
        """
        if task_type == "classification":
            metrics = self.calculate_classification_metrics(y_true, y_pred)
        elif task_type == "regression":
            metrics = self.calculate_regression_metrics(y_true, y_pred)
        elif task_type == "forecast":
            metrics = self.calculate_forecast_metrics(y_true, y_pred, **kwargs)
        else:
            raise ValueError(f"Unknown task type: {task_type}")

        return MetricsResult(
            metrics=metrics,
            metric_type=task_type,
            metadata={"n_samples": len(y_true)},
        )

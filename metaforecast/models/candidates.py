"""
Candidate forecasting methods considered for selection and combination.

The pool is a closed enumeration; each member dispatches to one forecasting
function with the signature ``(y, period, horizon, level) -> (mean, lower, upper)``.
"""

import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm
from statsmodels.tsa.ar_model import ar_select_order
from statsmodels.tsa.arima.model import ARIMA
from statsmodels.tsa.exponential_smoothing.ets import ETSModel
from statsmodels.tsa.forecasting.theta import ThetaModel
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.stattools import kpss

from metaforecast.data.structs import TimeSeries
from metaforecast.features.extraction import seasonal_strength
from metaforecast.utils.error_handling import RecoveryContext

logger = logging.getLogger(__name__)

# Seasonal differencing threshold on STL seasonal strength (as forecast::nsdiffs).
SEASONAL_DIFF_THRESHOLD = 0.64

ForecastArrays = Tuple[np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]


@dataclass
class ModelForecast:
    """Point forecast with optional prediction interval."""
    model: str
    mean: np.ndarray
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None
    level: Optional[float] = None

    def __post_init__(self):
        self.mean = np.asarray(self.mean, dtype=float)
        if self.lower is not None:
            self.lower = np.asarray(self.lower, dtype=float)
        if self.upper is not None:
            self.upper = np.asarray(self.upper, dtype=float)

    @property
    def horizon(self) -> int:
        return len(self.mean)

    @property
    def has_intervals(self) -> bool:
        return self.lower is not None and self.upper is not None


class CandidateModel(str, Enum):
    """Forecasting methods in the candidate pool."""
    NAIVE = "naive"
    SNAIVE = "snaive"
    RW_DRIFT = "rw_drift"
    THETA = "theta"
    ARIMA = "arima"
    ETS = "ets"
    STLM_AR = "stlm_ar"

    def fit_and_forecast(self, series: TimeSeries, horizon: int, level: float = 95.0) -> ModelForecast:
        """
        Fit this method to the training segment of ``series`` and forecast.

        Args:
            series: Series to fit (its held-out test segment, if any, is ignored)
            horizon: Number of steps ahead
            level: Prediction interval coverage in percent

        Returns:
            ModelForecast of length ``horizon``
        """
        if int(horizon) != horizon or horizon < 1:
            raise ValueError(f"horizon must be a positive integer, got {horizon!r}")
        y = np.asarray(series.train, dtype=float)
        if len(y) < 2:
            raise ValueError(f"{self.value} needs at least 2 observations, got {len(y)}")

        mean, lower, upper = _FORECASTERS[self](y, series.period, int(horizon), level)
        mean = np.asarray(mean, dtype=float)
        if mean.shape != (horizon,) or not np.all(np.isfinite(mean)):
            raise ValueError(f"{self.value} produced an invalid forecast for '{series.series_id}'")

        return ModelForecast(
            model=self.value,
            mean=mean,
            lower=lower,
            upper=upper,
            level=level if lower is not None else None,
        )

    @classmethod
    def parse(cls, names: Iterable[str]) -> Tuple["CandidateModel", ...]:
        """Convert configuration names to members, preserving order."""
        return tuple(cls(name) for name in names)


def _z(level: float) -> float:
    return float(norm.ppf(0.5 + level / 200.0))


def _normal_bounds(point: np.ndarray, residuals: np.ndarray, level: float) -> Tuple[np.ndarray, np.ndarray]:
    """Symmetric interval with residual spread growing like sqrt(h)."""
    residuals = np.asarray(residuals, dtype=float)
    residuals = residuals[np.isfinite(residuals)]
    sigma = float(np.std(residuals)) if len(residuals) > 1 else 0.0
    scale = _z(level) * sigma * np.sqrt(np.arange(1, len(point) + 1))
    return point - scale, point + scale


def _naive(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    point = np.full(horizon, y[-1])
    return (point, *_normal_bounds(point, np.diff(y), level))


def _snaive(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    if period < 2 or len(y) < period:
        return _naive(y, period, horizon, level)
    point = np.resize(y[-period:], horizon)
    return (point, *_normal_bounds(point, y[period:] - y[:-period], level))


def _rw_drift(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    slope = (y[-1] - y[0]) / (len(y) - 1)
    point = y[-1] + slope * np.arange(1, horizon + 1)
    diffs = np.diff(y)
    return (point, *_normal_bounds(point, diffs - diffs.mean(), level))


def _theta(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    deseasonalize = period > 1 and len(y) >= 2 * period
    model = ThetaModel(
        y,
        period=period,
        deseasonalize=deseasonalize,
        method="auto" if np.all(y > 0) else "additive",
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        fit = model.fit()
        point = np.asarray(fit.forecast(horizon), dtype=float)
        intervals = fit.prediction_intervals(horizon, alpha=1 - level / 100.0)
    return point, np.asarray(intervals["lower"], dtype=float), np.asarray(intervals["upper"], dtype=float)


def _n_diffs(x: np.ndarray, max_d: int = 2, alpha: float = 0.05) -> int:
    """Number of first differences suggested by repeated KPSS tests."""
    d = 0
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        while d < max_d and len(x) > 3 and np.var(x) > 0:
            p_value = kpss(x, regression="c", nlags="auto")[1]
            if p_value >= alpha:
                break
            x = np.diff(x)
            d += 1
    return d


def _arima(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    seasonal_d = 0
    if period > 1 and len(y) >= 3 * period and seasonal_strength(y, period) > SEASONAL_DIFF_THRESHOLD:
        seasonal_d = 1
    base = y[period:] - y[:-period] if seasonal_d else y
    d = _n_diffs(base)

    total_d = d + seasonal_d
    trend = "c" if total_d == 0 else ("t" if total_d == 1 else "n")
    seasonal_order = (0, seasonal_d, 0, period) if seasonal_d else (0, 0, 0, 0)

    best = None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        for p in range(3):
            for q in range(3):
                try:
                    fit = ARIMA(y, order=(p, d, q), seasonal_order=seasonal_order, trend=trend).fit()
                except (ValueError, np.linalg.LinAlgError) as e:
                    logger.debug(f"ARIMA({p},{d},{q}) failed: {e}")
                    continue
                if not np.isfinite(fit.aicc):
                    continue
                if best is None or fit.aicc < best.aicc:
                    best = fit
        if best is None:
            raise ValueError("No ARIMA order could be fitted")
        forecast = best.get_forecast(horizon)
        point = np.asarray(forecast.predicted_mean, dtype=float)
        bounds = np.asarray(forecast.conf_int(alpha=1 - level / 100.0), dtype=float)
    return point, bounds[:, 0], bounds[:, 1]


def _ets(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    seasonal_options = [None]
    if period > 1 and len(y) >= 2 * period + 2:
        seasonal_options.append("add")
    trend_options = [(None, False), ("add", False), ("add", True)]

    n = len(y)
    # Prediction results index the forecast, so the model needs pandas data.
    endog = pd.Series(y, index=pd.RangeIndex(n))
    best = None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        for seasonal in seasonal_options:
            for trend, damped in trend_options:
                try:
                    fit = ETSModel(
                        endog,
                        error="add",
                        trend=trend,
                        damped_trend=damped,
                        seasonal=seasonal,
                        seasonal_periods=period if seasonal else None,
                    ).fit(disp=False)
                except (ValueError, np.linalg.LinAlgError) as e:
                    logger.debug(f"ETS(A,{trend},{seasonal}) failed: {e}")
                    continue
                if not np.isfinite(fit.aicc):
                    continue
                if best is None or fit.aicc < best.aicc:
                    best = fit
        if best is None:
            raise ValueError("No ETS configuration could be fitted")
        frame = best.get_prediction(start=n, end=n + horizon - 1).summary_frame(alpha=1 - level / 100.0)
    return (
        frame["mean"].to_numpy(dtype=float),
        frame["pi_lower"].to_numpy(dtype=float),
        frame["pi_upper"].to_numpy(dtype=float),
    )


def _stlm_ar(y: np.ndarray, period: int, horizon: int, level: float) -> ForecastArrays:
    if period > 1 and len(y) >= 2 * period:
        seasonal = np.asarray(STL(y, period=period).fit().seasonal)
        seasonal_forecast = np.resize(seasonal[-period:], horizon)
    else:
        seasonal = np.zeros_like(y)
        seasonal_forecast = np.zeros(horizon)
    adjusted = y - seasonal

    max_lag = max(1, min(10, len(adjusted) // 4))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        selection = ar_select_order(adjusted, maxlag=max_lag, ic="aic", trend="c")
        fit = selection.model.fit()
        adjusted_forecast = np.asarray(fit.forecast(steps=horizon), dtype=float)

    point = adjusted_forecast + seasonal_forecast
    return (point, *_normal_bounds(point, fit.resid, level))


_FORECASTERS: Dict[CandidateModel, Callable[[np.ndarray, int, int, float], ForecastArrays]] = {
    CandidateModel.NAIVE: _naive,
    CandidateModel.SNAIVE: _snaive,
    CandidateModel.RW_DRIFT: _rw_drift,
    CandidateModel.THETA: _theta,
    CandidateModel.ARIMA: _arima,
    CandidateModel.ETS: _ets,
    CandidateModel.STLM_AR: _stlm_ar,
}


def fit_and_forecast_all(
    series: TimeSeries,
    horizon: int,
    models: Optional[Iterable[CandidateModel]] = None,
    level: float = 95.0,
) -> Tuple[Dict[CandidateModel, ModelForecast], Dict[CandidateModel, RecoveryContext]]:
    """
    Forecast ``series`` with every candidate.

    A failing candidate is recorded and does not prevent the others.

    Returns:
        (forecasts by model, failures by model)
    """
    models = tuple(models) if models is not None else tuple(CandidateModel)
    forecasts: Dict[CandidateModel, ModelForecast] = {}
    failures: Dict[CandidateModel, RecoveryContext] = {}

    for model in models:
        try:
            forecasts[model] = model.fit_and_forecast(series, horizon, level=level)
        except Exception as e:
            failures[model] = RecoveryContext.from_exception(series.series_id, e)
            logger.warning(f"{model.value} failed on '{series.series_id}': {e}")

    return forecasts, failures

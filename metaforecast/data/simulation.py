"""Corpus augmentation by simulating from models fitted to observed series."""

import inspect
import logging
import warnings
from typing import List, Optional, Union

import numpy as np
from statsmodels.tsa.arima.model import ARIMA
from statsmodels.tsa.exponential_smoothing.ets import ETSModel

from metaforecast.data.structs import TimeSeries

logger = logging.getLogger(__name__)

_ARIMA_ORDERS = [(1, 1, 0), (0, 1, 1), (1, 1, 1), (1, 0, 0)]


class SeriesSimulator:
    """
    Generates synthetic series resembling observed ones.

    Each observed series is fitted with an additive-error ETS model and a
    small ARIMA model; new paths are simulated from both. All randomness is
    drawn from a generator seeded with ``random_state``, so two simulators
    built with the same seed and called in the same order produce identical
    corpora.
    """

    def __init__(self, random_state: Union[int, np.random.Generator, None] = None):
        self.rng = np.random.default_rng(random_state)

    def simulate(
        self,
        series: TimeSeries,
        n: int,
        length: Optional[int] = None,
        kinds: tuple = ("ets", "arima"),
    ) -> List[TimeSeries]:
        """
        Simulate ``n`` paths per model kind from one observed series.

        Args:
            series: Observed series; its full length is used for fitting
            n: Number of paths per model kind
            length: Length of each simulated path (defaults to the observed length)
            kinds: Model kinds to simulate from ('ets', 'arima')

        Returns:
            Simulated series carrying the source period and horizon
        """
        if n < 1:
            return []
        length = length or len(series)
        y = np.asarray(series.values, dtype=float)
        simulated: List[TimeSeries] = []

        for kind in kinds:
            if kind == "ets":
                paths = self._simulate_ets(y, series.period, length, n)
            elif kind == "arima":
                paths = self._simulate_arima(y, length, n)
            else:
                raise ValueError(f"Unknown simulation kind: {kind}")

            for i in range(paths.shape[1]):
                horizon = series.horizon if series.horizon is not None and series.horizon < length else None
                simulated.append(
                    TimeSeries(
                        values=paths[:, i],
                        period=series.period,
                        horizon=horizon,
                        series_id=f"{series.series_id}_sim_{kind}_{i}",
                        metadata={"source": series.series_id, "simulated_from": kind},
                    )
                )

        logger.debug(f"Simulated {len(simulated)} series from {series.series_id}")
        return simulated

    def _simulate_ets(self, y: np.ndarray, period: int, length: int, n: int) -> np.ndarray:
        seasonal = "add" if period > 1 and len(y) >= 2 * period else None
        model = ETSModel(
            y,
            error="add",
            trend="add",
            damped_trend=True,
            seasonal=seasonal,
            seasonal_periods=period if seasonal else None,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            fit = model.fit(disp=False)
            paths = self._draw(fit, length, n)
        return np.asarray(paths, dtype=float).reshape(length, -1)

    def _simulate_arima(self, y: np.ndarray, length: int, n: int) -> np.ndarray:
        best = None
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            for order in _ARIMA_ORDERS:
                try:
                    fit = ARIMA(y, order=order).fit()
                except (ValueError, np.linalg.LinAlgError) as e:
                    logger.debug(f"ARIMA{order} failed during simulation fit: {e}")
                    continue
                if best is None or fit.aic < best.aic:
                    best = fit
            if best is None:
                raise ValueError("No ARIMA model could be fitted for simulation")
            paths = self._draw(best, length, n)
        return np.asarray(paths, dtype=float).reshape(length, -1)

    def _draw(self, results, length: int, n: int) -> np.ndarray:
        """Simulate ``n`` paths from fitted results using this simulator's generator."""
        # statsmodels >= 0.15 takes a Generator as ``rng``; older releases
        # only accept a RandomState as ``random_state``.
        if "rng" in inspect.signature(results.simulate).parameters:
            return results.simulate(length, anchor="start", repetitions=n, rng=self.rng)
        state = np.random.RandomState(int(self.rng.integers(2**32)))
        return results.simulate(length, anchor="start", repetitions=n, random_state=state)

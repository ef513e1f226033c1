"""Scale-independent time series features used for forecast model selection.

Each series is Box-Cox transformed with a Guerrero lambda and standardised
before the shape features are computed, so multiplying a series by a
positive constant leaves every feature unchanged. The feature set follows
the tsfeatures collection used by FFORMS/FFORMA:

- spectral entropy, lumpiness and stability
- STL trend/seasonal strength, spikiness, linearity and curvature
- autocorrelation summaries of the series and its differences
- crossing points and flat spots
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import minimize_scalar
from scipy.signal import periodogram
from scipy.special import boxcox
from scipy.stats import entropy as shannon_entropy
from statsmodels.nonparametric.smoothers_lowess import lowess
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.stattools import acf, pacf

from metaforecast.data.structs import TimeSeries
from metaforecast.utils.error_handling import InsufficientDataError
from metaforecast.utils.parallel import BatchProcessor

logger = logging.getLogger(__name__)

FEATURE_SET_VERSION = "1"

FEATURE_NAMES: Tuple[str, ...] = (
    "length",
    "frequency",
    "lambda",
    "entropy",
    "lumpiness",
    "stability",
    "trend",
    "seasonality",
    "spikiness",
    "linearity",
    "curvature",
    "e_acf1",
    "x_acf1",
    "x_acf10",
    "diff1_acf1",
    "diff1_acf10",
    "diff2_acf1",
    "diff2_acf10",
    "seas_acf1",
    "x_pacf5",
    "crossing_points",
    "flat_spots",
)

# Variances below this (on the unit-variance scale) are treated as zero.
_NEGLIGIBLE_VARIANCE = 1e-8

LAMBDA_BOUNDS = (-1.0, 2.0)


@dataclass(frozen=True)
class FeatureVector(Mapping):
    """
    Immutable, ordered mapping from feature name to value.

    ``signature`` identifies the extractor configuration that produced the
    vector; models trained on one signature reject vectors carrying another.
    """
    feature_names: Tuple[str, ...]
    feature_values: Tuple[float, ...]
    signature: str
    series_id: Optional[str] = None

    def __post_init__(self):
        if len(self.feature_names) != len(self.feature_values):
            raise ValueError(
                f"{len(self.feature_names)} names but {len(self.feature_values)} values"
            )
        object.__setattr__(self, "feature_names", tuple(self.feature_names))
        object.__setattr__(self, "feature_values", tuple(float(v) for v in self.feature_values))

    def __getitem__(self, name: str) -> float:
        try:
            return self.feature_values[self.feature_names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self.feature_names)

    def __len__(self) -> int:
        return len(self.feature_names)

    def to_array(self) -> np.ndarray:
        return np.array(self.feature_values, dtype=float)

    def to_series(self) -> pd.Series:
        return pd.Series(self.feature_values, index=list(self.feature_names), name=self.series_id)


def guerrero_lambda(x: np.ndarray, period: int, bounds: Tuple[float, float] = LAMBDA_BOUNDS) -> float:
    """
    Guerrero's Box-Cox parameter: the lambda that makes the ratio of
    subseries standard deviation to mean**(1 - lambda) most constant.

    Returns 1.0 (no transform) for non-positive data or when fewer than two
    complete subseries are available.
    """
    x = np.asarray(x, dtype=float)
    if np.any(x <= 0):
        return 1.0

    width = max(period, 2)
    n_sub = len(x) // width
    if n_sub < 2:
        return 1.0

    blocks = x[len(x) - n_sub * width:].reshape(n_sub, width)
    mu = blocks.mean(axis=1)
    sigma = blocks.std(axis=1, ddof=1)
    if not np.all(sigma > 0):
        return 1.0

    def coefficient_of_variation(lam: float) -> float:
        ratio = sigma / mu ** (1.0 - lam)
        return float(np.std(ratio, ddof=1) / np.mean(ratio))

    result = minimize_scalar(
        coefficient_of_variation,
        bounds=bounds,
        method="bounded",
        options={"xatol": 1e-8},
    )
    return float(result.x)


def normalise(x: np.ndarray, period: int) -> Tuple[np.ndarray, float]:
    """Box-Cox transform (positive data only) and standardise. Returns (z, lambda)."""
    lam = guerrero_lambda(x, period)
    y = boxcox(x, lam) if np.all(x > 0) else np.asarray(x, dtype=float)
    sd = np.std(y)
    if not np.isfinite(sd) or sd == 0:
        raise InsufficientDataError("Series has no variation after transformation")
    return (y - np.mean(y)) / sd, lam


def decompose(z: np.ndarray, period: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Trend, seasonal and remainder components (STL if seasonal, LOWESS trend otherwise)."""
    if period > 1:
        fit = STL(z, period=period, robust=False).fit()
        return np.asarray(fit.trend), np.asarray(fit.seasonal), np.asarray(fit.resid)

    t = np.arange(len(z), dtype=float)
    trend = lowess(z, t, frac=2.0 / 3.0, it=0, return_sorted=False)
    return trend, np.zeros_like(z), z - trend


def _strength(remainder: np.ndarray, component: np.ndarray) -> float:
    total = np.var(component + remainder)
    if total <= _NEGLIGIBLE_VARIANCE:
        return 0.0
    return float(max(0.0, 1.0 - np.var(remainder) / total))


def seasonal_strength(x: np.ndarray, period: int) -> float:
    """Strength of seasonality in [0, 1]; 0 for non-seasonal or too-short data."""
    x = np.asarray(x, dtype=float)
    if period < 2 or len(x) < 2 * period or np.ptp(x) == 0:
        return 0.0
    z = (x - x.mean()) / x.std()
    _, seasonal, remainder = decompose(z, period)
    return _strength(remainder, seasonal)


def _acf(x: np.ndarray, nlags: int) -> np.ndarray:
    """Autocorrelations at lags 1..nlags, zeros when the series has no variance."""
    out = np.zeros(nlags)
    if len(x) < 3 or np.var(x) <= _NEGLIGIBLE_VARIANCE ** 2:
        return out
    k = min(nlags, len(x) - 1)
    out[:k] = acf(x, nlags=k, fft=False)[1:]
    return out


def _orthogonal_poly(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """Orthonormal linear and quadratic polynomials in time (as R's poly(t, 2))."""
    t = np.arange(n, dtype=float)
    p1 = t - t.mean()
    p2 = p1 ** 2
    p2 = p2 - p2.mean() - (p2 @ p1) / (p1 @ p1) * p1
    return p1 / np.linalg.norm(p1), p2 / np.linalg.norm(p2)


def _tile_stats(z: np.ndarray, width: int) -> Tuple[float, float]:
    """(stability, lumpiness): variance of tile means and of tile variances."""
    n_tiles = len(z) // width
    if n_tiles < 2 or width < 2:
        return 0.0, 0.0
    tiles = z[: n_tiles * width].reshape(n_tiles, width)
    return float(np.var(tiles.mean(axis=1), ddof=1)), float(np.var(tiles.var(axis=1, ddof=1), ddof=1))


def _spikiness(remainder: np.ndarray) -> float:
    n = len(remainder)
    if n < 3:
        return 0.0
    d = (remainder - remainder.mean()) ** 2
    var_loo = (np.var(remainder, ddof=1) * (n - 1) - d) / (n - 2)
    return float(np.var(var_loo, ddof=1))


def _spectral_entropy(z: np.ndarray) -> float:
    _, power = periodogram(z, detrend=False)
    power = power[1:]
    total = power.sum()
    if len(power) < 2 or total <= 0:
        return 0.0
    return float(shannon_entropy(power / total) / np.log(len(power)))


def _crossing_points(z: np.ndarray) -> float:
    below = z <= np.median(z)
    return float(np.sum(below[1:] != below[:-1]))


def _flat_spots(z: np.ndarray, n_bins: int = 10) -> float:
    span = z.max() - z.min()
    bins = np.minimum(np.floor((z - z.min()) / span * n_bins), n_bins - 1).astype(int)
    longest = current = 1
    for prev, cur in zip(bins[:-1], bins[1:]):
        current = current + 1 if cur == prev else 1
        longest = max(longest, current)
    return float(longest)


class FeatureExtractor:
    """
    Computes FeatureVectors from TimeSeries.

    Extraction is a pure function of the series values and period: the
    same input always yields a bit-identical vector.
    """

    def __init__(
        self,
        features: Optional[Sequence[str]] = None,
        min_observations: int = 10,
    ):
        """
        Args:
            features: Subset of FEATURE_NAMES to compute (default: all). The
                output keeps the canonical FEATURE_NAMES order.
            min_observations: Minimum series length regardless of period
        """
        if features is None:
            names = FEATURE_NAMES
        else:
            unknown = sorted(set(features) - set(FEATURE_NAMES))
            if unknown:
                raise ValueError(f"Unknown features: {unknown}")
            names = tuple(f for f in FEATURE_NAMES if f in set(features))
            if not names:
                raise ValueError("At least one feature must be requested")
        self.feature_names: Tuple[str, ...] = names
        self.min_observations = min_observations

    @property
    def signature(self) -> str:
        """Identifier of this configuration, stored with trained models."""
        return f"v{FEATURE_SET_VERSION}:" + ",".join(self.feature_names)

    def required_length(self, period: int) -> int:
        return max(self.min_observations, 2 * period)

    def extract(self, series: TimeSeries) -> FeatureVector:
        """
        Extract features from the training segment of ``series``.

        Raises:
            InsufficientDataError: If the series is shorter than
                ``required_length(period)``, contains non-finite values, or
                is constant
        """
        x = np.asarray(series.train, dtype=float)
        needed = self.required_length(series.period)
        if len(x) < needed:
            raise InsufficientDataError(
                f"Series '{series.series_id}' has {len(x)} observations; "
                f"period {series.period} needs at least {needed}"
            )
        if not np.all(np.isfinite(x)):
            raise InsufficientDataError(f"Series '{series.series_id}' contains non-finite values")
        if np.ptp(x) == 0:
            raise InsufficientDataError(f"Series '{series.series_id}' is constant")

        values = self._compute(x, series.period)
        return FeatureVector(
            feature_names=self.feature_names,
            feature_values=tuple(values[name] for name in self.feature_names),
            signature=self.signature,
            series_id=series.series_id,
        )

    def extract_many(self, series: Iterable[TimeSeries], n_workers: Optional[int] = 1):
        """
        Extract features for a batch of series.

        Returns:
            (DataFrame indexed by series_id, failures by series_id)
        """
        result = BatchProcessor(n_workers=n_workers).map(self.extract, series)
        return self.to_frame(result.successes.values()), result.failures

    def to_frame(self, vectors: Iterable[FeatureVector]) -> pd.DataFrame:
        """Stack vectors into a DataFrame with one row per series."""
        rows = [v.to_series() for v in vectors]
        if not rows:
            return pd.DataFrame(columns=list(self.feature_names))
        frame = pd.DataFrame(rows)
        frame.index.name = "series_id"
        return frame

    def _compute(self, x: np.ndarray, period: int) -> Dict[str, float]:
        z, lam = normalise(x, period)
        n = len(z)
        trend, seasonal, remainder = decompose(z, period)
        p1, p2 = _orthogonal_poly(n)
        stability, lumpiness = _tile_stats(z, period if period > 1 else 10)

        x_acf = _acf(z, 10)
        d1_acf = _acf(np.diff(z), 10)
        d2_acf = _acf(np.diff(z, n=2), 10)

        seas_acf1 = 0.0
        if period > 1 and n > period:
            seas_acf1 = float(_acf(z, period)[period - 1])

        x_pacf5 = 0.0
        pacf_lags = min(5, n // 2 - 1)
        if pacf_lags >= 1:
            x_pacf5 = float(np.sum(pacf(z, nlags=pacf_lags)[1:] ** 2))

        features = {
            "length": float(n),
            "frequency": float(period),
            "lambda": lam,
            "entropy": _spectral_entropy(z),
            "lumpiness": lumpiness,
            "stability": stability,
            "trend": _strength(remainder, trend),
            "seasonality": _strength(remainder, seasonal) if period > 1 else 0.0,
            "spikiness": _spikiness(remainder),
            "linearity": float(p1 @ trend),
            "curvature": float(p2 @ trend),
            "e_acf1": float(_acf(remainder, 1)[0]),
            "x_acf1": float(x_acf[0]),
            "x_acf10": float(np.sum(x_acf ** 2)),
            "diff1_acf1": float(d1_acf[0]),
            "diff1_acf10": float(np.sum(d1_acf ** 2)),
            "diff2_acf1": float(d2_acf[0]),
            "diff2_acf10": float(np.sum(d2_acf ** 2)),
            "seas_acf1": seas_acf1,
            "x_pacf5": x_pacf5,
            "crossing_points": _crossing_points(z),
            "flat_spots": _flat_spots(z),
        }
        logger.debug(f"Computed {len(features)} features for series of length {n}")
        return features
